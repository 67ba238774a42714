"""
Cancellable periodic background tasks.

Used for the idle-session sweep, the stale-job sweep and the cache expiry
sweep. Each task owns its asyncio.Task; ``stop`` cancels it and waits for it to
unwind. ``run_once`` invokes the body directly so tests do not need to sleep.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from utils.ml_logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval_s: float,
        body: Callable[[], Awaitable[Any]],
    ):
        if interval_s <= 0:
            raise ValueError(f"interval for {name} must be positive")
        self.name = name
        self.interval_s = interval_s
        self._body = body
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")
        logger.debug("Started periodic task %s every %ss", self.name, self.interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Stopped periodic task %s", self.name)

    async def run_once(self) -> Any:
        self.runs += 1
        return await self._body()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic task {self.name} failed: {e}", exc_info=True)
