"""
Settle join: run independent capability calls concurrently and report the
outcome of every branch.

The join itself never raises for a branch failure. A branch that raises is
recorded as failed with its exception; a branch that exceeds its timeout is
cancelled and recorded as failed with ``BackendTimeoutError``. Siblings are
never aborted. Cancelling the join itself still propagates.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Mapping, Optional, Union

from avatarcore.exceptions import BackendTimeoutError
from utils.ml_logging import get_logger

logger = get_logger(__name__)


@dataclass
class BranchOutcome:
    name: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    latency_ms: float = 0.0

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, BackendTimeoutError)


async def _run_branch(
    name: str, awaitable: Awaitable[Any], timeout_s: Optional[float]
) -> BranchOutcome:
    start = time.perf_counter()
    try:
        if timeout_s is None:
            value = await awaitable
        else:
            value = await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError:
        error = BackendTimeoutError(name, timeout_s)
        logger.warning("Branch %s timed out after %.2fs", name, timeout_s)
    except Exception as exc:
        error = exc
        logger.warning("Branch %s failed: %s", name, exc)
    else:
        return BranchOutcome(
            name=name,
            ok=True,
            value=value,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
    return BranchOutcome(
        name=name,
        ok=False,
        error=error,
        latency_ms=(time.perf_counter() - start) * 1000,
    )


async def settle(
    branches: Mapping[str, Awaitable[Any]],
    *,
    timeouts: Union[None, float, Mapping[str, float]] = None,
) -> Dict[str, BranchOutcome]:
    """
    Await every branch concurrently and return ``{name: BranchOutcome}``.

    Args:
        branches: named awaitables, e.g. ``{"llm": ..., "tts": ...}``.
        timeouts: one timeout for every branch, or a per-branch mapping.
            Branches missing from the mapping run without a timeout.
    """
    names = list(branches)
    if not names:
        return {}

    def _timeout_for(name: str) -> Optional[float]:
        if timeouts is None:
            return None
        if isinstance(timeouts, Mapping):
            return timeouts.get(name)
        return float(timeouts)

    outcomes = await asyncio.gather(
        *(_run_branch(name, branches[name], _timeout_for(name)) for name in names)
    )
    return {outcome.name: outcome for outcome in outcomes}
