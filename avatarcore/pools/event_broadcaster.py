"""
Scoped event broadcaster.

Delivers session and job state transitions to the listeners subscribed to a
scope (a session id or a job id). Delivery is best effort: there is no replay,
so a listener that subscribes after an event was published never sees it.

Events published to the same scope are delivered in publish-call order; a
per-scope lock serialises deliveries. A listener that raises is logged and
skipped, the remaining listeners still receive the event.
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from utils.ml_logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass
class Subscription:
    subscription_id: str
    scope_id: str
    listener: Listener
    subscriber_id: Optional[str] = None


class EventBroadcaster:
    """
    In-process publish/subscribe keyed by scope id.

    ``subscriber_id`` groups subscriptions that belong to one client (for
    example a WebSocket connection) so they can be dropped together when the
    client goes away.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._scopes: Dict[str, Dict[str, Subscription]] = {}
        self._scope_locks: Dict[str, asyncio.Lock] = {}
        self._ids = itertools.count(1)

    async def subscribe(
        self,
        scope_id: str,
        listener: Listener,
        *,
        subscriber_id: Optional[str] = None,
    ) -> str:
        """Register ``listener`` for ``scope_id`` and return a subscription id."""
        async with self._lock:
            if subscriber_id is not None:
                # one subscription per (scope, subscriber)
                for sub in self._scopes.get(scope_id, {}).values():
                    if sub.subscriber_id == subscriber_id:
                        return sub.subscription_id
            sub_id = f"sub-{next(self._ids)}"
            self._scopes.setdefault(scope_id, {})[sub_id] = Subscription(
                subscription_id=sub_id,
                scope_id=scope_id,
                listener=listener,
                subscriber_id=subscriber_id,
            )
            self._scope_locks.setdefault(scope_id, asyncio.Lock())
            return sub_id

    async def unsubscribe(self, scope_id: str, subscription_id: str) -> bool:
        async with self._lock:
            subs = self._scopes.get(scope_id)
            if not subs or subscription_id not in subs:
                return False
            del subs[subscription_id]
            self._prune_scope_unsafe(scope_id)
            return True

    async def drop_subscriber(self, subscriber_id: str) -> int:
        """Remove every subscription owned by ``subscriber_id``."""
        removed = 0
        async with self._lock:
            for scope_id in list(self._scopes):
                subs = self._scopes[scope_id]
                for sub_id in [
                    s.subscription_id
                    for s in subs.values()
                    if s.subscriber_id == subscriber_id
                ]:
                    del subs[sub_id]
                    removed += 1
                self._prune_scope_unsafe(scope_id)
        return removed

    async def close_scope(self, scope_id: str) -> int:
        """Drop all subscriptions of a scope; later publishes become no-ops."""
        async with self._lock:
            subs = self._scopes.pop(scope_id, {})
            self._scope_locks.pop(scope_id, None)
            return len(subs)

    async def publish(self, scope_id: str, event: str, data: Dict[str, Any]) -> int:
        """
        Deliver ``event`` to every current subscriber of ``scope_id``.

        Returns:
            int: number of listeners that accepted the event. Zero subscribers
            is a silent no-op.
        """
        async with self._lock:
            scope_lock = self._scope_locks.get(scope_id)
            targets = list(self._scopes.get(scope_id, {}).values())
        if not targets or scope_lock is None:
            return 0

        delivered = 0
        async with scope_lock:
            for sub in targets:
                try:
                    await sub.listener(event, data)
                    delivered += 1
                except Exception as exc:
                    logger.error(
                        "Listener failed for %s on scope %s: %s",
                        event,
                        scope_id,
                        exc,
                        extra={"subscriber_id": sub.subscriber_id},
                    )
        return delivered

    async def subscriber_count(self, scope_id: str) -> int:
        async with self._lock:
            return len(self._scopes.get(scope_id, {}))

    async def scopes_for(self, subscriber_id: str) -> List[str]:
        async with self._lock:
            return [
                scope_id
                for scope_id, subs in self._scopes.items()
                if any(s.subscriber_id == subscriber_id for s in subs.values())
            ]

    def _prune_scope_unsafe(self, scope_id: str) -> None:
        """Forget an empty scope. Caller holds ``self._lock``."""
        if not self._scopes.get(scope_id):
            self._scopes.pop(scope_id, None)
            lock = self._scope_locks.get(scope_id)
            if lock is not None and not lock.locked():
                self._scope_locks.pop(scope_id, None)
