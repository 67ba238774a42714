"""
Process-wide performance metrics for interactive turns.

Provides atomic counters so concurrent turns never lose an update.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from utils.ml_logging import get_logger

logger = get_logger(__name__)

SUB_200MS_THRESHOLD = 200.0


@dataclass(frozen=True)
class PerformanceSnapshot:
    total_requests: int
    cache_hits: int
    cache_misses: int
    sub200ms_responses: int
    avg_response_time_ms: float
    active_sessions: int = 0

    @property
    def cache_hit_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.cache_hits / self.total_requests

    @property
    def sub200ms_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.sub200ms_responses / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "sub200msResponses": self.sub200ms_responses,
            "avgResponseTimeMs": round(self.avg_response_time_ms, 2),
            "cacheHitRate": self.cache_hit_rate,
            "sub200msRate": self.sub200ms_rate,
            "activeSessions": self.active_sessions,
        }


class ThreadSafeSessionMetrics:
    """
    Thread-safe metrics aggregator.

    Uses asyncio.Lock to protect concurrent access to counters.

    Tracks:
    - request volume, cache hits and misses, sub-200ms turns
    - a running average of turn latency: each sample moves the average halfway
      towards itself (the first sample seeds it)
    - active/total WebSocket connection counters
    """

    def __init__(self, *, smoothing: float = 0.5):
        if not 0.0 < smoothing <= 1.0:
            raise ValueError("smoothing must be in (0, 1]")
        self._smoothing = smoothing
        self._requests: Dict[str, Any] = {
            "total_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "sub200ms_responses": 0,
            "avg_response_time_ms": 0.0,
        }
        self._connections: Dict[str, Any] = {
            "active_connections": 0,
            "total_connected": 0,
            "total_disconnected": 0,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        self._lock = asyncio.Lock()

    async def record_request(self, latency_ms: float, cache_hit: bool) -> None:
        latency_ms = max(0.0, float(latency_ms))
        async with self._lock:
            m = self._requests
            m["total_requests"] += 1
            if cache_hit:
                m["cache_hits"] += 1
            else:
                m["cache_misses"] += 1
            if latency_ms < SUB_200MS_THRESHOLD:
                m["sub200ms_responses"] += 1
            if m["total_requests"] == 1:
                m["avg_response_time_ms"] = latency_ms
            else:
                m["avg_response_time_ms"] += self._smoothing * (
                    latency_ms - m["avg_response_time_ms"]
                )

    async def snapshot(self, active_sessions: int = 0) -> PerformanceSnapshot:
        async with self._lock:
            return PerformanceSnapshot(active_sessions=active_sessions, **self._requests)

    async def increment_connected(self) -> int:
        """Count a new WebSocket connection; returns the active count."""
        async with self._lock:
            self._connections["active_connections"] += 1
            self._connections["total_connected"] += 1
            self._connections["last_updated"] = datetime.now(timezone.utc).isoformat()
            active_count = self._connections["active_connections"]
            total_count = self._connections["total_connected"]
        logger.info(f"WS Connected: Active={active_count}, Total={total_count}")
        return active_count

    async def increment_disconnected(self) -> int:
        """Count a closed WebSocket connection; returns the active count."""
        async with self._lock:
            self._connections["active_connections"] = max(
                0, self._connections["active_connections"] - 1
            )
            self._connections["total_disconnected"] += 1
            self._connections["last_updated"] = datetime.now(timezone.utc).isoformat()
            active_count = self._connections["active_connections"]
            total_disconnected = self._connections["total_disconnected"]
        logger.info(
            f"WS Disconnected: Active={active_count}, TotalDisconnected={total_disconnected}"
        )
        return active_count

    async def connection_snapshot(self) -> Dict[str, Any]:
        async with self._lock:
            return self._connections.copy()
