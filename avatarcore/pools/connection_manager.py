"""
WebSocket Connection Manager
============================

Connection registry for the duplex event channel.

Features:
- Thread-safe connection registry with async locks
- Per-connection send queues so concurrent publishers never interleave writes
- Connection limit enforcement
- Clean lifecycle management with resource cleanup
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from utils.ml_logging import get_logger

logger = get_logger(__name__)


@dataclass
class ConnectionMeta:
    """Connection metadata."""

    connection_id: str
    user_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)


class _Connection:
    """Internal connection wrapper with a bounded send queue."""

    def __init__(
        self,
        websocket: WebSocket,
        meta: ConnectionMeta,
        *,
        queue_size: int = 100,
        on_send_failure: Optional[Callable[[Exception], Awaitable[None]]] = None,
    ):
        self.ws = websocket
        self.meta = meta
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._sender_task = asyncio.create_task(self._sender_loop())
        self._send_lock = asyncio.Lock()
        self._closed = False
        self._on_send_failure = on_send_failure

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_json(self, payload: Dict[str, Any]) -> None:
        """Queue a JSON frame; the oldest queued frame is dropped when full."""
        if self._closed:
            return

        async with self._send_lock:
            message = json.dumps(payload, default=str)
            if self._queue.full():
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.warning(
                    "Send queue full, dropped oldest frame",
                    extra={"conn_id": self.meta.connection_id},
                )
            await self._queue.put(message)

    async def _sender_loop(self) -> None:
        try:
            while not self._closed:
                try:
                    message = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                if message is None:  # shutdown sentinel
                    return

                try:
                    if (
                        self.ws.client_state == WebSocketState.CONNECTED
                        and self.ws.application_state == WebSocketState.CONNECTED
                    ):
                        await self.ws.send_text(message)
                    else:
                        logger.debug(
                            "WebSocket no longer connected; stopping sender",
                            extra={"conn_id": self.meta.connection_id},
                        )
                        self._closed = True
                        if self._on_send_failure:
                            asyncio.create_task(
                                self._on_send_failure(RuntimeError("websocket_disconnected"))
                            )
                        return
                except Exception as e:
                    level = logger.error
                    text = str(e)
                    if isinstance(e, RuntimeError) and "close message" in text.lower():
                        level = logger.info
                    level(
                        "WebSocket send failed: %s",
                        text,
                        extra={"conn_id": self.meta.connection_id},
                    )
                    self._closed = True
                    if self._on_send_failure:
                        asyncio.create_task(self._on_send_failure(e))
                    return
        except asyncio.CancelledError:
            logger.debug("Sender loop cancelled", extra={"conn_id": self.meta.connection_id})

    async def close(self) -> None:
        """Flush the sender and close the socket if it is still connected."""
        if self._closed and self._sender_task.done():
            return

        async with self._send_lock:
            try:
                self._queue.put_nowait(None)
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                self._queue.put_nowait(None)
            self._closed = True

        if not self._sender_task.done():
            try:
                await asyncio.wait_for(self._sender_task, timeout=2.0)
            except asyncio.TimeoutError:
                logger.debug(
                    "Sender task timeout on close; cancelling",
                    extra={"conn_id": self.meta.connection_id},
                )
                self._sender_task.cancel()

        try:
            if (
                self.ws.client_state == WebSocketState.CONNECTED
                and self.ws.application_state == WebSocketState.CONNECTED
            ):
                await self.ws.close()
        except RuntimeError as e:
            logger.debug(
                f"Error closing WebSocket: {e}",
                extra={"conn_id": self.meta.connection_id},
            )


class ThreadSafeConnectionManager:
    """
    WebSocket connection registry with connection limits.

    - register() - add an accepted WebSocket (raises when at capacity)
    - unregister() - remove a connection and close it
    - send_to_connection() - queue a frame for one connection
    - stats() - connection statistics
    """

    def __init__(
        self,
        max_connections: int = 200,
        *,
        send_queue_size: int = 100,
        enable_connection_limits: bool = True,
    ):
        self._lock = asyncio.Lock()
        self._conns: Dict[str, _Connection] = {}
        self.max_connections = max_connections
        self.send_queue_size = send_queue_size
        self.enable_limits = enable_connection_limits
        self._rejected_count = 0

        logger.info(
            f"ConnectionManager initialized: max_connections={max_connections}, "
            f"limits_enabled={enable_connection_limits}"
        )

    async def stop(self) -> None:
        """Close all connections."""
        async with self._lock:
            conns = list(self._conns.values())
            self._conns.clear()
        await asyncio.gather(*(conn.close() for conn in conns), return_exceptions=True)

    async def register(
        self, websocket: WebSocket, *, user_id: Optional[str] = None
    ) -> str:
        """
        Register an accepted WebSocket.

        Raises:
            RuntimeError: If the connection limit is reached
        """
        async with self._lock:
            current_count = len(self._conns)
            if self.enable_limits and current_count >= self.max_connections:
                self._rejected_count += 1
                logger.warning(
                    f"Connection rejected: limit={self.max_connections}, "
                    f"current={current_count}, total_rejected={self._rejected_count}"
                )
                raise RuntimeError("Server at capacity. Please try again later.")

            conn_id = str(uuid.uuid4())

            async def _on_send_failure(exc: Exception, conn_id: str = conn_id):
                logger.info(
                    "Cleaning up connection %s after send failure: %s", conn_id, exc
                )
                await self.unregister(conn_id)

            self._conns[conn_id] = _Connection(
                websocket,
                ConnectionMeta(connection_id=conn_id, user_id=user_id),
                queue_size=self.send_queue_size,
                on_send_failure=_on_send_failure,
            )
            total = len(self._conns)

        logger.info(
            f"WebSocket registered: {conn_id} [{total}/"
            f"{self.max_connections if self.enable_limits else 'unlimited'}]",
            extra={"conn_id": conn_id},
        )
        return conn_id

    async def unregister(self, connection_id: str) -> None:
        async with self._lock:
            conn = self._conns.pop(connection_id, None)
        if conn is None:
            return
        await conn.close()
        logger.info(f"WebSocket unregistered: {connection_id}")

    async def send_to_connection(
        self, connection_id: str, payload: Dict[str, Any]
    ) -> bool:
        """Queue a frame for one connection; False if it is gone."""
        async with self._lock:
            conn = self._conns.get(connection_id)
        if conn is None or conn.closed:
            return False
        await conn.send_json(payload)
        return True

    async def count(self) -> int:
        async with self._lock:
            return len(self._conns)

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            count = len(self._conns)
        return {
            "connections": count,
            "max_connections": self.max_connections if self.enable_limits else None,
            "utilization_percent": round(count / self.max_connections * 100, 1)
            if self.enable_limits and self.max_connections
            else None,
            "rejected_count": self._rejected_count,
            "limits_enabled": self.enable_limits,
        }
