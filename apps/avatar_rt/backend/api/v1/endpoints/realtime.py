"""
V1 Realtime API Endpoints
=========================

Duplex event channel for avatar conversations and job progress.

Frames in both directions are JSON objects ``{"event": <name>, "data": {...}}``.
Each connection subscribes to the rooms of the sessions it starts and the jobs
it launches or joins; everything published to those rooms is relayed through
the connection's send queue, so frames for one connection keep their order.

WebSocket Flow:
1. Accept and register the connection (rejected when at capacity)
2. Validate each inbound frame and dispatch it to the engine
3. Run conversation turns as background tasks so the channel keeps reading
4. Reply with an ``error`` frame on bad input; the socket stays open
5. On disconnect, end every session the connection owned
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from pydantic import ValidationError

from avatarcore.exceptions import BackendCallError, InvalidRequestError
from avatarcore.orchestration.engine import OrchestrationEngine
from avatarcore.pools.connection_manager import ThreadSafeConnectionManager
from apps.avatar_rt.backend.config import REALTIME_WS_PATH
from apps.avatar_rt.backend.src.ws_helpers.envelopes import (
    make_error_frame,
    make_event_frame,
)
from utils.ml_logging import get_logger, log_with_correlation

from ..schemas.realtime import (
    INBOUND_EVENT_MODELS,
    ClonedVoiceTestEvent,
    GenerateVideoEvent,
    InboundEvent,
    JobRefEvent,
    MessageEvent,
    SessionRefEvent,
    StartSessionEvent,
    StreamAudioEvent,
    UserRefEvent,
    WSFrame,
)

logger = get_logger("api.v1.endpoints.realtime")
tracer = trace.get_tracer(__name__)

router = APIRouter()


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {first.get('msg', 'invalid value')}"
    return first.get("msg", "invalid value")


class AvatarChannel:
    """Dispatches the inbound events of one WebSocket connection."""

    def __init__(
        self,
        engine: OrchestrationEngine,
        conn_manager: ThreadSafeConnectionManager,
        conn_id: str,
    ):
        self.engine = engine
        self.conn_manager = conn_manager
        self.conn_id = conn_id
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "start_session": self._on_start_session,
            "message": self._on_message,
            "stream_audio": self._on_stream_audio,
            "end_session": self._on_end_session,
            "get_job_progress": self._on_get_job_progress,
            "subscribe_job": self._on_subscribe_job,
            "generate_video": self._on_generate_video,
            "get_likeness_model": self._on_get_likeness_model,
            "get_voice_clone": self._on_get_voice_clone,
            "test_cloned_voice": self._on_test_cloned_voice,
            "get_performance_metrics": self._on_get_performance_metrics,
        }

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #
    async def send(self, event: str, data: Dict[str, Any]) -> None:
        await self.conn_manager.send_to_connection(
            self.conn_id, make_event_frame(event, data)
        )

    async def send_error(self, message: str, error_type: str = "invalid_request", **kwargs) -> None:
        await self.conn_manager.send_to_connection(
            self.conn_id, make_error_frame(message, error_type, **kwargs)
        )

    async def listener(self, event: str, data: Dict[str, Any]) -> None:
        """Room listener relaying broadcaster events to this connection."""
        await self.send(event, data)

    def spawn(self, coro: Awaitable[Any], request_event: str) -> None:
        """Run a long unit of work without blocking the receive loop."""
        task = asyncio.create_task(self._guarded(coro, request_event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #
    async def dispatch(self, raw: str) -> None:
        """Validate one frame and run its handler. Never raises."""
        try:
            frame = WSFrame.model_validate(json.loads(raw))
        except json.JSONDecodeError:
            await self.send_error("Invalid JSON")
            return
        except ValidationError as exc:
            await self.send_error(f"Malformed frame: {_validation_message(exc)}")
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            await self.send_error(f"Unknown event: {frame.event}", request_event=frame.event)
            return

        try:
            payload = INBOUND_EVENT_MODELS[frame.event].model_validate(frame.data)
        except ValidationError as exc:
            await self.send_error(_validation_message(exc), request_event=frame.event)
            return

        await self._guarded(handler(payload), frame.event)

    async def _guarded(self, coro: Awaitable[Any], request_event: str) -> None:
        try:
            await coro
        except InvalidRequestError as exc:
            await self.send_error(str(exc), request_event=request_event, field=exc.field)
        except Exception as exc:
            logger.error(
                "Unhandled error processing %s: %s",
                request_event,
                exc,
                exc_info=True,
                extra={"conn_id": self.conn_id},
            )
            await self.send_error(
                f"Failed to process {request_event}",
                "internal",
                request_event=request_event,
            )

    async def _on_start_session(self, event: StartSessionEvent) -> None:
        session = await self.engine.start_session(
            event.user_id,
            event.avatar_id,
            event.priority,
            connection_id=self.conn_id,
            listener=self.listener,
        )
        await self.send(
            "session_started",
            {
                "sessionId": session.session_id,
                "avatarConfig": session.avatar_config.to_dict(),
                "priority": session.priority.value,
            },
        )
        if event.message:
            self.spawn(
                self.engine.handle_message(session.session_id, event.message),
                "start_session",
            )

    async def _on_message(self, event: MessageEvent) -> None:
        if await self.engine.sessions.get(event.session_id) is None:
            await self.send_error("Session not found", "not_found", request_event="message")
            return
        self.spawn(
            self.engine.handle_message(
                event.session_id, event.content, event.type, event.priority
            ),
            "message",
        )

    async def _on_stream_audio(self, event: StreamAudioEvent) -> None:
        # unknown sessions are ignored for streamed chunks
        if await self.engine.sessions.get(event.session_id) is None:
            return
        self.spawn(
            self.engine.stream_audio(event.session_id, event.audio_chunk, event.sequence),
            "stream_audio",
        )

    async def _on_end_session(self, event: SessionRefEvent) -> None:
        if not await self.engine.end_session(event.session_id):
            await self.send_error("Session not found", "not_found", request_event="end_session")

    async def _on_get_job_progress(self, event: JobRefEvent) -> None:
        await self.send("job_progress", await self.engine.job_progress(event.job_id))

    async def _on_subscribe_job(self, event: JobRefEvent) -> None:
        subscription = await self.engine.subscribe_job(
            event.job_id, self.listener, subscriber_id=self.conn_id
        )
        if subscription is None:
            await self.send("job_progress", await self.engine.job_progress(event.job_id))
            return
        await self.send("job_subscribed", {"jobId": event.job_id})

    async def _on_generate_video(self, event: GenerateVideoEvent) -> None:
        job_id = await self.engine.submit_video(
            event.user_id or self.conn_id,
            event.script,
            event.avatar_config,
            event.video_config,
            job_id=event.job_id,
            listener=self.listener,
            subscriber_id=self.conn_id,
        )
        await self.send("video_generation_started", {"jobId": job_id})

    async def _on_get_likeness_model(self, event: UserRefEvent) -> None:
        model = await self.engine.get_likeness_model(event.user_id)
        if model is None:
            await self.send("likeness_model", {"userId": event.user_id, "error": "Model not found"})
        else:
            await self.send("likeness_model", {"userId": event.user_id, "model": model})

    async def _on_get_voice_clone(self, event: UserRefEvent) -> None:
        clone = await self.engine.get_voice_clone(event.user_id)
        if clone is None:
            await self.send(
                "voice_clone", {"userId": event.user_id, "error": "Voice clone not found"}
            )
        else:
            await self.send("voice_clone", {"userId": event.user_id, "voiceClone": clone})

    async def _on_test_cloned_voice(self, event: ClonedVoiceTestEvent) -> None:
        self.spawn(self._test_cloned_voice(event), "test_cloned_voice")

    async def _test_cloned_voice(self, event: ClonedVoiceTestEvent) -> None:
        try:
            speech = await self.engine.test_cloned_voice(event.user_id, event.text)
        except BackendCallError as exc:
            logger.warning("Cloned voice synthesis failed for %s: %s", event.user_id, exc)
            await self.send("voice_test_error", {"error": "Failed to generate speech"})
            return
        if speech is None:
            await self.send("voice_test_error", {"error": "Voice clone not found"})
            return
        await self.send(
            "voice_test_result",
            {
                "userId": event.user_id,
                "text": event.text,
                "audioUrl": speech.audio_url,
                "audioData": speech.audio_data,
            },
        )

    async def _on_get_performance_metrics(self, event: InboundEvent) -> None:
        await self.send("performance_metrics", await self.engine.performance_snapshot())


@router.websocket(REALTIME_WS_PATH)
async def avatar_channel_endpoint(websocket: WebSocket) -> None:
    """
    Duplex event channel for avatar sessions and job progress.

    Inbound events: ``start_session``, ``message``, ``stream_audio``,
    ``end_session``, ``get_job_progress``, ``subscribe_job``,
    ``generate_video``, ``get_likeness_model``, ``get_voice_clone``,
    ``test_cloned_voice`` and ``get_performance_metrics``.
    """
    engine: OrchestrationEngine = websocket.app.state.engine
    conn_manager: ThreadSafeConnectionManager = websocket.app.state.conn_manager

    await websocket.accept()
    try:
        conn_id = await conn_manager.register(websocket)
    except RuntimeError as exc:
        await websocket.send_json(make_error_frame(str(exc), "internal"))
        await websocket.close(code=1013)
        return

    channel = AvatarChannel(engine, conn_manager, conn_id)
    with tracer.start_as_current_span(
        "api.v1.realtime.avatar_channel_connect",
        kind=SpanKind.SERVER,
        attributes={"api.version": "v1", "network.protocol.name": "websocket"},
    ):
        await engine.metrics.increment_connected()
        log_with_correlation(
            logger,
            logging.INFO,
            f"Avatar channel connected: {conn_id}",
            operation_name="avatar_channel_connect",
            custom_attributes={"ws.connection_id": conn_id},
        )

    try:
        while True:
            raw = await websocket.receive_text()
            await channel.dispatch(raw)
    except WebSocketDisconnect as exc:
        logger.info(f"Avatar channel {conn_id} disconnected (code={exc.code})")
    finally:
        removed = await engine.disconnect(conn_id)
        await conn_manager.unregister(conn_id)
        await engine.metrics.increment_disconnected()
        await channel.drain()
        log_with_correlation(
            logger,
            logging.INFO,
            f"Avatar channel cleanup complete: {conn_id} ({len(removed)} sessions ended)",
            operation_name="avatar_channel_cleanup",
            custom_attributes={"ws.connection_id": conn_id},
        )
