"""
Realtime API Schemas
====================

Pydantic schemas for the duplex event channel.

Every inbound frame is ``{"event": <name>, "data": {...}}``; ``data`` is
validated against the model registered for the event name in
``INBOUND_EVENT_MODELS``. Field names on the wire are camelCase.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

PriorityName = Literal["normal", "high"]


class WSFrame(BaseModel):
    """Envelope of every inbound frame."""

    event: str = Field(
        ...,
        min_length=1,
        description="Event name",
        json_schema_extra={"example": "start_session"},
    )
    data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload",
        json_schema_extra={"example": {"userId": "u1", "avatarId": "assistant"}},
    )


class InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartSessionEvent(InboundEvent):
    """Open a conversation session with an avatar."""

    user_id: str = Field(
        ..., alias="userId", min_length=1, json_schema_extra={"example": "user-42"}
    )
    avatar_id: str = Field(
        ..., alias="avatarId", min_length=1, json_schema_extra={"example": "assistant"}
    )
    priority: Optional[PriorityName] = Field(
        default=None, description="Default priority for the session's turns"
    )
    message: Optional[str] = Field(
        default=None, description="Optional first message run as the first turn"
    )


class MessageEvent(InboundEvent):
    """A text message, or base64 audio when ``type`` is ``audio``."""

    session_id: str = Field(..., alias="sessionId", min_length=1)
    content: str = Field(..., min_length=1)
    type: Literal["text", "audio"] = Field(default="text")
    priority: Optional[PriorityName] = None


class StreamAudioEvent(InboundEvent):
    session_id: str = Field(..., alias="sessionId", min_length=1)
    audio_chunk: str = Field(..., alias="audioChunk", min_length=1)
    sequence: Optional[int] = None


class SessionRefEvent(InboundEvent):
    session_id: str = Field(..., alias="sessionId", min_length=1)


class JobRefEvent(InboundEvent):
    job_id: str = Field(..., alias="jobId", min_length=1)


class GenerateVideoEvent(InboundEvent):
    """Start a video job from a script."""

    job_id: Optional[str] = Field(default=None, alias="jobId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    script: str = Field(..., min_length=1)
    avatar_config: Dict[str, Any] = Field(default_factory=dict, alias="avatarConfig")
    video_config: Dict[str, Any] = Field(default_factory=dict, alias="videoConfig")


class UserRefEvent(InboundEvent):
    user_id: str = Field(..., alias="userId", min_length=1)


class ClonedVoiceTestEvent(InboundEvent):
    user_id: str = Field(..., alias="userId", min_length=1)
    text: str = Field(..., min_length=1)


class EmptyEvent(InboundEvent):
    pass


INBOUND_EVENT_MODELS: Dict[str, Type[InboundEvent]] = {
    "start_session": StartSessionEvent,
    "message": MessageEvent,
    "stream_audio": StreamAudioEvent,
    "end_session": SessionRefEvent,
    "get_job_progress": JobRefEvent,
    "subscribe_job": JobRefEvent,
    "generate_video": GenerateVideoEvent,
    "get_likeness_model": UserRefEvent,
    "get_voice_clone": UserRefEvent,
    "test_cloned_voice": ClonedVoiceTestEvent,
    "get_performance_metrics": EmptyEvent,
}
