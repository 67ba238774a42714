"""
Upload Endpoints
================

Multipart uploads that start likeness and voice-clone jobs. Progress is
delivered over the duplex channel (``subscribe_job``) or polled with
``get_job_progress``.
"""

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse

from avatarcore.exceptions import InvalidRequestError
from avatarcore.orchestration.engine import OrchestrationEngine
from apps.avatar_rt.backend.api.v1.dependencies.engine import get_engine
from apps.avatar_rt.backend.api.v1.schemas.uploads import (
    ErrorResponse,
    UploadAcceptedResponse,
)
from apps.avatar_rt.backend.config import (
    LIKENESS_ESTIMATED_TIME,
    MAX_AUDIO_UPLOAD_BYTES,
    MAX_IMAGE_UPLOAD_BYTES,
    UPLOAD_LIKENESS_PATH,
    UPLOAD_VOICE_PATH,
    VOICE_CLONE_ESTIMATED_TIME,
)
from utils.ml_logging import get_logger

logger = get_logger("v1.uploads")

router = APIRouter()

_READ_CHUNK_BYTES = 1024 * 1024

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid fields"},
    413: {"model": ErrorResponse, "description": "Upload too large"},
}


def _error(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _accepted(message: str, job_id: str, estimated_time: str) -> JSONResponse:
    body = UploadAcceptedResponse(
        message=message, job_id=job_id, estimated_time=estimated_time
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(by_alias=True)
    )


async def _read_capped(upload: UploadFile, limit: int) -> Optional[bytes]:
    """Read an upload in chunks; None once it grows past ``limit``."""
    buffer = bytearray()
    while True:
        chunk = await upload.read(_READ_CHUNK_BYTES)
        if not chunk:
            return bytes(buffer)
        buffer.extend(chunk)
        if len(buffer) > limit:
            return None


def _parse_options(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        options = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidRequestError("options must be valid JSON", field="options") from exc
    if not isinstance(options, dict):
        raise InvalidRequestError("options must be a JSON object", field="options")
    return options


@router.post(
    UPLOAD_LIKENESS_PATH,
    status_code=status.HTTP_202_ACCEPTED,
    response_model=UploadAcceptedResponse,
    responses=_ERROR_RESPONSES,
    summary="Start a likeness job from a face photo",
)
async def upload_likeness(
    user_id: Optional[str] = Form(None, alias="userId"),
    image: Optional[UploadFile] = File(None),
    options: Optional[str] = Form(None),
    engine: OrchestrationEngine = Depends(get_engine),
):
    if not user_id or image is None:
        return _error("userId and image file required")

    image_bytes = await _read_capped(image, MAX_IMAGE_UPLOAD_BYTES)
    if image_bytes is None:
        return _error("image file too large", status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

    try:
        job_id = await engine.submit_likeness(
            user_id, image_bytes, _parse_options(options)
        )
    except InvalidRequestError as exc:
        return _error(str(exc))

    logger.info(
        f"Likeness job {job_id} started for {user_id} ({len(image_bytes)} bytes)",
        extra={"job_id": job_id},
    )
    return _accepted("Likeness generation started", job_id, LIKENESS_ESTIMATED_TIME)


@router.post(
    UPLOAD_VOICE_PATH,
    status_code=status.HTTP_202_ACCEPTED,
    response_model=UploadAcceptedResponse,
    responses=_ERROR_RESPONSES,
    summary="Start a voice-clone job from a voice sample",
)
async def upload_voice(
    user_id: Optional[str] = Form(None, alias="userId"),
    audio: Optional[UploadFile] = File(None),
    engine: OrchestrationEngine = Depends(get_engine),
):
    if not user_id or audio is None:
        return _error("userId and audio file required")

    audio_bytes = await _read_capped(audio, MAX_AUDIO_UPLOAD_BYTES)
    if audio_bytes is None:
        return _error("audio file too large", status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

    try:
        job_id = await engine.submit_voice_clone(user_id, audio_bytes)
    except InvalidRequestError as exc:
        return _error(str(exc))

    logger.info(
        f"Voice clone job {job_id} started for {user_id} ({len(audio_bytes)} bytes)",
        extra={"job_id": job_id},
    )
    return _accepted("Voice cloning started", job_id, VOICE_CLONE_ESTIMATED_TIME)
