"""
OpenAI capability adapters.

Each adapter implements one port from ``avatarcore.backends.ports`` on top of a
shared ``AsyncOpenAI``/``AsyncAzureOpenAI`` client and converts SDK errors into
``BackendCallError`` so the pipelines can apply their fallback policy.
"""

from __future__ import annotations

import base64
import math
from typing import Any, Dict, List, Optional

from openai import OpenAIError

from avatarcore.backends.ports import (
    BackendSuite,
    GenerationResult,
    ImageResult,
    SpeechResult,
    TranscriptionResult,
)
from avatarcore.exceptions import BackendCallError
from utils.ml_logging import get_logger

logger = get_logger(__name__)

OPENAI_VOICES = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}


class OpenAITextGenerator:
    """Chat completion backed language generation."""

    name = "llm"

    def __init__(self, client, model: str):
        self._client = client
        self._model = model

    async def generate(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 50,
    ) -> GenerationResult:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise BackendCallError(self.name, str(exc)) from exc

        if not response.choices:
            raise BackendCallError(self.name, "empty completion")
        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise BackendCallError(self.name, "completion had no text")
        return GenerationResult(content=content, model=getattr(response, "model", None))


class OpenAISpeechSynthesizer:
    """Text-to-speech returning an inline ``data:`` audio reference."""

    name = "tts"

    def __init__(self, client, model: str, default_voice: str = "alloy"):
        self._client = client
        self._model = model
        self._default_voice = default_voice

    def _resolve_voice(self, voice_id: Optional[str]) -> str:
        if voice_id and voice_id.lower() in OPENAI_VOICES:
            return voice_id.lower()
        return self._default_voice

    async def synthesize(
        self,
        text: str,
        *,
        voice_id: str = "default",
        language: str = "en",
        speed: float = 1.0,
        **options: Any,
    ) -> SpeechResult:
        voice = self._resolve_voice(voice_id)
        # the API only accepts 0.25-4.0
        speed = min(max(float(speed), 0.25), 4.0)
        try:
            response = await self._client.audio.speech.create(
                model=self._model,
                voice=voice,
                input=text,
                speed=speed,
                response_format="mp3",
            )
        except OpenAIError as exc:
            raise BackendCallError(self.name, str(exc)) from exc

        encoded = base64.b64encode(response.content).decode("ascii")
        return SpeechResult(
            audio_url=f"data:audio/mpeg;base64,{encoded}",
            audio_data=encoded,
            voice_id=voice,
        )


class OpenAITranscriber:
    """Whisper transcription with a confidence derived from segment log-probs."""

    name = "stt"

    def __init__(self, client, model: str):
        self._client = client
        self._model = model

    async def transcribe(
        self, audio: bytes, *, language: str = "en"
    ) -> TranscriptionResult:
        try:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=("audio.wav", audio),
                language=language,
                response_format="verbose_json",
            )
        except OpenAIError as exc:
            raise BackendCallError(self.name, str(exc)) from exc

        text = (getattr(response, "text", "") or "").strip()
        return TranscriptionResult(
            text=text,
            confidence=self._confidence(response, text),
            language=getattr(response, "language", None) or language,
        )

    @staticmethod
    def _confidence(response: Any, text: str) -> float:
        segments = getattr(response, "segments", None) or []
        logprobs = [
            seg.avg_logprob
            for seg in segments
            if getattr(seg, "avg_logprob", None) is not None
        ]
        if not logprobs:
            return 1.0 if text else 0.0
        return max(0.0, min(1.0, math.exp(sum(logprobs) / len(logprobs))))


class OpenAIImageGenerator:
    """Image generation mapped onto the images API quality/style knobs."""

    name = "images"

    def __init__(self, client, model: str):
        self._client = client
        self._model = model

    async def generate_image(
        self,
        prompt: str,
        *,
        size: str = "1024x1024",
        quality: str = "high",
        style: str = "photorealistic",
    ) -> ImageResult:
        api_quality = "hd" if quality in ("high", "ultra", "hd") else "standard"
        api_style = "natural" if style in ("photorealistic", "realistic", "natural") else "vivid"
        try:
            response = await self._client.images.generate(
                model=self._model,
                prompt=prompt,
                size=size,
                quality=api_quality,
                style=api_style,
                n=1,
            )
        except OpenAIError as exc:
            raise BackendCallError(self.name, str(exc)) from exc

        if not response.data:
            raise BackendCallError(self.name, "no image returned")
        image = response.data[0]
        return ImageResult(
            image_url=getattr(image, "url", None),
            image_data=getattr(image, "b64_json", None),
        )


def build_openai_backend_suite(
    client,
    *,
    chat_model: str,
    tts_model: str,
    stt_model: str,
    image_model: str,
    default_voice: str = "alloy",
) -> BackendSuite:
    """Wire all four capability ports onto one shared client."""
    logger.info(
        "Building OpenAI backend suite",
        extra={
            "chat_model": chat_model,
            "tts_model": tts_model,
            "stt_model": stt_model,
            "image_model": image_model,
        },
    )
    return BackendSuite(
        stt=OpenAITranscriber(client, stt_model),
        tts=OpenAISpeechSynthesizer(client, tts_model, default_voice=default_voice),
        llm=OpenAITextGenerator(client, chat_model),
        images=OpenAIImageGenerator(client, image_model),
        extras={"client": client},
    )
