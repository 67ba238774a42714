"""
Backend Capability Ports
========================

Uniform async call contracts for the capabilities the orchestration core
depends on. Concrete adapters live next to this module; tests substitute
``AsyncMock`` objects with the same surface.

Every call may raise (``BackendCallError`` or any other exception) and has
unpredictable latency. Timeouts are applied by the caller, never here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass
class TranscriptionResult:
    text: str
    confidence: float = 0.0
    language: Optional[str] = None


@dataclass
class SpeechResult:
    audio_url: Optional[str]
    audio_data: Optional[str] = None  # base64 payload when no URL is hosted
    voice_id: Optional[str] = None


@dataclass
class GenerationResult:
    content: str
    model: Optional[str] = None


@dataclass
class ImageResult:
    image_url: Optional[str]
    image_data: Optional[str] = None


@runtime_checkable
class SpeechToText(Protocol):
    async def transcribe(
        self, audio: bytes, *, language: str = "en"
    ) -> TranscriptionResult: ...


@runtime_checkable
class TextToSpeech(Protocol):
    async def synthesize(
        self,
        text: str,
        *,
        voice_id: str = "default",
        language: str = "en",
        speed: float = 1.0,
        **options: Any,
    ) -> SpeechResult: ...


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 50,
    ) -> GenerationResult: ...


@runtime_checkable
class ImageGenerator(Protocol):
    async def generate_image(
        self,
        prompt: str,
        *,
        size: str = "1024x1024",
        quality: str = "high",
        style: str = "photorealistic",
    ) -> ImageResult: ...


@dataclass
class BackendSuite:
    """The set of capability ports an engine instance talks to."""

    stt: SpeechToText
    tts: TextToSpeech
    llm: TextGenerator
    images: ImageGenerator
    extras: Dict[str, Any] = field(default_factory=dict)
