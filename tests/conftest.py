# Disable cloud telemetry so utils/ml_logging avoids attaching the OpenTelemetry
# LoggingHandler. This must be set before importing modules that call
# get_logger() at import time.
import os

os.environ.setdefault("DISABLE_CLOUD_TELEMETRY", "true")
os.environ.pop("APPLICATIONINSIGHTS_CONNECTION_STRING", None)

from types import SimpleNamespace
from typing import Any, Dict, List, Tuple
from unittest.mock import AsyncMock

import pytest

from avatarcore.backends.ports import (
    BackendSuite,
    GenerationResult,
    ImageResult,
    SpeechResult,
    TranscriptionResult,
)
from avatarcore.orchestration.engine import OrchestrationEngine
from avatarcore.orchestration.engine_config import EngineConfig

T0 = 1_700_000_000.0


class ManualClock:
    """Deterministic clock; tests move time with ``advance``."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class EventRecorder:
    """Broadcaster listener that keeps every event it receives."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def __call__(self, event: str, data: Dict[str, Any]) -> None:
        self.events.append((event, data))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Dict[str, Any]]:
        return [data for event, data in self.events if event == name]


def make_backends() -> BackendSuite:
    return BackendSuite(
        stt=SimpleNamespace(
            transcribe=AsyncMock(
                return_value=TranscriptionResult(text="what time is it", confidence=0.92)
            )
        ),
        tts=SimpleNamespace(
            synthesize=AsyncMock(
                return_value=SpeechResult(audio_url="data:audio/mpeg;base64,AAAA")
            )
        ),
        llm=SimpleNamespace(
            generate=AsyncMock(return_value=GenerationResult(content="It is noon."))
        ),
        images=SimpleNamespace(
            generate_image=AsyncMock(
                return_value=ImageResult(image_url="https://images.example/avatar.png")
            )
        ),
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def backends() -> BackendSuite:
    return make_backends()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def engine(backends, engine_config, clock) -> OrchestrationEngine:
    return OrchestrationEngine(backends, engine_config, clock=clock)
