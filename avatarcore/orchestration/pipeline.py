"""
Interactive turn pipeline.

One turn for a session goes through, in order:

1. the canned-intent fast path (no backend, no cache);
2. the response cache tier;
3. a concurrent fan-out of language generation and speech synthesis joined
   with ``settle``; each branch has its own timeout and neither failure
   aborts the other;
4. composition: generation failure substitutes the fallback reply, synthesis
   failure yields a text-only reply (degraded, not an error);
5. caching of the composed reply (degraded replies included) and metrics.

``run_turn`` wraps ``respond`` with session bookkeeping and delivery. A reply
computed for a session that ended while the backends were running is dropped.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from avatarcore.backends.ports import BackendSuite
from avatarcore.cache.tiered_cache import TieredCache
from avatarcore.enums.monitoring import SpanAttr
from avatarcore.enums.orchestration import CacheTier, Priority
from avatarcore.orchestration.canned_responses import match_canned_response
from avatarcore.orchestration.engine_config import EngineConfig
from avatarcore.orchestration.settle import settle
from avatarcore.pools.event_broadcaster import EventBroadcaster
from avatarcore.pools.session_manager import AvatarSession, ThreadSafeSessionManager
from avatarcore.pools.session_metrics import ThreadSafeSessionMetrics
from utils.ml_logging import get_logger
from utils.trace_context import create_trace_context

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TurnResult:
    session_id: str
    content: str
    audio_url: Optional[str] = None
    cached: bool = False
    degraded: bool = False
    error: bool = False
    intent: Optional[str] = None
    latency_ms: float = 0.0
    timestamp: str = field(default_factory=_utc_now_iso)

    def cache_value(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "audio_url": self.audio_url,
            "degraded": self.degraded,
        }

    def to_message(self) -> Dict[str, Any]:
        message = {
            "sessionId": self.session_id,
            "content": self.content,
            "messageType": "assistant",
            "timestamp": self.timestamp,
            "audioUrl": self.audio_url,
            "cached": self.cached,
            "latency": round(self.latency_ms, 2),
            "processingTime": round(self.latency_ms, 2),
        }
        if self.degraded:
            message["degraded"] = True
        if self.error:
            message["error"] = True
        return message


@dataclass
class TranscriptionOutcome:
    text: str
    confidence: float
    cached: bool = False
    error: bool = False
    latency_ms: float = 0.0


class InteractivePipeline:
    """Coordinates cache, capability fan-out and fallback for one turn."""

    def __init__(
        self,
        *,
        backends: BackendSuite,
        cache: TieredCache,
        metrics: ThreadSafeSessionMetrics,
        sessions: ThreadSafeSessionManager,
        broadcaster: EventBroadcaster,
        config: EngineConfig,
        perf_clock: Callable[[], float] = time.perf_counter,
    ):
        self._backends = backends
        self._cache = cache
        self._metrics = metrics
        self._sessions = sessions
        self._broadcaster = broadcaster
        self._config = config
        self._perf_clock = perf_clock

    def _elapsed_ms(self, start: float) -> float:
        return (self._perf_clock() - start) * 1000

    async def respond(
        self, session: AvatarSession, text: str, priority: Optional[Priority] = None
    ) -> TurnResult:
        """Compute the assistant reply for ``text``. Never raises for backend errors."""
        priority = Priority.parse(priority, default=session.priority)
        start = self._perf_clock()

        with create_trace_context(
            "pipeline.turn",
            session_id=session.session_id,
            metadata={"priority": priority.value, "text_length": len(text)},
        ) as span:
            try:
                result = await self._respond(session, text, priority, start)
            except Exception as exc:
                logger.error(
                    "Turn failed unexpectedly for %s: %s",
                    session.session_id,
                    exc,
                    exc_info=True,
                    extra={"session_id": session.session_id},
                )
                result = TurnResult(
                    session_id=session.session_id,
                    content=self._config.error_reply,
                    error=True,
                    latency_ms=self._elapsed_ms(start),
                )
                await self._metrics.record_request(result.latency_ms, cache_hit=False)

            span.set_attribute(SpanAttr.CACHE_HIT, result.cached)
            span.set_attribute(SpanAttr.TURN_DEGRADED, result.degraded)
            span.set_attribute(SpanAttr.TURN_LATENCY_MS, result.latency_ms)
        return result

    async def _respond(
        self, session: AvatarSession, text: str, priority: Priority, start: float
    ) -> TurnResult:
        session_id = session.session_id

        canned = match_canned_response(text)
        if canned is not None:
            intent, reply = canned
            result = TurnResult(
                session_id=session_id,
                content=reply,
                intent=intent,
                latency_ms=self._elapsed_ms(start),
            )
            await self._metrics.record_request(result.latency_ms, cache_hit=False)
            return result

        cache_key = self._cache.response_key(session_id, text)
        cached = await self._cache.get(CacheTier.RESPONSE, cache_key)
        if cached is not None:
            result = TurnResult(
                session_id=session_id,
                content=cached["content"],
                audio_url=cached.get("audio_url"),
                degraded=cached.get("degraded", False),
                cached=True,
                latency_ms=self._elapsed_ms(start),
            )
            await self._metrics.record_request(result.latency_ms, cache_hit=True)
            return result

        config = session.avatar_config
        branches = {
            "llm": self._backends.llm.generate(
                [
                    {
                        "role": "system",
                        "content": f"{config.personality}. Respond concisely in 1-2 sentences.",
                    },
                    {"role": "user", "content": text},
                ],
                temperature=self._config.llm_temperature,
                max_tokens=self._config.llm_max_tokens,
            )
        }
        speech_key = self._cache.speech_key(text)
        audio_url = await self._cache.get(CacheTier.SPEECH, speech_key)
        if audio_url is None:
            branches["tts"] = self._backends.tts.synthesize(
                text,
                voice_id=config.voice_id,
                language=config.language,
                speed=self._config.tts_speed,
            )

        outcomes = await settle(
            branches,
            timeouts={
                name: self._config.timeout_for(name, priority) for name in branches
            },
        )

        llm = outcomes["llm"]
        content = llm.value.content if llm.ok else self._config.fallback_reply
        if not llm.ok:
            logger.warning(
                "Generation unavailable for %s, using fallback: %s",
                session_id,
                llm.error,
                extra={"session_id": session_id},
            )

        tts = outcomes.get("tts")
        if tts is not None:
            if tts.ok and tts.value.audio_url:
                audio_url = tts.value.audio_url
                await self._cache.set(CacheTier.SPEECH, speech_key, audio_url)
            else:
                logger.warning(
                    "Synthesis unavailable for %s, replying text-only: %s",
                    session_id,
                    tts.error,
                    extra={"session_id": session_id},
                )

        result = TurnResult(
            session_id=session_id,
            content=content,
            audio_url=audio_url,
            degraded=not llm.ok or audio_url is None,
            latency_ms=self._elapsed_ms(start),
        )
        await self._cache.set(CacheTier.RESPONSE, cache_key, result.cache_value())
        await self._metrics.record_request(result.latency_ms, cache_hit=False)
        logger.debug(
            "Turn for %s completed in %.1fms (degraded=%s)",
            session_id,
            result.latency_ms,
            result.degraded,
        )
        return result

    async def run_turn(
        self, session_id: str, text: str, priority: Any = None
    ) -> Optional[TurnResult]:
        """
        Full turn for an inbound message: bookkeeping, user echo, reply and
        optional ``audio_stream``. Returns None for unknown sessions or when
        the session ended before the reply was ready.
        """
        session = await self._sessions.record_message(session_id)
        if session is None:
            return None

        await self._broadcaster.publish(
            session_id,
            "message",
            {
                "sessionId": session_id,
                "content": text,
                "messageType": "user",
                "timestamp": _utc_now_iso(),
            },
        )

        result = await self.respond(session, text, Priority.parse(priority, session.priority))

        if await self._sessions.touch(session_id) is None:
            logger.info(
                "Discarding reply for ended session %s",
                session_id,
                extra={"session_id": session_id},
            )
            return None

        await self._broadcaster.publish(session_id, "message", result.to_message())
        if result.audio_url:
            await self._broadcaster.publish(
                session_id,
                "audio_stream",
                {"sessionId": session_id, "audioUrl": result.audio_url},
            )
        return result

    async def transcribe(
        self,
        audio: bytes,
        *,
        language: str = "en",
        priority: Priority = Priority.NORMAL,
    ) -> TranscriptionOutcome:
        """Speech-to-text through the transcription cache tier."""
        start = self._perf_clock()
        key = self._cache.transcription_key(audio)
        cached = await self._cache.get(CacheTier.TRANSCRIPTION, key)
        if cached is not None:
            return TranscriptionOutcome(
                text=cached["text"],
                confidence=cached["confidence"],
                cached=True,
                latency_ms=self._elapsed_ms(start),
            )

        outcome = (
            await settle(
                {"stt": self._backends.stt.transcribe(audio, language=language)},
                timeouts={"stt": self._config.timeout_for("stt", priority)},
            )
        )["stt"]
        if not outcome.ok:
            logger.error("Transcription failed: %s", outcome.error)
            return TranscriptionOutcome(
                text="",
                confidence=0.0,
                error=True,
                latency_ms=self._elapsed_ms(start),
            )

        text = outcome.value.text
        confidence = float(outcome.value.confidence)
        if self._cache.accepts_transcription(text):
            await self._cache.set(
                CacheTier.TRANSCRIPTION, key, {"text": text, "confidence": confidence}
            )
        return TranscriptionOutcome(
            text=text,
            confidence=confidence,
            latency_ms=self._elapsed_ms(start),
        )
