"""
Orchestration Engine
====================

Owns every piece of process-wide state (sessions, jobs, cache tiers, metrics,
broadcaster, trained-model retention) for one engine instance and exposes the
operations the transport layer calls. Nothing here is a module-level
singleton; tests build as many engines as they like.

``start()`` launches the idle-session, stale-job and cache-expiry sweeps as
periodic tasks; ``stop()`` cancels them along with any job still running.
Each sweep is also callable directly.
"""

import asyncio
import base64
import binascii
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from avatarcore.backends.ports import BackendSuite, SpeechResult
from avatarcore.cache.tiered_cache import TieredCache, TTLStore
from avatarcore.enums.orchestration import JobKind, MessageType, Priority
from avatarcore.exceptions import InvalidRequestError
from avatarcore.orchestration.engine_config import EngineConfig
from avatarcore.orchestration.job_pipelines import JobPipelines
from avatarcore.orchestration.pipeline import (
    InteractivePipeline,
    TranscriptionOutcome,
    TurnResult,
)
from avatarcore.pools.event_broadcaster import EventBroadcaster, Listener
from avatarcore.pools.job_manager import JobManager
from avatarcore.pools.periodic import PeriodicTask
from avatarcore.pools.session_manager import (
    AvatarConfig,
    AvatarSession,
    ThreadSafeSessionManager,
)
from avatarcore.pools.session_metrics import ThreadSafeSessionMetrics
from utils.ml_logging import get_logger
from utils.trace_context import create_trace_context

logger = get_logger(__name__)

AvatarLoader = Callable[[str], Awaitable[Optional[AvatarConfig]]]


class AvatarCatalog:
    """Resolves avatar personas, memoised per avatar id."""

    def __init__(
        self,
        *,
        ttl_s: float,
        clock: Callable[[], float],
        profiles: Optional[Dict[str, AvatarConfig]] = None,
        loader: Optional[AvatarLoader] = None,
    ):
        self._profiles = dict(profiles or {})
        self._loader = loader
        self._memo = TTLStore("avatar-profiles", ttl_s, clock=clock, max_entries=1_000)

    async def resolve(self, avatar_id: str) -> AvatarConfig:
        cached = await self._memo.get(avatar_id)
        if cached is not None:
            return cached
        profile = self._profiles.get(avatar_id)
        if profile is None and self._loader is not None:
            profile = await self._loader(avatar_id)
        if profile is None:
            logger.info("No profile for avatar %s, using default persona", avatar_id)
            profile = AvatarConfig.default(avatar_id)
        await self._memo.set(avatar_id, profile)
        return profile


class OrchestrationEngine:
    def __init__(
        self,
        backends: BackendSuite,
        config: Optional[EngineConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        avatar_profiles: Optional[Dict[str, AvatarConfig]] = None,
        avatar_loader: Optional[AvatarLoader] = None,
    ):
        self.config = config or EngineConfig()
        self.backends = backends
        self._clock = clock

        self.broadcaster = EventBroadcaster()
        self.cache = TieredCache(
            ttls=self.config.tier_ttls(),
            clock=clock,
            max_entries_per_tier=self.config.cache_max_entries_per_tier,
            response_prefix_chars=self.config.response_prefix_chars,
            transcription_max_chars=self.config.transcription_cache_max_chars,
        )
        self.metrics = ThreadSafeSessionMetrics(smoothing=self.config.metrics_smoothing)
        self.sessions = ThreadSafeSessionManager(self.broadcaster, clock=clock)
        self.jobs = JobManager(self.broadcaster, clock=clock)
        self.avatars = AvatarCatalog(
            ttl_s=self.config.avatar_cache_ttl_s,
            clock=clock,
            profiles=avatar_profiles,
            loader=avatar_loader,
        )
        self.pipeline = InteractivePipeline(
            backends=backends,
            cache=self.cache,
            metrics=self.metrics,
            sessions=self.sessions,
            broadcaster=self.broadcaster,
            config=self.config,
        )
        self.job_pipelines = JobPipelines(
            backends=backends, jobs=self.jobs, config=self.config
        )
        self._likeness_models = TTLStore(
            "likeness-models", self.config.model_retention_s, clock=clock
        )
        self._voice_clones = TTLStore(
            "voice-clones", self.config.model_retention_s, clock=clock
        )

        self._job_tasks: Dict[str, asyncio.Task] = {}
        self._periodic: List[PeriodicTask] = [
            PeriodicTask(
                "session-idle-sweep",
                self.config.session_sweep_interval_s,
                self.sweep_idle_sessions,
            ),
            PeriodicTask(
                "job-stale-sweep", self.config.job_sweep_interval_s, self.sweep_stale_jobs
            ),
            PeriodicTask(
                "cache-expiry-sweep", self.config.cache_sweep_interval_s, self.sweep_cache
            ),
        ]
        self._started = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        for task in self._periodic:
            task.start()
        self._started = True
        logger.info("Orchestration engine started")

    async def stop(self) -> None:
        for task in self._periodic:
            await task.stop()
        pending: Dict[str, asyncio.Task] = {
            job_id: t for job_id, t in self._job_tasks.items() if not t.done()
        }
        for task in pending.values():
            task.cancel()
        if pending:
            await asyncio.gather(*pending.values(), return_exceptions=True)
        # a task cancelled before its first step never reaches _run_job's handler
        for job_id in pending:
            await self.jobs.fail(job_id, "Job cancelled")
        self._started = False
        logger.info("Orchestration engine stopped (%s jobs cancelled)", len(pending))

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #
    async def subscribe(
        self, scope_id: str, listener: Listener, *, subscriber_id: Optional[str] = None
    ) -> str:
        return await self.broadcaster.subscribe(
            scope_id, listener, subscriber_id=subscriber_id
        )

    async def subscribe_job(
        self, job_id: str, listener: Listener, *, subscriber_id: Optional[str] = None
    ) -> Optional[str]:
        """Join a job's room. Returns None for unknown jobs."""
        if await self.jobs.get(job_id) is None:
            return None
        return await self.subscribe(job_id, listener, subscriber_id=subscriber_id)

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    async def start_session(
        self,
        user_id: Optional[str],
        avatar_id: Optional[str],
        priority: Any = None,
        *,
        connection_id: Optional[str] = None,
        listener: Optional[Listener] = None,
    ) -> AvatarSession:
        """Create a session with a resolved avatar persona and join its room."""
        if not user_id or not avatar_id:
            raise InvalidRequestError("userId and avatarId are required")
        avatar_config = await self.avatars.resolve(avatar_id)
        session = await self.sessions.create_session(
            user_id,
            avatar_id,
            priority,
            avatar_config=avatar_config,
            connection_id=connection_id,
        )
        if listener is not None:
            await self.subscribe(
                session.session_id, listener, subscriber_id=connection_id
            )
        return session

    async def end_session(self, session_id: str) -> bool:
        return await self.sessions.remove(session_id, reason="ended")

    async def disconnect(self, connection_id: str) -> List[str]:
        """Tear down everything a duplex connection owned."""
        removed = await self.sessions.remove_for_connection(connection_id)
        await self.broadcaster.drop_subscriber(connection_id)
        return removed

    async def handle_message(
        self,
        session_id: str,
        content: str,
        message_type: Any = MessageType.TEXT,
        priority: Any = None,
    ) -> Optional[TurnResult]:
        """
        Process one inbound message. Audio content is base64 and is transcribed
        first. Returns None for unknown sessions, failed transcriptions or
        replies discarded because the session ended.
        """
        if not content:
            raise InvalidRequestError("content is required", field="content")
        try:
            message_type = MessageType(message_type)
        except ValueError as exc:
            raise InvalidRequestError(
                f"unsupported message type: {message_type}", field="type"
            ) from exc
        if message_type is MessageType.TEXT:
            return await self.pipeline.run_turn(session_id, content, priority)

        session = await self.sessions.get(session_id)
        if session is None:
            return None
        audio = decode_audio(content)
        outcome = await self.pipeline.transcribe(
            audio,
            language=session.avatar_config.language,
            priority=Priority.parse(priority, session.priority),
        )
        if outcome.error or not outcome.text:
            await self.broadcaster.publish(
                session_id, "error", {"message": "Speech recognition failed"}
            )
            return None
        await self.broadcaster.publish(
            session_id,
            "transcription",
            {
                "sessionId": session_id,
                "text": outcome.text,
                "confidence": outcome.confidence,
            },
        )
        return await self.pipeline.run_turn(session_id, outcome.text, priority)

    async def stream_audio(
        self, session_id: str, audio_chunk: str, sequence: Any = None
    ) -> Optional[TurnResult]:
        """
        Transcribe one streamed chunk; a confident transcript runs a turn at
        high priority. Unknown sessions are ignored.
        """
        session = await self.sessions.get(session_id)
        if session is None:
            return None
        with create_trace_context(
            "pipeline.stream_audio", session_id=session_id, high_frequency=True
        ):
            outcome = await self.pipeline.transcribe(
                decode_audio(audio_chunk),
                language=session.avatar_config.language,
                priority=Priority.HIGH,
            )
        if (
            outcome.error
            or not outcome.text
            or outcome.confidence <= self.config.stream_confidence_threshold
        ):
            return None
        await self.broadcaster.publish(
            session_id,
            "audio_transcription",
            {
                "sessionId": session_id,
                "text": outcome.text,
                "confidence": outcome.confidence,
                "sequence": sequence,
            },
        )
        return await self.pipeline.run_turn(session_id, outcome.text, Priority.HIGH)

    async def transcribe(self, audio: bytes, language: str = "en") -> TranscriptionOutcome:
        return await self.pipeline.transcribe(audio, language=language)

    # ------------------------------------------------------------------ #
    # Jobs
    # ------------------------------------------------------------------ #
    async def submit_likeness(
        self,
        user_id: str,
        image_bytes: bytes,
        options: Optional[Dict[str, Any]] = None,
        *,
        listener: Optional[Listener] = None,
        subscriber_id: Optional[str] = None,
    ) -> str:
        if not user_id or not image_bytes:
            raise InvalidRequestError("userId and image file required")
        job_id = await self.jobs.create_job(JobKind.LIKENESS, user_id)

        async def _retain(result: Dict[str, Any]) -> None:
            await self._likeness_models.set(user_id, result)

        return await self._launch(
            job_id,
            lambda: self.job_pipelines.run_likeness(job_id, user_id, image_bytes, options),
            _retain,
            listener,
            subscriber_id,
        )

    async def submit_voice_clone(
        self,
        user_id: str,
        audio_bytes: bytes,
        *,
        listener: Optional[Listener] = None,
        subscriber_id: Optional[str] = None,
    ) -> str:
        if not user_id or not audio_bytes:
            raise InvalidRequestError("userId and audio file required")
        job_id = await self.jobs.create_job(JobKind.VOICE_CLONE, user_id)

        async def _retain(result: Dict[str, Any]) -> None:
            await self._voice_clones.set(user_id, result)

        return await self._launch(
            job_id,
            lambda: self.job_pipelines.run_voice_clone(job_id, user_id, audio_bytes),
            _retain,
            listener,
            subscriber_id,
        )

    async def submit_video(
        self,
        owner_id: str,
        script: str,
        avatar_config: Optional[Dict[str, Any]] = None,
        video_config: Optional[Dict[str, Any]] = None,
        *,
        job_id: Optional[str] = None,
        listener: Optional[Listener] = None,
        subscriber_id: Optional[str] = None,
    ) -> str:
        if not script or not script.strip():
            raise InvalidRequestError("script is required", field="script")
        job_id = await self.jobs.create_job(JobKind.VIDEO, owner_id, job_id=job_id)
        return await self._launch(
            job_id,
            lambda: self.job_pipelines.run_video(job_id, script, avatar_config, video_config),
            None,
            listener,
            subscriber_id,
        )

    async def _launch(
        self,
        job_id: str,
        work: Callable[[], Awaitable[Any]],
        retain: Optional[Callable[[Any], Awaitable[None]]],
        listener: Optional[Listener],
        subscriber_id: Optional[str],
    ) -> str:
        if listener is not None:
            await self.subscribe(job_id, listener, subscriber_id=subscriber_id)
        job = await self.jobs.get(job_id)
        task = asyncio.create_task(
            self._run_job(job_id, job.kind, work, retain), name=f"job-{job_id}"
        )
        self._job_tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._job_tasks.pop(jid, None))
        return job_id

    async def _run_job(
        self,
        job_id: str,
        kind: JobKind,
        work: Callable[[], Awaitable[Any]],
        retain: Optional[Callable[[Any], Awaitable[None]]],
    ) -> None:
        with create_trace_context(f"job.{kind.value}", job_id=job_id):
            try:
                result = await work()
                if retain is not None:
                    await retain(result)
            except asyncio.CancelledError:
                await self.jobs.fail(job_id, "Job cancelled")
                raise
            except Exception as exc:
                logger.error(
                    "Job %s aborted: %s", job_id, exc, exc_info=True, extra={"job_id": job_id}
                )
                await self.jobs.fail(job_id, exc)
                return
            await self.jobs.complete(job_id, result)

    async def wait_for_jobs(self) -> None:
        """Await every job currently running."""
        pending = [t for t in self._job_tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def job_progress(self, job_id: str) -> Dict[str, Any]:
        return await self.jobs.progress_view(job_id)

    # ------------------------------------------------------------------ #
    # Trained models
    # ------------------------------------------------------------------ #
    async def get_likeness_model(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._likeness_models.get(user_id)

    async def get_voice_clone(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._voice_clones.get(user_id)

    async def test_cloned_voice(self, user_id: str, text: str) -> Optional[SpeechResult]:
        """Synthesize ``text`` with a user's cloned voice; None without a clone."""
        clone = await self._voice_clones.get(user_id)
        if clone is None:
            return None
        if not text:
            raise InvalidRequestError("text is required", field="text")
        return await self.job_pipelines.synthesize_with_profile(clone["voiceProfile"], text)

    # ------------------------------------------------------------------ #
    # Metrics and sweeps
    # ------------------------------------------------------------------ #
    async def performance_snapshot(self) -> Dict[str, Any]:
        active = await self.sessions.get_session_count()
        return (await self.metrics.snapshot(active_sessions=active)).to_dict()

    async def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self._started else "idle",
            "activeSessions": await self.sessions.get_session_count(),
            "jobs": await self.jobs.counts(),
            "metrics": await self.performance_snapshot(),
            "cache": self.cache.stats(),
        }

    async def sweep_idle_sessions(self) -> List[str]:
        return await self.sessions.sweep_idle(self.config.session_idle_threshold_s)

    async def sweep_stale_jobs(self) -> Dict[str, List[str]]:
        return await self.jobs.sweep_stale(
            self.config.job_grace_period_s, self.config.job_running_ceiling_s
        )

    async def sweep_cache(self) -> Dict[str, int]:
        removed = await self.cache.sweep_expired()
        removed["likeness-models"] = await self._likeness_models.sweep()
        removed["voice-clones"] = await self._voice_clones.sweep()
        return removed


def decode_audio(content: str) -> bytes:
    """Decode a base64 audio payload (a ``data:`` URL prefix is accepted)."""
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    if content.startswith("data:") and "," in content:
        content = content.split(",", 1)[1]
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidRequestError("audio content must be base64", field="content") from exc
