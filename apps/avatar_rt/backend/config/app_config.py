"""
Application Configuration Objects
=================================

Structured configuration objects for the avatar real-time API. Each section
reads its defaults from the environment-backed modules and can be turned
into the ``EngineConfig`` the orchestration engine runs with.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from avatarcore.orchestration.engine_config import EngineConfig

from .ai_config import (
    AZURE_OPENAI_ENDPOINT,
    CHAT_MODEL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TTS_VOICE,
    IMAGE_MODEL,
    OPENAI_API_KEY,
    STT_MODEL,
    TTS_MODEL,
    TTS_SPEED,
)
from .connection_config import (
    ALLOWED_ORIGINS,
    ENABLE_CONNECTION_LIMITS,
    MAX_WEBSOCKET_CONNECTIONS,
    SEND_QUEUE_SIZE,
)
from .feature_flags import (
    ENABLE_TRACING,
)
from .orchestration_config import (
    AVATAR_CACHE_TTL_SECONDS,
    CACHE_MAX_ENTRIES_PER_TIER,
    CACHE_SWEEP_INTERVAL_SECONDS,
    HIGH_PRIORITY_TIMEOUT_SCALE,
    IMAGE_TIMEOUT_SECONDS,
    JOB_GRACE_PERIOD_SECONDS,
    JOB_RUNNING_CEILING_SECONDS,
    JOB_SWEEP_INTERVAL_SECONDS,
    LLM_TIMEOUT_SECONDS,
    MODEL_RETENTION_SECONDS,
    RESPONSE_CACHE_TTL_SECONDS,
    RESPONSE_KEY_PREFIX_CHARS,
    SESSION_IDLE_THRESHOLD_SECONDS,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SPEECH_CACHE_TTL_SECONDS,
    STREAM_CONFIDENCE_THRESHOLD,
    STT_TIMEOUT_SECONDS,
    TRANSCRIPTION_CACHE_MAX_CHARS,
    TRANSCRIPTION_CACHE_TTL_SECONDS,
    TTS_TIMEOUT_SECONDS,
)


@dataclass
class CacheConfig:
    """Configuration for the tiered cache."""

    response_ttl_s: float = RESPONSE_CACHE_TTL_SECONDS
    speech_ttl_s: float = SPEECH_CACHE_TTL_SECONDS
    transcription_ttl_s: float = TRANSCRIPTION_CACHE_TTL_SECONDS
    max_entries_per_tier: int = CACHE_MAX_ENTRIES_PER_TIER
    sweep_interval_s: float = CACHE_SWEEP_INTERVAL_SECONDS
    response_prefix_chars: int = RESPONSE_KEY_PREFIX_CHARS
    transcription_max_chars: int = TRANSCRIPTION_CACHE_MAX_CHARS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response_ttl_s": self.response_ttl_s,
            "speech_ttl_s": self.speech_ttl_s,
            "transcription_ttl_s": self.transcription_ttl_s,
            "max_entries_per_tier": self.max_entries_per_tier,
            "sweep_interval_s": self.sweep_interval_s,
            "response_prefix_chars": self.response_prefix_chars,
            "transcription_max_chars": self.transcription_max_chars,
        }


@dataclass
class SessionConfig:
    """Configuration for session lifecycle."""

    idle_threshold_s: float = SESSION_IDLE_THRESHOLD_SECONDS
    sweep_interval_s: float = SESSION_SWEEP_INTERVAL_SECONDS
    avatar_cache_ttl_s: float = AVATAR_CACHE_TTL_SECONDS
    stream_confidence_threshold: float = STREAM_CONFIDENCE_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idle_threshold_s": self.idle_threshold_s,
            "sweep_interval_s": self.sweep_interval_s,
            "avatar_cache_ttl_s": self.avatar_cache_ttl_s,
            "stream_confidence_threshold": self.stream_confidence_threshold,
        }


@dataclass
class JobConfig:
    """Configuration for background job retention."""

    grace_period_s: float = JOB_GRACE_PERIOD_SECONDS
    running_ceiling_s: float = JOB_RUNNING_CEILING_SECONDS
    sweep_interval_s: float = JOB_SWEEP_INTERVAL_SECONDS
    model_retention_s: float = MODEL_RETENTION_SECONDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grace_period_s": self.grace_period_s,
            "running_ceiling_s": self.running_ceiling_s,
            "sweep_interval_s": self.sweep_interval_s,
            "model_retention_s": self.model_retention_s,
        }


@dataclass
class TimeoutConfig:
    """Per-capability call timeouts."""

    llm_s: float = LLM_TIMEOUT_SECONDS
    tts_s: float = TTS_TIMEOUT_SECONDS
    stt_s: float = STT_TIMEOUT_SECONDS
    images_s: float = IMAGE_TIMEOUT_SECONDS
    high_priority_scale: float = HIGH_PRIORITY_TIMEOUT_SCALE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "llm_s": self.llm_s,
            "tts_s": self.tts_s,
            "stt_s": self.stt_s,
            "images_s": self.images_s,
            "high_priority_scale": self.high_priority_scale,
        }


@dataclass
class ConnectionConfig:
    """Configuration for WebSocket connection management."""

    max_connections: int = MAX_WEBSOCKET_CONNECTIONS
    send_queue_size: int = SEND_QUEUE_SIZE
    enable_limits: bool = ENABLE_CONNECTION_LIMITS
    allowed_origins: List[str] = field(default_factory=lambda: list(ALLOWED_ORIGINS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_connections": self.max_connections,
            "send_queue_size": self.send_queue_size,
            "enable_limits": self.enable_limits,
            "allowed_origins": self.allowed_origins,
        }


@dataclass
class AIConfig:
    """Configuration for the model backends."""

    endpoint: str = AZURE_OPENAI_ENDPOINT
    chat_model: str = CHAT_MODEL
    tts_model: str = TTS_MODEL
    stt_model: str = STT_MODEL
    image_model: str = IMAGE_MODEL
    default_voice: str = DEFAULT_TTS_VOICE
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    tts_speed: float = TTS_SPEED

    @property
    def configured(self) -> bool:
        return bool(self.endpoint or OPENAI_API_KEY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "chat_model": self.chat_model,
            "tts_model": self.tts_model,
            "stt_model": self.stt_model,
            "image_model": self.image_model,
            "default_voice": self.default_voice,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "tts_speed": self.tts_speed,
        }


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""

    enable_tracing: bool = ENABLE_TRACING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enable_tracing": self.enable_tracing,
        }


@dataclass
class AppConfig:
    """Complete application configuration."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    jobs: JobConfig = field(default_factory=JobConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    connections: ConnectionConfig = field(default_factory=ConnectionConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "cache": self.cache.to_dict(),
            "sessions": self.sessions.to_dict(),
            "jobs": self.jobs.to_dict(),
            "timeouts": self.timeouts.to_dict(),
            "connections": self.connections.to_dict(),
            "ai": self.ai.to_dict(),
            "monitoring": self.monitoring.to_dict(),
        }

    def to_engine_config(self, **overrides: Any) -> EngineConfig:
        """Build the engine tunables from this configuration."""
        values = dict(
            response_cache_ttl_s=self.cache.response_ttl_s,
            speech_cache_ttl_s=self.cache.speech_ttl_s,
            transcription_cache_ttl_s=self.cache.transcription_ttl_s,
            cache_max_entries_per_tier=self.cache.max_entries_per_tier,
            response_prefix_chars=self.cache.response_prefix_chars,
            transcription_cache_max_chars=self.cache.transcription_max_chars,
            session_idle_threshold_s=self.sessions.idle_threshold_s,
            job_grace_period_s=self.jobs.grace_period_s,
            job_running_ceiling_s=self.jobs.running_ceiling_s,
            session_sweep_interval_s=self.sessions.sweep_interval_s,
            job_sweep_interval_s=self.jobs.sweep_interval_s,
            cache_sweep_interval_s=self.cache.sweep_interval_s,
            llm_timeout_s=self.timeouts.llm_s,
            tts_timeout_s=self.timeouts.tts_s,
            stt_timeout_s=self.timeouts.stt_s,
            image_timeout_s=self.timeouts.images_s,
            high_priority_timeout_scale=self.timeouts.high_priority_scale,
            llm_temperature=self.ai.temperature,
            llm_max_tokens=self.ai.max_tokens,
            tts_speed=self.ai.tts_speed,
            stream_confidence_threshold=self.sessions.stream_confidence_threshold,
            avatar_cache_ttl_s=self.sessions.avatar_cache_ttl_s,
            model_retention_s=self.jobs.model_retention_s,
        )
        values.update(overrides)
        return EngineConfig(**values)

    def validate(self) -> Dict[str, Any]:
        """Validate configuration and return validation results."""
        issues = []
        warnings = []

        for name, ttl in (
            ("Response cache TTL", self.cache.response_ttl_s),
            ("Speech cache TTL", self.cache.speech_ttl_s),
            ("Transcription cache TTL", self.cache.transcription_ttl_s),
        ):
            if ttl <= 0:
                issues.append(f"{name} must be positive")

        if self.cache.response_prefix_chars < 1:
            issues.append("Response key prefix must be at least 1 character")
        elif self.cache.response_prefix_chars < 20:
            warnings.append(
                f"Response key prefix ({self.cache.response_prefix_chars}) is short; "
                "unrelated inputs may share cached replies"
            )

        if self.sessions.idle_threshold_s <= self.sessions.sweep_interval_s:
            warnings.append(
                f"Session idle threshold ({self.sessions.idle_threshold_s}s) is not "
                f"longer than the sweep interval ({self.sessions.sweep_interval_s}s)"
            )

        if not 0 < self.timeouts.high_priority_scale <= 1:
            issues.append("High priority timeout scale must be in (0, 1]")

        if self.connections.max_connections < 1:
            issues.append("Max connections must be at least 1")
        elif self.connections.max_connections > 1000:
            warnings.append(
                f"Max connections ({self.connections.max_connections}) is very high"
            )

        if not self.ai.configured:
            warnings.append(
                "No OpenAI endpoint or key configured; backend calls will fail "
                "and turns will use fallback replies"
            )

        return {
            "valid": len(issues) == 0,
            "issues": issues,
            "warnings": warnings,
            "config_summary": {
                "max_connections": self.connections.max_connections,
                "response_ttl_s": self.cache.response_ttl_s,
                "session_idle_threshold_s": self.sessions.idle_threshold_s,
                "chat_model": self.ai.chat_model,
            },
        }

    def get_recommendations(self) -> List[str]:
        """Get configuration recommendations."""
        recommendations = []

        if not self.connections.enable_limits:
            recommendations.append("Enable connection limits for production deployment")

        if not self.monitoring.enable_tracing:
            recommendations.append("Enable tracing for better observability")

        if self.timeouts.llm_s > 10:
            recommendations.append(
                f"LLM timeout of {self.timeouts.llm_s}s will make interactive turns feel slow"
            )

        return recommendations
