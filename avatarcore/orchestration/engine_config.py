"""Tunables for an ``OrchestrationEngine`` instance."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict

from avatarcore.enums.orchestration import CacheTier, Priority


@dataclass
class EngineConfig:
    # cache tiers
    response_cache_ttl_s: float = 300.0
    speech_cache_ttl_s: float = 1800.0
    transcription_cache_ttl_s: float = 300.0
    cache_max_entries_per_tier: int = 10_000
    response_prefix_chars: int = 50
    transcription_cache_max_chars: int = 100

    # sessions
    session_idle_threshold_s: float = 300.0

    # jobs
    job_grace_period_s: float = 60.0
    job_running_ceiling_s: float = 3600.0

    # background sweep intervals
    session_sweep_interval_s: float = 30.0
    job_sweep_interval_s: float = 300.0
    cache_sweep_interval_s: float = 120.0

    # per-call timeouts
    llm_timeout_s: float = 8.0
    tts_timeout_s: float = 8.0
    stt_timeout_s: float = 10.0
    image_timeout_s: float = 60.0
    high_priority_timeout_scale: float = 0.5

    # interactive turn shaping
    llm_temperature: float = 0.7
    llm_max_tokens: int = 50
    tts_speed: float = 1.1
    stream_confidence_threshold: float = 0.7
    fallback_reply: str = "I understand. How can I help you with that?"
    error_reply: str = "I'm here to help you!"

    # catalogs
    avatar_cache_ttl_s: float = 3600.0
    model_retention_s: float = 7200.0

    metrics_smoothing: float = 0.5
    extra: Dict[str, Any] = field(default_factory=dict)

    def tier_ttls(self) -> Dict[CacheTier, float]:
        return {
            CacheTier.RESPONSE: self.response_cache_ttl_s,
            CacheTier.SPEECH: self.speech_cache_ttl_s,
            CacheTier.TRANSCRIPTION: self.transcription_cache_ttl_s,
        }

    def timeout_for(self, backend: str, priority: Priority = Priority.NORMAL) -> float:
        base = {
            "llm": self.llm_timeout_s,
            "tts": self.tts_timeout_s,
            "stt": self.stt_timeout_s,
            "images": self.image_timeout_s,
        }[backend]
        if priority is Priority.HIGH:
            return base * self.high_priority_timeout_scale
        return base

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
