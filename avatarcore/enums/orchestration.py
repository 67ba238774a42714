from enum import Enum


class Priority(str, Enum):
    """Turn priority hint; ``HIGH`` tightens per-call timeouts."""

    NORMAL = "normal"
    HIGH = "high"

    @classmethod
    def parse(cls, value, default: "Priority" = None) -> "Priority":
        if isinstance(value, cls):
            return value
        if value is None:
            return default or cls.NORMAL
        try:
            return cls(str(value).lower())
        except ValueError:
            return default or cls.NORMAL


class MessageType(str, Enum):
    TEXT = "text"
    AUDIO = "audio"


class JobKind(str, Enum):
    LIKENESS = "likeness"
    VOICE_CLONE = "voice-clone"
    VIDEO = "video"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class CacheTier(str, Enum):
    """Independently keyed cache partitions."""

    RESPONSE = "response"  # full assistant replies
    SPEECH = "speech"  # synthesized audio references
    TRANSCRIPTION = "transcription"  # speech-to-text results
