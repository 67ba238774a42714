from .monitoring import SpanAttr
from .orchestration import (
    CacheTier,
    JobKind,
    JobStatus,
    MessageType,
    Priority,
)

__all__ = [
    "SpanAttr",
    "CacheTier",
    "JobKind",
    "JobStatus",
    "MessageType",
    "Priority",
]
