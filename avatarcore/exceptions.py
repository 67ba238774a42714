"""
Orchestration error taxonomy.

Input errors and unrecoverable job failures are raised; capability errors are
raised by backend adapters and recovered inside the pipelines. Unknown
session/job ids are reported as ``None`` lookups, not exceptions.
"""

from typing import Optional


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""


class InvalidRequestError(OrchestrationError):
    """A required field was missing or malformed in an inbound request."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class BackendCallError(OrchestrationError):
    """A capability call (STT, TTS, generation, imaging) failed."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class BackendTimeoutError(BackendCallError):
    """A capability call exceeded its per-call timeout."""

    def __init__(self, backend: str, timeout_s: float):
        super().__init__(backend, f"timed out after {timeout_s:.2f}s")
        self.timeout_s = timeout_s


class JobStageError(OrchestrationError):
    """A job stage failed in a way that cannot be degraded around."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
