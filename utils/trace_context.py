"""
Span helpers for interactive turns, streamed audio and job runs.

Tracing is opt-in (``ENABLE_TRACING=true``). When it is off every helper
returns a no-op context so hot paths pay nothing. Streamed audio chunks are
sampled (``HIGH_FREQ_SAMPLING``, default 10%).
"""

import os
import random
import time
from typing import Any, Dict, Optional, Union

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind
from opentelemetry.trace.status import Status, StatusCode

from avatarcore.enums.monitoring import SpanAttr

_TRACING_ENABLED = os.getenv("ENABLE_TRACING", "false").lower() == "true"
_HIGH_FREQ_SAMPLING = float(os.getenv("HIGH_FREQ_SAMPLING", "0.1"))

# upper bounds in ms; the first bucket is the interactive target
_LATENCY_BUCKETS = (
    (200, "<200ms"),
    (500, "200-500ms"),
    (1000, "500ms-1s"),
    (3000, "1-3s"),
    (10000, "3-10s"),
)

# metadata keys with a well-known attribute name
_METADATA_ATTRS = {
    "priority": SpanAttr.TURN_PRIORITY,
    "text_length": SpanAttr.TURN_TEXT_LENGTH,
    "stage": SpanAttr.JOB_STAGE,
    "kind": SpanAttr.JOB_KIND,
}

AttrKey = Union[str, SpanAttr]


def latency_bucket(duration_ms: float) -> str:
    for bound, label in _LATENCY_BUCKETS:
        if duration_ms < bound:
            return label
    return ">10s"


def _component_of(span_name: str) -> str:
    """``pipeline.turn`` -> ``pipeline``."""
    head, sep, _ = span_name.partition(".")
    return head if sep else "avatar"


class TraceContext:
    """
    One span around a unit of orchestration work.

    Records duration, a latency bucket, correlation ids and, on exception, the
    error type and message. The exception itself is never swallowed.
    """

    def __init__(
        self,
        name: str,
        *,
        session_id: Optional[str] = None,
        job_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        span_kind: SpanKind = SpanKind.INTERNAL,
    ):
        self.name = name
        self.component = _component_of(name)
        self._correlation = {
            SpanAttr.SESSION_ID: session_id,
            SpanAttr.JOB_ID: job_id,
        }
        self._metadata = metadata or {}
        self._span_kind = span_kind
        self._tracer = trace.get_tracer(self.component)
        self._span: Optional[Span] = None
        self._started = 0.0

    def __enter__(self) -> "TraceContext":
        self._started = time.perf_counter()
        self._span = self._tracer.start_span(self.name, kind=self._span_kind)
        self._span.set_attribute(SpanAttr.OPERATION_NAME.value, self.name)
        self._span.set_attribute("component", self.component)
        for attr, value in self._correlation.items():
            if value:
                self._span.set_attribute(attr.value, value)
        for key, value in self._metadata.items():
            if isinstance(value, (str, int, float, bool)):
                attr = _METADATA_ATTRS.get(key)
                self._span.set_attribute(
                    attr.value if attr else f"{self.component}.{key}", value
                )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        span = self._span
        if span is None:
            return
        duration_ms = (time.perf_counter() - self._started) * 1000
        span.set_attribute("duration_ms", duration_ms)
        span.set_attribute("latency.bucket", latency_bucket(duration_ms))
        if exc_type is None:
            span.set_status(Status(StatusCode.OK))
        else:
            message = str(exc_val) if exc_val else exc_type.__name__
            span.set_status(Status(StatusCode.ERROR, message))
            span.set_attribute(SpanAttr.ERROR_TYPE.value, exc_type.__name__)
            span.set_attribute(SpanAttr.ERROR_MESSAGE.value, message)
            if exc_val is not None:
                span.record_exception(exc_val)
        span.end()
        self._span = None

    def set_attribute(self, key: AttrKey, value: Any) -> None:
        if self._span is not None:
            self._span.set_attribute(key.value if isinstance(key, SpanAttr) else key, value)

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        if self._span is not None:
            self._span.add_event(name, attributes or {})


class NoOpTraceContext:
    """Stand-in used when tracing is disabled or a sample is skipped."""

    def __enter__(self) -> "NoOpTraceContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    def set_attribute(self, key: AttrKey, value: Any) -> None:
        pass

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        pass


_NOOP = NoOpTraceContext()


def create_trace_context(
    name: str,
    session_id: Optional[str] = None,
    job_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    high_frequency: bool = False,
    span_kind: SpanKind = SpanKind.INTERNAL,
):
    """
    Return a ``TraceContext`` or the shared no-op context.

    Args:
        name: span name, ``<component>.<operation>``
        session_id: avatar session id for correlation
        job_id: job id for correlation
        metadata: extra span attributes (scalars only)
        high_frequency: sample instead of tracing every call
    """
    if not _TRACING_ENABLED:
        return _NOOP
    if high_frequency and random.random() >= _HIGH_FREQ_SAMPLING:
        return _NOOP
    return TraceContext(
        name,
        session_id=session_id,
        job_id=job_id,
        metadata=metadata,
        span_kind=span_kind,
    )
