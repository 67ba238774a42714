from enum import Enum


# Span attribute keys for Azure App Insights OpenTelemetry logging
class SpanAttr(str, Enum):
    CORRELATION_ID = "correlation.id"
    SESSION_ID = "session.id"
    JOB_ID = "job.id"
    USER_ID = "user.id"
    OPERATION_NAME = "operation.name"
    SERVICE_NAME = "service.name"
    SERVICE_VERSION = "service.version"
    STATUS_CODE = "status.code"
    ERROR_TYPE = "error.type"
    ERROR_MESSAGE = "error.message"
    TRACE_ID = "trace.id"
    SPAN_ID = "span.id"

    # Capability call attributes
    BACKEND_NAME = "backend.name"
    BACKEND_TIMEOUT_S = "backend.timeout_s"
    BACKEND_OUTCOME = "backend.outcome"

    # Cache attributes
    CACHE_TIER = "cache.tier"
    CACHE_HIT = "cache.hit"

    # Conversation turn attributes
    TURN_PRIORITY = "turn.priority"
    TURN_TEXT_LENGTH = "turn.text.length"
    TURN_LATENCY_MS = "turn.latency_ms"
    TURN_DEGRADED = "turn.degraded"

    # Job attributes
    JOB_KIND = "job.kind"
    JOB_STAGE = "job.stage"
    JOB_PROGRESS = "job.progress"

    # WebSocket specific attributes
    WS_EVENT = "ws.event"
    WS_CONNECTION_ID = "ws.connection_id"
