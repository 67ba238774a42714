"""
WebSocket Message Envelopes
===========================

Outbound frame formatting for the duplex event channel. Every frame is
``{"event": <name>, "data": {...}, "ts": <iso8601>}``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

ErrorType = Literal["invalid_request", "not_found", "internal"]


def make_event_frame(event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a standard outbound frame."""
    return {
        "event": event,
        "data": data or {},
        "ts": datetime.now(timezone.utc).isoformat(),
    }


def make_error_frame(
    message: str,
    error_type: ErrorType = "invalid_request",
    *,
    request_event: Optional[str] = None,
    field: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an ``error`` frame; the channel stays open after it."""
    data: Dict[str, Any] = {"message": message, "type": error_type}
    if request_event:
        data["event"] = request_event
    if field:
        data["field"] = field
    return make_event_frame("error", data)
