"""
Pydantic schemas for API request/response models.
"""

from .health import HealthResponse
from .realtime import INBOUND_EVENT_MODELS, InboundEvent, WSFrame
from .uploads import ErrorResponse, UploadAcceptedResponse

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "INBOUND_EVENT_MODELS",
    "InboundEvent",
    "UploadAcceptedResponse",
    "WSFrame",
]
