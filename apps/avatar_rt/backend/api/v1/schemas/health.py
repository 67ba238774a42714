"""
Health check API schemas.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(
        ...,
        description="Overall health status",
        json_schema_extra={"example": "healthy"},
    )
    version: str = Field(default="1.0.0", description="API version")
    timestamp: float = Field(..., description="Timestamp when check was performed")
    message: str = Field(
        ...,
        description="Human-readable status message",
        json_schema_extra={"example": "Avatar real-time API v1 is running"},
    )
    active_sessions: int = Field(
        default=0,
        description="Current number of active avatar sessions",
        json_schema_extra={"example": 3},
    )
    active_jobs: int = Field(
        default=0,
        description="Jobs that are pending or running",
        json_schema_extra={"example": 1},
    )
    connections: Optional[Dict[str, Any]] = Field(
        default=None,
        description="WebSocket connection statistics",
    )
    metrics: Dict[str, Any] = Field(
        default_factory=dict,
        description="Interactive turn performance snapshot",
    )
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "timestamp": 1691668800.0,
                "message": "Avatar real-time API v1 is running",
                "active_sessions": 3,
                "active_jobs": 1,
                "connections": {"connections": 3, "max_connections": 200},
                "metrics": {"totalRequests": 12, "cacheHitRate": 0.25},
                "details": {"api_version": "v1", "service": "avatar-rt-backend"},
            }
        }
    )
