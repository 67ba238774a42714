"""
Health Endpoints
================

Liveness endpoint reporting engine state, connection counts and the turn
performance snapshot.
"""

import time

from fastapi import APIRouter, Depends, Request

from avatarcore.orchestration.engine import OrchestrationEngine
from apps.avatar_rt.backend.api.v1.dependencies.engine import get_engine
from apps.avatar_rt.backend.api.v1.schemas.health import HealthResponse
from utils.ml_logging import get_logger

logger = get_logger("v1.health")

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Basic Health Check",
    description="Returns 200 while the server is running, with engine state and metrics.",
)
async def health_check(
    request: Request, engine: OrchestrationEngine = Depends(get_engine)
) -> HealthResponse:
    state = await engine.health()
    jobs = state["jobs"]

    connections = None
    conn_manager = getattr(request.app.state, "conn_manager", None)
    if conn_manager is not None:
        connections = await conn_manager.stats()
        connections.update(await engine.metrics.connection_snapshot())

    return HealthResponse(
        status="healthy" if state["status"] == "healthy" else "degraded",
        timestamp=time.time(),
        message="Avatar real-time API v1 is running",
        active_sessions=state["activeSessions"],
        active_jobs=jobs.get("running", 0),
        connections=connections,
        metrics=state["metrics"],
        details={
            "api_version": "v1",
            "service": "avatar-rt-backend",
            "engine": state["status"],
            "jobs": jobs,
            "cache": state["cache"],
        },
    )
