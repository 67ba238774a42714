"""Request-scoped access to the objects the app lifespan puts on ``app.state``."""

from fastapi import HTTPException, Request

from avatarcore.orchestration.engine import OrchestrationEngine


def get_engine(request: Request) -> OrchestrationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Orchestration engine not ready")
    return engine
