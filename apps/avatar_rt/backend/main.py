"""
avatar_rt.main
==============
Entrypoint that stitches everything together:

• config / CORS
• shared objects on `app.state` (orchestration engine, connection manager)
• route registration (v1 router plus the root upload endpoints)
"""

from __future__ import annotations

import os
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from utils.telemetry_config import setup_azure_monitor
from utils.ml_logging import get_logger

logger = get_logger("main")

StepCallable = Callable[[], Awaitable[None]]
LifecycleStep = Tuple[str, StepCallable, Optional[StepCallable]]

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from starlette.exceptions import HTTPException as StarletteHTTPException

from avatarcore.aoai.client import create_async_openai_client
from avatarcore.backends.openai_backends import build_openai_backend_suite
from avatarcore.orchestration.engine import OrchestrationEngine
from avatarcore.pools.connection_manager import ThreadSafeConnectionManager
from avatarcore.pools.session_manager import AvatarConfig
from apps.avatar_rt.backend.api.v1.endpoints import uploads
from apps.avatar_rt.backend.api.v1.router import v1_router
from apps.avatar_rt.backend.config import (
    ALLOWED_ORIGINS,
    API_V1_PREFIX,
    AVATAR_PROFILES,
    AZURE_OPENAI_API_VERSION,
    DEBUG_MODE,
    DOCS_URL,
    ENABLE_DOCS,
    ENVIRONMENT,
    OPENAPI_URL,
    REALTIME_WS_PATH,
    REDOC_URL,
    UPLOAD_LIKENESS_PATH,
    UPLOAD_VOICE_PATH,
    AppConfig,
    validate_and_log_config,
)


def _build_avatar_profiles() -> dict:
    return {
        avatar_id: AvatarConfig(avatar_id=avatar_id, **profile)
        for avatar_id, profile in AVATAR_PROFILES.items()
    }


def _build_startup_dashboard(
    app_config: AppConfig, startup_results: List[Tuple[str, float]]
) -> str:
    """Construct a concise ASCII dashboard for developers."""
    header = "=" * 68
    base_url = f"http://localhost:{os.getenv('PORT', '8080')}"
    endpoints = [
        ("GET", f"{API_V1_PREFIX}/health", "liveness + metrics"),
        ("WS", f"{API_V1_PREFIX}{REALTIME_WS_PATH}", "duplex event channel"),
        ("POST", UPLOAD_LIKENESS_PATH, "start likeness job"),
        ("POST", UPLOAD_VOICE_PATH, "start voice clone job"),
    ]

    lines = [
        "",
        header,
        " Avatar Real-Time API :: Developer Console",
        header,
        f" Environment : {ENVIRONMENT} | Debug: {'ON' if DEBUG_MODE else 'OFF'}",
        f" Base URL    : {base_url}",
        f" Models      : chat={app_config.ai.chat_model} tts={app_config.ai.tts_model}"
        f" stt={app_config.ai.stt_model} image={app_config.ai.image_model}",
        f" Docs        : {'ENABLED' if ENABLE_DOCS else 'DISABLED (set ENABLE_DOCS=true)'}",
        "",
        " Startup Stage Durations (sec):",
    ]
    for stage_name, stage_duration in startup_results:
        lines.append(f"   {stage_name:<13}{stage_duration:.2f}")

    lines.append("")
    lines.append(" Key API Endpoints:")
    lines.append("   METHOD PATH                           NOTES")
    for method, path, note in endpoints:
        lines.append(f"   {method:<6}{path:<32}{note}")
    lines.append(header)
    return "\n".join(lines)


# --------------------------------------------------------------------------- #
#  Lifecycle Management
# --------------------------------------------------------------------------- #
def build_lifespan(engine: Optional[OrchestrationEngine] = None):
    """
    Build the lifespan handler. A pre-built ``engine`` skips backend client
    construction, which is how tests run the app against fake capabilities.
    """

    async def lifespan(app: FastAPI):
        tracer = trace.get_tracer(__name__)

        startup_steps: List[LifecycleStep] = []
        executed_steps: List[LifecycleStep] = []
        startup_results: List[Tuple[str, float]] = []

        def add_step(
            name: str, start: StepCallable, shutdown: Optional[StepCallable] = None
        ) -> None:
            startup_steps.append((name, start, shutdown))

        async def run_steps(steps: List[LifecycleStep], phase: str) -> None:
            for name, start_fn, shutdown_fn in steps:
                with tracer.start_as_current_span(f"{phase}.{name}") as step_span:
                    step_start = time.perf_counter()
                    logger.info(f"{phase} stage started", extra={"stage": name})
                    try:
                        await start_fn()
                    except Exception as exc:
                        step_span.record_exception(exc)
                        step_span.set_status(Status(StatusCode.ERROR, str(exc)))
                        logger.error(
                            f"{phase} stage failed", extra={"stage": name, "error": str(exc)}
                        )
                        raise
                    step_duration = time.perf_counter() - step_start
                    step_span.set_attribute("duration_sec", step_duration)
                    rounded = round(step_duration, 2)
                    logger.info(
                        f"{phase} stage completed",
                        extra={"stage": name, "duration_sec": rounded},
                    )
                    executed_steps.append((name, start_fn, shutdown_fn))
                    startup_results.append((name, rounded))

        async def run_shutdown(steps: List[LifecycleStep]) -> None:
            for name, _, shutdown_fn in reversed(steps):
                if shutdown_fn is None:
                    continue
                with tracer.start_as_current_span(f"shutdown.{name}") as step_span:
                    try:
                        await shutdown_fn()
                    except Exception as exc:
                        step_span.record_exception(exc)
                        step_span.set_status(Status(StatusCode.ERROR, str(exc)))
                        logger.error(
                            "shutdown stage failed", extra={"stage": name, "error": str(exc)}
                        )
                        continue
                    logger.info("shutdown stage completed", extra={"stage": name})

        app_config = AppConfig()
        logger.info(
            "Configuration loaded",
            extra={
                "max_connections": app_config.connections.max_connections,
                "response_ttl_s": app_config.cache.response_ttl_s,
                "session_idle_threshold_s": app_config.sessions.idle_threshold_s,
            },
        )

        async def validate_config() -> None:
            validate_and_log_config()
            result = app_config.validate()
            for issue in result["issues"]:
                logger.error(f"Config issue: {issue}")
            for recommendation in app_config.get_recommendations():
                logger.info(f"Config recommendation: {recommendation}")
            if not result["valid"]:
                raise RuntimeError(
                    f"Invalid configuration: {'; '.join(result['issues'])}"
                )

        add_step("config", validate_config)

        async def start_core_state() -> None:
            app.state.conn_manager = ThreadSafeConnectionManager(
                max_connections=app_config.connections.max_connections,
                send_queue_size=app_config.connections.send_queue_size,
                enable_connection_limits=app_config.connections.enable_limits,
            )
            logger.info(
                "core state ready",
                extra={
                    "max_connections": app_config.connections.max_connections,
                    "limits_enabled": app_config.connections.enable_limits,
                },
            )

        async def stop_core_state() -> None:
            await app.state.conn_manager.stop()
            logger.info("connection manager stopped")

        add_step("core", start_core_state, stop_core_state)

        async def start_engine() -> None:
            if engine is not None:
                app.state.engine = engine
            else:
                try:
                    client = create_async_openai_client(api_version=AZURE_OPENAI_API_VERSION)
                except ValueError as exc:
                    raise RuntimeError(f"OpenAI client initialization failed: {exc}")
                backends = build_openai_backend_suite(
                    client,
                    chat_model=app_config.ai.chat_model,
                    tts_model=app_config.ai.tts_model,
                    stt_model=app_config.ai.stt_model,
                    image_model=app_config.ai.image_model,
                    default_voice=app_config.ai.default_voice,
                )
                app.state.engine = OrchestrationEngine(
                    backends,
                    app_config.to_engine_config(),
                    avatar_profiles=_build_avatar_profiles(),
                )
            await app.state.engine.start()

        async def stop_engine() -> None:
            await app.state.engine.stop()

        add_step("engine", start_engine, stop_engine)

        with tracer.start_as_current_span("startup.lifespan") as startup_span:
            startup_span.set_attributes(
                {
                    "service.name": "avatar-rt-api",
                    "service.version": "1.0.0",
                    "startup.stage": "lifecycle",
                }
            )
            startup_begin = time.perf_counter()
            await run_steps(startup_steps, "startup")
            startup_duration = time.perf_counter() - startup_begin
            startup_span.set_attributes(
                {"startup.duration_sec": startup_duration, "startup.success": True}
            )
            logger.info(
                "startup complete", extra={"duration_sec": round(startup_duration, 2)}
            )

        logger.info(_build_startup_dashboard(app_config, startup_results))

        # ---- Run app ----
        yield

        with tracer.start_as_current_span("shutdown.lifespan") as shutdown_span:
            logger.info("🛑 shutdown…")
            shutdown_begin = time.perf_counter()
            await run_shutdown(executed_steps)
            shutdown_span.set_attribute(
                "shutdown.duration_sec", time.perf_counter() - shutdown_begin
            )

    return lifespan


# --------------------------------------------------------------------------- #
#  App factory
# --------------------------------------------------------------------------- #
def create_app(engine: Optional[OrchestrationEngine] = None) -> FastAPI:
    """Create the FastAPI app with middleware, routes and error handlers."""
    app = FastAPI(
        title="Avatar Real-Time API",
        description="Real-time avatar conversations, likeness, voice clone and video jobs",
        version="1.0.0",
        lifespan=build_lifespan(engine),
        docs_url=DOCS_URL,
        redoc_url=REDOC_URL,
        openapi_url=OPENAPI_URL,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=86400,
    )

    app.include_router(v1_router)
    app.include_router(uploads.router, tags=["Uploads"])

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        return JSONResponse(
            status_code=400, content={"error": first.get("msg", "Invalid request")}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error on {request.url.path}: {exc}", exc_info=True
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/api/info", tags=["System"], include_in_schema=ENABLE_DOCS)
    async def get_system_info():
        """Get system environment and documentation status."""
        return {
            "environment": ENVIRONMENT,
            "debug_mode": DEBUG_MODE,
            "docs_enabled": ENABLE_DOCS,
            "docs_url": DOCS_URL,
            "redoc_url": REDOC_URL,
            "openapi_url": OPENAPI_URL,
        }

    return app


def initialize_app() -> FastAPI:
    """Initialize the production app with monitoring."""
    setup_azure_monitor(logger_name="avatar")
    return create_app()


# --------------------------------------------------------------------------- #
#  Main entry point
# --------------------------------------------------------------------------- #
def main():
    """Entry point for the avatar-rt-server script."""
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(
        "apps.avatar_rt.backend.main:initialize_app",
        factory=True,
        host="0.0.0.0",  # nosec: B104
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()
