"""
Configuration Package
=====================

Centralized configuration for the avatar real-time API.

Usage:
    from config import AppConfig, get_app_config
    from config import MAX_WEBSOCKET_CONNECTIONS, RESPONSE_CACHE_TTL_SECONDS
"""

from .app_settings import (
    # AI
    AZURE_OPENAI_ENDPOINT,
    AZURE_OPENAI_KEY,
    AZURE_OPENAI_API_VERSION,
    AZURE_CLIENT_ID,
    OPENAI_API_KEY,
    CHAT_MODEL,
    TTS_MODEL,
    STT_MODEL,
    IMAGE_MODEL,
    DEFAULT_TTS_VOICE,
    # Orchestration
    RESPONSE_CACHE_TTL_SECONDS,
    SPEECH_CACHE_TTL_SECONDS,
    TRANSCRIPTION_CACHE_TTL_SECONDS,
    SESSION_IDLE_THRESHOLD_SECONDS,
    JOB_GRACE_PERIOD_SECONDS,
    # Connections and CORS
    MAX_WEBSOCKET_CONNECTIONS,
    ALLOWED_ORIGINS,
    # Documentation and environment
    ENVIRONMENT,
    DEBUG_MODE,
    ENABLE_DOCS,
    DOCS_URL,
    REDOC_URL,
    OPENAPI_URL,
    # Monitoring
    ENABLE_TRACING,
    # Constants
    API_V1_PREFIX,
    REALTIME_WS_PATH,
    UPLOAD_LIKENESS_PATH,
    UPLOAD_VOICE_PATH,
    AVATAR_PROFILES,
    LIKENESS_ESTIMATED_TIME,
    VOICE_CLONE_ESTIMATED_TIME,
    MAX_IMAGE_UPLOAD_BYTES,
    MAX_AUDIO_UPLOAD_BYTES,
    # Validation
    validate_app_settings,
)

from .app_config import (
    AppConfig,
    CacheConfig,
    SessionConfig,
    JobConfig,
    TimeoutConfig,
    ConnectionConfig,
    AIConfig,
    MonitoringConfig,
)

# Main config instance - single source of truth
app_config = AppConfig()

# ==============================================================================
# MANAGEMENT FUNCTIONS
# ==============================================================================


def get_app_config() -> AppConfig:
    """Get the main application configuration object."""
    return app_config


def reload_app_config() -> AppConfig:
    """Reload the application configuration (useful for testing)."""
    global app_config
    app_config = AppConfig()
    return app_config


def validate_and_log_config():
    """Validate configuration and log results."""
    from utils.ml_logging import get_logger

    logger = get_logger(__name__)

    result = validate_app_settings()

    if result["valid"]:
        logger.info(
            f"✅ Configuration validation passed ({result['settings_count']} settings)"
        )
    else:
        logger.error(
            f"❌ Configuration validation failed with {len(result['issues'])} issues"
        )
        for issue in result["issues"]:
            logger.error(f"Config issue: {issue}")

    if result["warnings"]:
        for warning in result["warnings"]:
            logger.warning(f"Config warning: {warning}")

    return result
