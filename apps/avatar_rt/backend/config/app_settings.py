"""
Application Settings
===================

Consolidates the settings from the specialized configuration modules for
easy access throughout the application.
"""

from .ai_config import *
from .connection_config import *
from .constants import *
from .feature_flags import *
from .orchestration_config import *

# ==============================================================================
# VALIDATION FUNCTIONS
# ==============================================================================


def validate_app_settings():
    """
    Validate current application settings and return validation results.

    Returns:
        Dict containing validation status, issues, warnings, and settings count
    """
    issues = []
    warnings = []

    # Check connection settings
    if MAX_WEBSOCKET_CONNECTIONS < 1:
        issues.append("MAX_WEBSOCKET_CONNECTIONS must be at least 1")
    elif MAX_WEBSOCKET_CONNECTIONS > 1000:
        warnings.append(
            f"MAX_WEBSOCKET_CONNECTIONS ({MAX_WEBSOCKET_CONNECTIONS}) is very high"
        )

    # Check cache settings
    for name, ttl in (
        ("RESPONSE_CACHE_TTL_SECONDS", RESPONSE_CACHE_TTL_SECONDS),
        ("SPEECH_CACHE_TTL_SECONDS", SPEECH_CACHE_TTL_SECONDS),
        ("TRANSCRIPTION_CACHE_TTL_SECONDS", TRANSCRIPTION_CACHE_TTL_SECONDS),
    ):
        if ttl <= 0:
            issues.append(f"{name} must be positive")

    # Check lifecycle settings
    if SESSION_IDLE_THRESHOLD_SECONDS < 60:
        warnings.append(
            f"SESSION_IDLE_THRESHOLD_SECONDS ({SESSION_IDLE_THRESHOLD_SECONDS}) is quite short"
        )
    if JOB_RUNNING_CEILING_SECONDS <= JOB_GRACE_PERIOD_SECONDS:
        issues.append("JOB_RUNNING_CEILING_SECONDS must exceed JOB_GRACE_PERIOD_SECONDS")

    # Check timeouts
    if LLM_TIMEOUT_SECONDS <= 0 or TTS_TIMEOUT_SECONDS <= 0:
        issues.append("LLM and TTS timeouts must be positive")

    # Check model settings
    if not CHAT_MODEL:
        issues.append("AZURE_OPENAI_CHAT_DEPLOYMENT_ID is empty")
    if not (AZURE_OPENAI_ENDPOINT or OPENAI_API_KEY):
        warnings.append("Neither AZURE_OPENAI_ENDPOINT nor OPENAI_API_KEY is set")

    # Count all settings from current module
    import sys

    current_module = sys.modules[__name__]
    settings_count = len(
        [
            name
            for name in dir(current_module)
            if name.isupper() and not name.startswith("_")
        ]
    )

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "warnings": warnings,
        "settings_count": settings_count,
    }
