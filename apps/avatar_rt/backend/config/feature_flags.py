"""
Feature Flags and Application Behavior
=======================================

Environment, documentation and monitoring toggles.
"""

import os

# Environment and debugging
DEBUG_MODE = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes", "on")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

# Documentation features
_enable_docs_raw = os.getenv("ENABLE_DOCS", "auto").lower()

if _enable_docs_raw == "auto":
    ENABLE_DOCS = ENVIRONMENT not in ("production", "prod", "staging", "uat")
elif _enable_docs_raw in ("true", "1", "yes", "on"):
    ENABLE_DOCS = True
else:
    ENABLE_DOCS = False

DOCS_URL = "/docs" if ENABLE_DOCS else None
REDOC_URL = "/redoc" if ENABLE_DOCS else None
OPENAPI_URL = "/openapi.json" if ENABLE_DOCS else None

# ==============================================================================
# MONITORING
# ==============================================================================

ENABLE_TRACING = os.getenv("ENABLE_TRACING", "false").lower() == "true"
