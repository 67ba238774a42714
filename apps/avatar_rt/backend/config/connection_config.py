"""
Connection Management Configuration
===================================

WebSocket connection limits and CORS settings for the avatar real-time API.
"""

import os

# ==============================================================================
# WEBSOCKET CONNECTION MANAGEMENT
# ==============================================================================

MAX_WEBSOCKET_CONNECTIONS = int(os.getenv("MAX_WEBSOCKET_CONNECTIONS", "200"))
ENABLE_CONNECTION_LIMITS = (
    os.getenv("ENABLE_CONNECTION_LIMITS", "true").lower() == "true"
)

# Per-connection outbound queue; oldest frames are dropped when full
SEND_QUEUE_SIZE = int(os.getenv("SEND_QUEUE_SIZE", "100"))

# ==============================================================================
# CORS
# ==============================================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
    if origin.strip()
]
