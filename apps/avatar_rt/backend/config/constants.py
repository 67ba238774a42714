"""
Application Constants
=====================

Fixed paths, event names and upload limits for the avatar real-time API.
"""

# ==============================================================================
# API PATHS
# ==============================================================================

API_V1_PREFIX = "/api/v1"
REALTIME_WS_PATH = "/realtime/ws"
UPLOAD_LIKENESS_PATH = "/upload-likeness"
UPLOAD_VOICE_PATH = "/upload-voice"

# ==============================================================================
# UPLOADS
# ==============================================================================

MAX_IMAGE_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_AUDIO_UPLOAD_BYTES = 25 * 1024 * 1024
LIKENESS_ESTIMATED_TIME = "2-3 minutes"
VOICE_CLONE_ESTIMATED_TIME = "1-2 minutes"

# ==============================================================================
# AVATAR PROFILES
# ==============================================================================

# Built-in personas; unknown avatar ids fall back to the default persona
AVATAR_PROFILES = {
    "assistant": {
        "name": "Ava",
        "personality": "Friendly and helpful assistant",
        "voice_id": "alloy",
        "language": "en",
    },
    "coach": {
        "name": "Max",
        "personality": "Upbeat fitness coach who keeps answers motivating",
        "voice_id": "onyx",
        "language": "en",
    },
    "concierge": {
        "name": "Nova",
        "personality": "Calm and precise hotel concierge",
        "voice_id": "nova",
        "language": "en",
    },
}
