"""
Orchestration Configuration
===========================

Cache tiers, session and job lifecycle, and per-call timeouts for the avatar
orchestration engine.
"""

import os

# ==============================================================================
# CACHE TIERS
# ==============================================================================

RESPONSE_CACHE_TTL_SECONDS = float(os.getenv("RESPONSE_CACHE_TTL_SECONDS", "300"))
SPEECH_CACHE_TTL_SECONDS = float(os.getenv("SPEECH_CACHE_TTL_SECONDS", "1800"))
TRANSCRIPTION_CACHE_TTL_SECONDS = float(
    os.getenv("TRANSCRIPTION_CACHE_TTL_SECONDS", "300")
)
CACHE_MAX_ENTRIES_PER_TIER = int(os.getenv("CACHE_MAX_ENTRIES_PER_TIER", "10000"))
CACHE_SWEEP_INTERVAL_SECONDS = float(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "120"))

# Response keys use this many characters of normalised input
RESPONSE_KEY_PREFIX_CHARS = int(os.getenv("RESPONSE_KEY_PREFIX_CHARS", "50"))
# Transcripts at or above this length are not cached
TRANSCRIPTION_CACHE_MAX_CHARS = int(os.getenv("TRANSCRIPTION_CACHE_MAX_CHARS", "100"))

# ==============================================================================
# SESSIONS AND JOBS
# ==============================================================================

SESSION_IDLE_THRESHOLD_SECONDS = float(
    os.getenv("SESSION_IDLE_THRESHOLD_SECONDS", "300")
)  # 5 minutes
SESSION_SWEEP_INTERVAL_SECONDS = float(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "30"))

JOB_GRACE_PERIOD_SECONDS = float(os.getenv("JOB_GRACE_PERIOD_SECONDS", "60"))
JOB_RUNNING_CEILING_SECONDS = float(
    os.getenv("JOB_RUNNING_CEILING_SECONDS", "3600")
)  # 1 hour
JOB_SWEEP_INTERVAL_SECONDS = float(os.getenv("JOB_SWEEP_INTERVAL_SECONDS", "300"))

AVATAR_CACHE_TTL_SECONDS = float(os.getenv("AVATAR_CACHE_TTL_SECONDS", "3600"))
MODEL_RETENTION_SECONDS = float(os.getenv("MODEL_RETENTION_SECONDS", "7200"))

# ==============================================================================
# CAPABILITY CALL TIMEOUTS
# ==============================================================================

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "8.0"))
TTS_TIMEOUT_SECONDS = float(os.getenv("TTS_TIMEOUT_SECONDS", "8.0"))
STT_TIMEOUT_SECONDS = float(os.getenv("STT_TIMEOUT_SECONDS", "10.0"))
IMAGE_TIMEOUT_SECONDS = float(os.getenv("IMAGE_TIMEOUT_SECONDS", "60.0"))
HIGH_PRIORITY_TIMEOUT_SCALE = float(os.getenv("HIGH_PRIORITY_TIMEOUT_SCALE", "0.5"))

STREAM_CONFIDENCE_THRESHOLD = float(os.getenv("STREAM_CONFIDENCE_THRESHOLD", "0.7"))
