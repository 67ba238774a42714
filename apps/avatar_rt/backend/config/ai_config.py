"""
AI and Model Configuration
===========================

OpenAI / Azure OpenAI endpoints, deployments and generation parameters.
"""

import os

# ==============================================================================
# ENDPOINTS
# ==============================================================================

AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_KEY = os.getenv("AZURE_OPENAI_KEY", "")
AZURE_OPENAI_API_VERSION = os.getenv("AZURE_OPENAI_API_VERSION", "2025-01-01-preview")
AZURE_CLIENT_ID = os.getenv("AZURE_CLIENT_ID", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

# ==============================================================================
# MODELS / DEPLOYMENTS
# ==============================================================================

CHAT_MODEL = os.getenv("AZURE_OPENAI_CHAT_DEPLOYMENT_ID", "gpt-4o-mini")
TTS_MODEL = os.getenv("AZURE_OPENAI_TTS_DEPLOYMENT_ID", "gpt-4o-mini-tts")
STT_MODEL = os.getenv("AZURE_OPENAI_STT_DEPLOYMENT_ID", "whisper-1")
IMAGE_MODEL = os.getenv("AZURE_OPENAI_IMAGE_DEPLOYMENT_ID", "dall-e-3")
DEFAULT_TTS_VOICE = os.getenv("DEFAULT_TTS_VOICE", "alloy")

# ==============================================================================
# GENERATION PARAMETERS
# ==============================================================================

DEFAULT_TEMPERATURE = float(os.getenv("DEFAULT_TEMPERATURE", "0.7"))
DEFAULT_MAX_TOKENS = int(os.getenv("DEFAULT_MAX_TOKENS", "50"))
TTS_SPEED = float(os.getenv("TTS_SPEED", "1.1"))
