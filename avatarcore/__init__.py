"""Real-time avatar orchestration core.

This package coordinates speech-to-text, text-to-speech, language generation and
image synthesis backends for low-latency avatar conversations and long-running
likeness, voice-clone and video jobs.
"""

__version__ = "1.0.0"
