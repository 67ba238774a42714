"""
API Endpoints Package
=====================

Available endpoints:
- health: liveness with engine state and metrics
- realtime: duplex event channel (WebSocket)
- uploads: likeness and voice-clone uploads (mounted at the root)
"""

from . import health, realtime, uploads

__all__ = ["health", "realtime", "uploads"]
