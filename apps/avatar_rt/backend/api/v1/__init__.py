"""
API Version 1
=============

V1 endpoints for the avatar real-time API: health, the duplex event
channel and job uploads.
"""

from .router import v1_router

__all__ = ["v1_router"]
