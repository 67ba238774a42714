"""
API V1 Router
=============

Main router for API v1 endpoints.
"""

from fastapi import APIRouter

from apps.avatar_rt.backend.config import API_V1_PREFIX

from .endpoints import health, realtime

v1_router = APIRouter(prefix=API_V1_PREFIX)

v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(
    realtime.router, tags=["Real-time Communication", "WebSocket"]
)
