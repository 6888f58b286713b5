"""API routes."""

from chorus.api.routes.chats import router as chats_router
from chorus.api.routes.health import router as health_router

__all__ = ["chats_router", "health_router"]
