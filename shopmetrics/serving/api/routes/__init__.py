"""
API Routes Module
"""
from .health import router as health_router
from .insights import router as insights_router
from .reconcile import router as reconcile_router
from .webhooks import router as webhooks_router

__all__ = [
    "health_router",
    "insights_router",
    "reconcile_router",
    "webhooks_router",
]
