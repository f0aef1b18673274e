"""Routers package for the MedQueue API."""

from .stations import router as stations_router
from .queue import router as queue_router
from .analytics import router as analytics_router
from .public import router as public_router

__all__ = [
    "stations_router",
    "queue_router",
    "analytics_router",
    "public_router"
]
