"""API endpoint modules for version 1."""

from .activitypub import router as activitypub_router
from .actors import router as actors_router
from .delivery_events import router as delivery_events_router

__all__ = [
    "activitypub_router",
    "actors_router",
    "delivery_events_router",
]
