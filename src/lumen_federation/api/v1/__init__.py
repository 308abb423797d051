"""Version 1 API endpoints."""

from .endpoints import activitypub_router, actors_router, delivery_events_router

__all__ = [
    "activitypub_router",
    "actors_router",
    "delivery_events_router",
]
