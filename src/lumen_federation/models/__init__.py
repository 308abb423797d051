"""SQLAlchemy models for the Lumen federation engine."""

from .actor import Actor
from .blocked_domain import InstanceBlockedDomain
from .delivery_event import (
    DeliveryEvent,
    DeliveryEventItem,
    DeliveryEventResult,
    DeliveryEventType,
)
from .follow import Follow
from .status import Status, StatusFavourite

__all__ = [
    "Actor",
    "InstanceBlockedDomain",
    "DeliveryEvent", "DeliveryEventItem", "DeliveryEventResult", "DeliveryEventType",
    "Follow",
    "Status", "StatusFavourite",
]
