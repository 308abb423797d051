"""
Pydantic schemas for activities, queued envelopes and API responses.

These schemas define the structure of federation data for serialization and validation.
"""

from .activity import Activity, ActivityKind
from .delivery import DeliveryEventItemResponse, DeliveryEventResponse, Page
from .envelope import Envelope, IngressPoint

__all__ = [
    "Activity", "ActivityKind",
    "DeliveryEventItemResponse", "DeliveryEventResponse", "Page",
    "Envelope", "IngressPoint",
]
