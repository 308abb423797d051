"""Delivery audit response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from lumen_federation.models.delivery_event import DeliveryEventResult, DeliveryEventType

T = TypeVar("T")


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DeliveryEventResponse(_CamelModel):
    """A delivery event as shown to moderators."""

    id: int
    type: DeliveryEventType
    result: DeliveryEventResult
    actor_id: int | None
    activity_id: str | None
    attempts: int
    start_at: datetime | None
    end_at: datetime | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime


class DeliveryEventItemResponse(_CamelModel):
    """Outcome of delivering an event to one inbox."""

    id: int
    event_id: int
    url: str
    is_success: bool | None
    attempts: int
    error_message: str | None
    start_at: datetime | None
    end_at: datetime | None
    created_at: datetime


class Page(BaseModel, Generic[T]):
    """One page of a listing together with the unpaged total."""

    data: list[T]
    page: int
    size: int
    total: int
