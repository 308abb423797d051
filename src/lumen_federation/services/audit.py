"""Read access to the delivery audit trail for moderators."""

from __future__ import annotations

from enum import Enum

from sqlalchemy.orm import Query, Session
from sqlalchemy.sql.elements import ColumnElement

from lumen_federation.core.errors import DeliveryEventNotFoundError, UnsupportedSortColumnError
from lumen_federation.models import (
    DeliveryEvent,
    DeliveryEventItem,
    DeliveryEventResult,
    DeliveryEventType,
)
from lumen_federation.schemas.delivery import (
    DeliveryEventItemResponse,
    DeliveryEventResponse,
    Page,
)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
DEFAULT_SORT_COLUMN = "createdAt"


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


_EVENT_SORT_COLUMNS = {
    "startAt": DeliveryEvent.start_at,
    "endAt": DeliveryEvent.end_at,
    "createdAt": DeliveryEvent.created_at,
    "updatedAt": DeliveryEvent.updated_at,
}
_ITEM_SORT_COLUMNS = {
    "startAt": DeliveryEventItem.start_at,
    "endAt": DeliveryEventItem.end_at,
    "createdAt": DeliveryEventItem.created_at,
    "updatedAt": DeliveryEventItem.updated_at,
}


def _order(
    columns: dict[str, ColumnElement],
    sort_column: str | None,
    direction: SortDirection,
    tie_breaker: ColumnElement,
) -> list[ColumnElement]:
    column = columns.get(sort_column or DEFAULT_SORT_COLUMN)
    if column is None:
        raise UnsupportedSortColumnError(f"sorting by {sort_column!r} is not supported")
    if direction is SortDirection.ASCENDING:
        return [column.asc(), tie_breaker.asc()]
    return [column.desc(), tie_breaker.desc()]


def _paginate(query: Query, page: int, size: int) -> tuple[list, int]:
    total = query.order_by(None).count()
    rows = query.offset(page * size).limit(size).all()
    return rows, total


class DeliveryAuditTrail:
    """Paginated listings of delivery events and their items."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def list_events(
        self,
        *,
        page: int = 0,
        size: int = DEFAULT_PAGE_SIZE,
        event_type: DeliveryEventType | None = None,
        result: DeliveryEventResult | None = None,
        sort_column: str | None = None,
        sort_direction: SortDirection = SortDirection.DESCENDING,
    ) -> Page[DeliveryEventResponse]:
        """List events, newest first unless told otherwise.

        Raises:
            UnsupportedSortColumnError: If ``sort_column`` is not sortable.
        """
        size = min(max(size, 1), MAX_PAGE_SIZE)
        page = max(page, 0)
        query = self._db.query(DeliveryEvent)
        if event_type is not None:
            query = query.filter(DeliveryEvent.type == event_type)
        if result is not None:
            query = query.filter(DeliveryEvent.result == result)
        query = query.order_by(
            *_order(_EVENT_SORT_COLUMNS, sort_column, sort_direction, DeliveryEvent.id)
        )
        rows, total = _paginate(query, page, size)
        return Page[DeliveryEventResponse](
            data=[DeliveryEventResponse.model_validate(row) for row in rows],
            page=page,
            size=size,
            total=total,
        )

    def list_items(
        self,
        event_id: int,
        *,
        page: int = 0,
        size: int = DEFAULT_PAGE_SIZE,
        only_errors: bool = False,
        sort_column: str | None = None,
        sort_direction: SortDirection = SortDirection.DESCENDING,
    ) -> Page[DeliveryEventItemResponse]:
        """List the per-destination items of one event.

        Raises:
            DeliveryEventNotFoundError: If the event does not exist.
            UnsupportedSortColumnError: If ``sort_column`` is not sortable.
        """
        if self._db.get(DeliveryEvent, event_id) is None:
            raise DeliveryEventNotFoundError(f"delivery event {event_id} does not exist")

        size = min(max(size, 1), MAX_PAGE_SIZE)
        page = max(page, 0)
        query = self._db.query(DeliveryEventItem).filter(DeliveryEventItem.event_id == event_id)
        if only_errors:
            query = query.filter(DeliveryEventItem.is_success.is_(False))
        query = query.order_by(
            *_order(_ITEM_SORT_COLUMNS, sort_column, sort_direction, DeliveryEventItem.id)
        )
        rows, total = _paginate(query, page, size)
        return Page[DeliveryEventItemResponse](
            data=[DeliveryEventItemResponse.model_validate(row) for row in rows],
            page=page,
            size=size,
            total=total,
        )
