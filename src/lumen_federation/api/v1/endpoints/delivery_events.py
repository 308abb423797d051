"""Moderator endpoints for browsing the delivery audit trail."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from lumen_federation.api.v1.dependencies import ModeratorDep, SessionDep
from lumen_federation.core.errors import DeliveryEventNotFoundError, UnsupportedSortColumnError
from lumen_federation.models import DeliveryEventResult, DeliveryEventType
from lumen_federation.schemas.delivery import (
    DeliveryEventItemResponse,
    DeliveryEventResponse,
    Page,
)
from lumen_federation.services.audit import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    DeliveryAuditTrail,
    SortDirection,
)

router = APIRouter(prefix="/delivery-events", tags=["delivery-events"])


@router.get("", response_model=Page[DeliveryEventResponse])
async def list_delivery_events(
    db: SessionDep,
    _moderator: ModeratorDep,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    event_type: DeliveryEventType | None = Query(None, alias="type"),
    result: DeliveryEventResult | None = Query(None),
    sort_column: str | None = Query(None, alias="sortColumn"),
    sort_direction: SortDirection = Query(SortDirection.DESCENDING, alias="sortDirection"),
) -> Page[DeliveryEventResponse]:
    """List delivery events, optionally filtered by type and result."""
    try:
        return DeliveryAuditTrail(db).list_events(
            page=page,
            size=size,
            event_type=event_type,
            result=result,
            sort_column=sort_column,
            sort_direction=sort_direction,
        )
    except UnsupportedSortColumnError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err


@router.get("/{event_id}/items", response_model=Page[DeliveryEventItemResponse])
async def list_delivery_event_items(
    event_id: int,
    db: SessionDep,
    _moderator: ModeratorDep,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    only_errors: bool = Query(False, alias="onlyErrors"),
    sort_column: str | None = Query(None, alias="sortColumn"),
    sort_direction: SortDirection = Query(SortDirection.DESCENDING, alias="sortDirection"),
) -> Page[DeliveryEventItemResponse]:
    """List the destinations of one delivery event."""
    try:
        return DeliveryAuditTrail(db).list_items(
            event_id,
            page=page,
            size=size,
            only_errors=only_errors,
            sort_column=sort_column,
            sort_direction=sort_direction,
        )
    except DeliveryEventNotFoundError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    except UnsupportedSortColumnError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
