"""SQLAlchemy models for the outbound delivery audit trail."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lumen_federation.core.errors import DeliveryStateError
from lumen_federation.db.session import Base, BigIntegerPK
from lumen_federation.db.time import utcnow


class DeliveryEventType(str, Enum):
    """Kind of local action that triggered a fan-out."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LIKE = "like"
    UNLIKE = "unlike"
    ANNOUNCE = "announce"
    UNANNOUNCE = "unannounce"
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"


class DeliveryEventResult(str, Enum):
    """Lifecycle of a delivery event."""

    WAITING = "waiting"
    PROCESSING = "processing"
    FINISHED = "finished"
    FINISHED_WITH_ERRORS = "finishedWithErrors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RESULTS


TERMINAL_RESULTS = frozenset(
    {
        DeliveryEventResult.FINISHED,
        DeliveryEventResult.FINISHED_WITH_ERRORS,
        DeliveryEventResult.FAILED,
    }
)

_ALLOWED_TRANSITIONS: dict[DeliveryEventResult, frozenset[DeliveryEventResult]] = {
    DeliveryEventResult.WAITING: frozenset({DeliveryEventResult.PROCESSING})
    | TERMINAL_RESULTS,
    DeliveryEventResult.PROCESSING: TERMINAL_RESULTS,
}


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class DeliveryEvent(Base):
    """One outbound fan-out of an activity to a set of remote inboxes."""

    __tablename__ = "delivery_event"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    type: Mapped[DeliveryEventType] = mapped_column(
        SAEnum(
            DeliveryEventType,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            name="delivery_event_type",
        ),
        nullable=False,
        index=True,
    )
    result: Mapped[DeliveryEventResult] = mapped_column(
        SAEnum(
            DeliveryEventResult,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            name="delivery_event_result",
        ),
        nullable=False,
        default=DeliveryEventResult.WAITING,
        index=True,
    )
    actor_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("actor.id", ondelete="SET NULL"), nullable=True, index=True
    )
    activity_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    items: Mapped[list[DeliveryEventItem]] = relationship(
        "DeliveryEventItem",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="DeliveryEventItem.id",
    )

    def transition(self, new_result: DeliveryEventResult) -> None:
        """Move the event to ``new_result``.

        Raises:
            DeliveryStateError: If the event is terminal or the move is not allowed.
        """
        current = DeliveryEventResult(self.result or DeliveryEventResult.WAITING)
        allowed = _ALLOWED_TRANSITIONS.get(current, frozenset())
        if new_result not in allowed:
            raise DeliveryStateError(
                f"delivery event {self.id} cannot move from {current.value} to {new_result.value}"
            )
        self.result = new_result


class DeliveryEventItem(Base):
    """Delivery of one event to one destination inbox.

    ``is_success`` stays null while the destination is still being attempted
    and is written once, together with the timings, when it becomes terminal.
    """

    __tablename__ = "delivery_event_item"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("delivery_event.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    is_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    event: Mapped[DeliveryEvent] = relationship("DeliveryEvent", back_populates="items")

    @property
    def is_terminal(self) -> bool:
        return self.is_success is not None
