"""SQLAlchemy models for statuses and favourites received over federation."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lumen_federation.db.session import Base, BigIntegerPK
from lumen_federation.db.time import utcnow


class Status(Base):
    """A note or a reblog, keyed by its ActivityPub id.

    A placeholder status carries only its id. It is inserted when a Like or
    Announce references a status that has not been seen yet and is filled in
    by a later Create.
    """

    __tablename__ = "status"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    activity_pub_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    actor_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("actor.id", ondelete="CASCADE"), nullable=True, index=True
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    in_reply_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    reblog_of_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("status.id", ondelete="CASCADE"), nullable=True, index=True
    )
    is_local: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class StatusFavourite(Base):
    """A Like of a status by an actor."""

    __tablename__ = "status_favourite"
    __table_args__ = (
        UniqueConstraint("status_id", "actor_id", name="uq_status_favourite_status_actor"),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    status_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("status.id", ondelete="CASCADE"), nullable=False, index=True
    )
    actor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("actor.id", ondelete="CASCADE"), nullable=False, index=True
    )
    activity_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
