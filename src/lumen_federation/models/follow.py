"""SQLAlchemy model for the follower graph."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lumen_federation.db.session import Base, BigIntegerPK
from lumen_federation.db.time import utcnow
from lumen_federation.models.actor import Actor


class Follow(Base):
    """Edge from a following actor (source) to a followed actor (target)."""

    __tablename__ = "follow"
    __table_args__ = (UniqueConstraint("source_id", "target_id", name="uq_follow_source_target"),)

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("actor.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("actor.id", ondelete="CASCADE"), nullable=False, index=True
    )
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Id of the Follow activity that created the edge
    activity_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    source: Mapped[Actor] = relationship("Actor", foreign_keys=[source_id])
    target: Mapped[Actor] = relationship("Actor", foreign_keys=[target_id])
