"""SQLAlchemy model for instance-level domain blocks."""

from datetime import datetime

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from lumen_federation.db.session import Base, BigIntegerPK
from lumen_federation.db.time import utcnow


class InstanceBlockedDomain(Base):
    """A remote domain whose activities are refused by this instance."""

    __tablename__ = "instance_blocked_domain"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
