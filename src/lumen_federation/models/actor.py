"""SQLAlchemy models for local and remote ActivityPub actors."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from lumen_federation.db.session import Base, BigIntegerPK
from lumen_federation.db.time import utcnow


class Actor(Base):
    """An ActivityPub actor known to this instance.

    Local actors carry a private key and can sign outbound requests. Remote
    actors are cached copies of documents fetched from their home server.
    """

    __tablename__ = "actor"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    activity_pub_profile: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    user_name: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    inbox: Mapped[str | None] = mapped_column(Text, nullable=True)
    shared_inbox: Mapped[str | None] = mapped_column(Text, nullable=True)
    public_key_pem: Mapped[str | None] = mapped_column(Text, nullable=True)
    private_key_pem: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_local: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manually_approves_followers: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    moved_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def key_id(self) -> str:
        """Return the identifier of the actor's main key."""
        return f"{self.activity_pub_profile}#main-key"

    @property
    def followers_url(self) -> str:
        return f"{self.activity_pub_profile}/followers"

    @property
    def following_url(self) -> str:
        return f"{self.activity_pub_profile}/following"

    @property
    def delivery_inbox(self) -> str | None:
        """Inbox used for fan-out: the shared inbox when advertised."""
        return self.shared_inbox or self.inbox
