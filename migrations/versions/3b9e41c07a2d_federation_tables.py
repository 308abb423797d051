"""federation tables

Revision ID: 3b9e41c07a2d
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b9e41c07a2d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    return columns


def upgrade() -> None:
    """Create actors, follows, statuses, domain blocks and the delivery audit trail."""
    op.create_table(
        "actor",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("activity_pub_profile", sa.Text(), nullable=False),
        sa.Column("user_name", sa.Text(), nullable=False),
        sa.Column("domain", sa.Text(), nullable=False),
        sa.Column("inbox", sa.Text(), nullable=True),
        sa.Column("shared_inbox", sa.Text(), nullable=True),
        sa.Column("public_key_pem", sa.Text(), nullable=True),
        sa.Column("private_key_pem", sa.Text(), nullable=True),
        sa.Column("is_local", sa.Boolean(), nullable=False),
        sa.Column("manually_approves_followers", sa.Boolean(), nullable=False),
        sa.Column("moved_to", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_pub_profile"),
    )
    op.create_index("ix_actor_domain", "actor", ["domain"])

    op.create_table(
        "follow",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("source_id", sa.BigInteger(), nullable=False),
        sa.Column("target_id", sa.BigInteger(), nullable=False),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("activity_id", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["source_id"], ["actor.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_id"], ["actor.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_id", "target_id", name="uq_follow_source_target"),
    )
    op.create_index("ix_follow_source_id", "follow", ["source_id"])
    op.create_index("ix_follow_target_id", "follow", ["target_id"])
    op.create_index("ix_follow_activity_id", "follow", ["activity_id"])

    op.create_table(
        "status",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("activity_pub_id", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("in_reply_to", sa.Text(), nullable=True),
        sa.Column("reblog_of_id", sa.BigInteger(), nullable=True),
        sa.Column("is_local", sa.Boolean(), nullable=False),
        sa.Column("is_placeholder", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["actor_id"], ["actor.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reblog_of_id"], ["status.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_pub_id"),
    )
    op.create_index("ix_status_actor_id", "status", ["actor_id"])
    op.create_index("ix_status_reblog_of_id", "status", ["reblog_of_id"])

    op.create_table(
        "status_favourite",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("status_id", sa.BigInteger(), nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("activity_id", sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["status_id"], ["status.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_id"], ["actor.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("status_id", "actor_id", name="uq_status_favourite_status_actor"),
    )
    op.create_index("ix_status_favourite_status_id", "status_favourite", ["status_id"])
    op.create_index("ix_status_favourite_actor_id", "status_favourite", ["actor_id"])
    op.create_index("ix_status_favourite_activity_id", "status_favourite", ["activity_id"])

    op.create_table(
        "instance_blocked_domain",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("domain", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("domain"),
    )

    op.create_table(
        "delivery_event",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("activity_id", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["actor_id"], ["actor.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delivery_event_type", "delivery_event", ["type"])
    op.create_index("ix_delivery_event_result", "delivery_event", ["result"])
    op.create_index("ix_delivery_event_actor_id", "delivery_event", ["actor_id"])
    op.create_index(
        "ix_delivery_event_activity_id", "delivery_event", ["activity_id"], unique=True
    )

    op.create_table(
        "delivery_event_item",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("event_id", sa.BigInteger(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("is_success", sa.Boolean(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["event_id"], ["delivery_event.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delivery_event_item_event_id", "delivery_event_item", ["event_id"])


def downgrade() -> None:
    """Drop every federation table."""
    op.drop_table("delivery_event_item")
    op.drop_table("delivery_event")
    op.drop_table("instance_blocked_domain")
    op.drop_table("status_favourite")
    op.drop_table("status")
    op.drop_table("follow")
    op.drop_table("actor")
