"""Initial schema — profiles, items, item_matches, notifications.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. profiles ─────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("name", sa.String, nullable=False),
        sa.Column(
            "email_notifications",
            sa.Boolean,
            server_default="true",
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 2. items ────────────────────────────────────────────────────
    op.create_table(
        "items",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("category", sa.String, nullable=False, comment="lost / found"),
        sa.Column("location", sa.String, nullable=False),
        sa.Column("item_date", sa.Date, nullable=False),
        sa.Column(
            "status",
            sa.String,
            server_default="active",
            nullable=False,
            comment="active / claimed / resolved",
        ),
        sa.Column(
            "image_urls",
            sa.JSON().with_variant(postgresql.JSONB, "postgresql"),
            nullable=True,
            comment="Array of image URLs",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("category IN ('lost', 'found')", name="ck_items_category"),
        sa.CheckConstraint(
            "status IN ('active', 'claimed', 'resolved')", name="ck_items_status"
        ),
    )
    op.create_index("idx_items_category_status", "items", ["category", "status"])

    # ── 3. item_matches ─────────────────────────────────────────────
    op.create_table(
        "item_matches",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "lost_item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "found_item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("match_score", sa.Float, nullable=False),
        sa.Column("match_reason", sa.Text, nullable=True),
        sa.Column(
            "status",
            sa.String,
            server_default="pending",
            nullable=False,
            comment="pending / confirmed / dismissed",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("lost_item_id", "found_item_id", name="uq_item_match_pair"),
        sa.CheckConstraint(
            "match_score >= 0 AND match_score <= 1", name="ck_item_matches_score"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'dismissed')",
            name="ck_item_matches_status",
        ),
    )
    op.create_index("idx_item_matches_found", "item_matches", ["found_item_id"])

    # ── 4. notifications ────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        ),
        sa.Column(
            "type",
            sa.String,
            nullable=False,
            comment="match / message / status_change",
        ),
        sa.Column("title", sa.String, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("items.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "related_item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("items.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("is_read", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_index("idx_item_matches_found", table_name="item_matches")
    op.drop_table("item_matches")
    op.drop_index("idx_items_category_status", table_name="items")
    op.drop_table("items")
    op.drop_table("profiles")
