"""
Back2U — Item model.

An item is a lost-or-found report.  ``category`` and ``status`` are
independent axes: a ``found`` item can be ``resolved`` without ever having
a confirmed match.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from back2u.database import Base


class ItemCategory(str, enum.Enum):
    LOST = "lost"
    FOUND = "found"

    @property
    def opposite(self) -> "ItemCategory":
        return ItemCategory.FOUND if self is ItemCategory.LOST else ItemCategory.LOST


class ItemStatus(str, enum.Enum):
    ACTIVE = "active"
    CLAIMED = "claimed"
    RESOLVED = "resolved"


class Item(Base):
    __tablename__ = "items"
    __table_args__ = (
        Index("idx_items_category_status", "category", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(
        String, nullable=False, comment="lost / found"
    )
    location: Mapped[str] = mapped_column(String, nullable=False)
    item_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String,
        default=ItemStatus.ACTIVE.value,
        server_default=ItemStatus.ACTIVE.value,
        nullable=False,
        comment="active / claimed / resolved",
    )
    image_urls: Mapped[list | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
        comment="Array of image URLs",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    owner: Mapped["Profile"] = relationship("Profile", back_populates="items")

    def __repr__(self) -> str:
        return f"<Item {self.category}:{self.title!r} id={self.id}>"
