"""
Back2U — ItemMatch model.

At most one match record may exist per ordered (lost, found) pair; the
``uq_item_match_pair`` constraint is what makes the recorder's insert
idempotent under concurrent invocations.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from back2u.database import Base


class MatchStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


class ItemMatch(Base):
    __tablename__ = "item_matches"
    __table_args__ = (
        UniqueConstraint("lost_item_id", "found_item_id", name="uq_item_match_pair"),
        Index("idx_item_matches_found", "found_item_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lost_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False
    )
    found_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False
    )
    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    match_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String,
        default=MatchStatus.PENDING.value,
        server_default=MatchStatus.PENDING.value,
        nullable=False,
        comment="pending / confirmed / dismissed",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    lost_item: Mapped["Item"] = relationship(
        "Item", foreign_keys=[lost_item_id], lazy="selectin"
    )
    found_item: Mapped["Item"] = relationship(
        "Item", foreign_keys=[found_item_id], lazy="selectin"
    )

    def __repr__(self) -> str:
        return (
            f"<ItemMatch lost={self.lost_item_id} found={self.found_item_id} "
            f"score={self.match_score:.2f} status={self.status!r}>"
        )
