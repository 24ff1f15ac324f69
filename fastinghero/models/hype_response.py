"""Hype response model - encouragement sent to an SOS flare."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fastinghero.db.base import Base


class HypeResponseRow(Base):
    __tablename__ = "hype_responses"
    __table_args__ = (
        Index("ix_hype_responses_sender_created_at", "from_user_id", "created_at"),
    )

    # seq preserves insertion order for hypes sharing a timestamp
    seq: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    flare_id: Mapped[str] = mapped_column(ForeignKey("sos_flares.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    from_display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    emoji: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
