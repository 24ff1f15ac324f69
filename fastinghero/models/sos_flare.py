"""SOS flare model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from fastinghero.db.base import Base


class SosFlare(Base):
    """Distress signal raised by a user mid-fast."""

    __tablename__ = "sos_flares"
    __table_args__ = (
        # At most one ACTIVE flare per owner
        Index(
            "uq_sos_flares_one_active_per_owner",
            "owner_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_sos_flares_status_created_at", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    fast_id: Mapped[int] = mapped_column(ForeignKey("fasts.id", ondelete="CASCADE"), nullable=False)
    tribe_id: Mapped[int | None] = mapped_column(ForeignKey("tribes.id", ondelete="SET NULL"), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    hours_fasted: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | RESCUED | FAILED | EXPIRED
    hype_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_fallback_fired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
