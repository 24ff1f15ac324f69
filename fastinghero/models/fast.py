"""Fast model - a user's fasting session."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from fastinghero.db.base import Base


class Fast(Base):
    __tablename__ = "fasts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    goal_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=16)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # NULL while running
