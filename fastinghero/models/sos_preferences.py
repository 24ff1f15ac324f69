"""Per-user SOS preferences, including the cooldown anchor."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from fastinghero.db.base import Base


class SosPreferencesRow(Base):
    __tablename__ = "sos_preferences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    notify_tribe_on_flare: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    anonymous_by_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_flare_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
