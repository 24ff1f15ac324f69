"""Tribe and membership models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from fastinghero.db.base import Base


class Tribe(Base):
    """A named community of users."""

    __tablename__ = "tribes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TribeMembership(Base):
    __tablename__ = "tribe_memberships"
    __table_args__ = (
        UniqueConstraint("tribe_id", "user_id", name="uq_tribe_membership_tribe_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tribe_id: Mapped[int] = mapped_column(ForeignKey("tribes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
