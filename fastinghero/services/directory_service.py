"""Read-only lookups the SOS flow needs from the rest of the app.

Fasts and tribes are owned elsewhere; these adapters read
them straight from their tables.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from fastinghero.domain.sos import Fast
from fastinghero.models.fast import Fast as FastRow
from fastinghero.models.tribe import TribeMembership
from fastinghero.services.sql_sos_store import as_utc


class FastDirectory(Protocol):
    def find_active_by_user(self, user_id: int) -> Fast | None: ...


class TribeDirectory(Protocol):
    def members_of(self, tribe_id: int) -> list[int]: ...

    def size_of(self, tribe_id: int) -> int: ...

    def primary_tribe_of(self, user_id: int) -> int | None: ...


class SqlFastDirectory:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def find_active_by_user(self, user_id: int) -> Fast | None:
        """Latest fast that has not ended."""
        with self._session_factory() as db:
            row = db.execute(
                select(FastRow)
                .where(FastRow.user_id == user_id, FastRow.ended_at.is_(None))
                .order_by(FastRow.start_time.desc())
                .limit(1)
            ).scalar_one_or_none()
            if row is None:
                return None
            return Fast(id=row.id, user_id=row.user_id, start_time=as_utc(row.start_time))


class SqlTribeDirectory:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def members_of(self, tribe_id: int) -> list[int]:
        """Member ids in join order."""
        with self._session_factory() as db:
            result = db.execute(
                select(TribeMembership.user_id)
                .where(TribeMembership.tribe_id == tribe_id)
                .order_by(TribeMembership.joined_at.asc(), TribeMembership.user_id.asc())
            )
            return list(result.scalars().all())

    def size_of(self, tribe_id: int) -> int:
        with self._session_factory() as db:
            return db.execute(
                select(func.count(TribeMembership.id)).where(TribeMembership.tribe_id == tribe_id)
            ).scalar_one()

    def primary_tribe_of(self, user_id: int) -> int | None:
        """The tribe the user joined first."""
        with self._session_factory() as db:
            return db.execute(
                select(TribeMembership.tribe_id)
                .where(TribeMembership.user_id == user_id)
                .order_by(TribeMembership.joined_at.asc(), TribeMembership.tribe_id.asc())
                .limit(1)
            ).scalar_one_or_none()
