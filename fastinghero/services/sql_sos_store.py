"""SQLAlchemy-backed SOS store."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fastinghero.core.deadline import check_deadline
from fastinghero.core.errors import FallbackAlreadySet, FlareInactive, NotFound, StoreError
from fastinghero.domain.sos import Flare, FlareStatus, HypeResponse, SOSPreferences
from fastinghero.models.hype_response import HypeResponseRow
from fastinghero.models.sos_flare import SosFlare
from fastinghero.models.sos_preferences import SosPreferencesRow

logger = logging.getLogger(__name__)

ACTIVE = FlareStatus.ACTIVE.value


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize to aware UTC. SQLite hands back naive datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_flare(row: SosFlare) -> Flare:
    return Flare(
        id=row.id,
        owner_id=row.owner_id,
        fast_id=row.fast_id,
        tribe_id=row.tribe_id,
        description=row.description,
        hours_fasted=row.hours_fasted,
        status=FlareStatus(row.status),
        hype_count=row.hype_count,
        anonymous=row.anonymous,
        ai_fallback_fired=row.ai_fallback_fired,
        created_at=as_utc(row.created_at),
        resolved_at=as_utc(row.resolved_at),
    )


def _to_row(flare: Flare) -> SosFlare:
    return SosFlare(
        id=flare.id,
        owner_id=flare.owner_id,
        fast_id=flare.fast_id,
        tribe_id=flare.tribe_id,
        description=flare.description,
        hours_fasted=flare.hours_fasted,
        status=flare.status.value,
        hype_count=flare.hype_count,
        anonymous=flare.anonymous,
        ai_fallback_fired=flare.ai_fallback_fired,
        created_at=as_utc(flare.created_at),
        resolved_at=as_utc(flare.resolved_at),
    )


def _to_hype(row: HypeResponseRow) -> HypeResponse:
    return HypeResponse(
        id=row.id,
        flare_id=row.flare_id,
        from_user_id=row.from_user_id,
        from_display_name=row.from_display_name,
        message=row.message,
        emoji=row.emoji,
        created_at=as_utc(row.created_at),
    )


def _to_preferences(row: SosPreferencesRow) -> SOSPreferences:
    return SOSPreferences(
        user_id=row.user_id,
        notify_tribe_on_flare=row.notify_tribe_on_flare,
        anonymous_by_default=row.anonymous_by_default,
        last_flare_at=as_utc(row.last_flare_at),
    )


class SqlAlchemySosStore:
    """SOS store over the relational schema.

    Every operation runs in its own short session, so the store is safe to
    share between request threads, background tasks and the sweeper.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        check_deadline()
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("SOS store failure: %s", exc)
            raise StoreError(f"SOS store failure: {exc.__class__.__name__}") from exc
        finally:
            db.close()

    # ---------- Flares ----------

    def save_flare(self, flare: Flare) -> None:
        with self._session() as db:
            db.merge(_to_row(flare))
            db.commit()

    def supersede_active(self, flare: Flare, resolved_at: datetime) -> str | None:
        with self._session() as db:
            previous_id = db.execute(
                select(SosFlare.id)
                .where(SosFlare.owner_id == flare.owner_id, SosFlare.status == ACTIVE)
                .with_for_update()
            ).scalar_one_or_none()
            if previous_id is not None:
                db.execute(
                    update(SosFlare)
                    .where(SosFlare.id == previous_id, SosFlare.status == ACTIVE)
                    .values(status=FlareStatus.EXPIRED.value, resolved_at=as_utc(resolved_at))
                    .execution_options(synchronize_session=False)
                )
            db.add(_to_row(flare))
            # Rolled back as a whole if the insert fails
            db.commit()
            return previous_id

    def find_flare(self, flare_id: str) -> Flare:
        with self._session() as db:
            row = db.get(SosFlare, flare_id)
            if row is None:
                raise NotFound(flare_id)
            return _to_flare(row)

    def find_active_by_owner(self, owner_id: int) -> Flare | None:
        with self._session() as db:
            row = db.execute(
                select(SosFlare)
                .where(SosFlare.owner_id == owner_id, SosFlare.status == ACTIVE)
                .order_by(SosFlare.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_flare(row) if row else None

    def find_all_active(self) -> list[Flare]:
        with self._session() as db:
            rows = db.execute(
                select(SosFlare).where(SosFlare.status == ACTIVE).order_by(SosFlare.created_at.asc())
            ).scalars().all()
            return [_to_flare(r) for r in rows]

    def update_status(self, flare_id: str, status: FlareStatus, resolved_at: datetime) -> bool:
        with self._session() as db:
            result = db.execute(
                update(SosFlare)
                .where(SosFlare.id == flare_id, SosFlare.status == ACTIVE)
                .values(status=status.value, resolved_at=as_utc(resolved_at))
            )
            if result.rowcount == 0:
                if db.get(SosFlare, flare_id) is None:
                    raise NotFound(flare_id)
                return False
            db.commit()
            return True

    def set_ai_fallback_fired(self, flare_id: str) -> None:
        with self._session() as db:
            result = db.execute(
                update(SosFlare)
                .where(
                    SosFlare.id == flare_id,
                    SosFlare.status == ACTIVE,
                    SosFlare.ai_fallback_fired.is_(False),
                )
                .values(ai_fallback_fired=True)
            )
            if result.rowcount == 1:
                db.commit()
                return
            row = db.get(SosFlare, flare_id)
            if row is None:
                raise NotFound(flare_id)
            if row.ai_fallback_fired:
                raise FallbackAlreadySet(flare_id)
            raise FlareInactive(flare_id, row.status)

    # ---------- Hypes ----------

    def append_hype(self, hype: HypeResponse) -> int:
        with self._session() as db:
            flare = db.get(SosFlare, hype.flare_id, with_for_update=True)
            if flare is None:
                raise NotFound(hype.flare_id)
            if flare.status != ACTIVE:
                raise FlareInactive(flare.id, flare.status)
            db.add(
                HypeResponseRow(
                    id=hype.id,
                    flare_id=hype.flare_id,
                    from_user_id=hype.from_user_id,
                    from_display_name=hype.from_display_name,
                    message=hype.message,
                    emoji=hype.emoji,
                    created_at=as_utc(hype.created_at),
                )
            )
            result = db.execute(
                update(SosFlare)
                .where(SosFlare.id == hype.flare_id, SosFlare.status == ACTIVE)
                .values(hype_count=SosFlare.hype_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise FlareInactive(hype.flare_id, "resolved concurrently")
            count = db.execute(select(SosFlare.hype_count).where(SosFlare.id == hype.flare_id)).scalar_one()
            db.commit()
            return count

    def list_hypes(self, flare_id: str) -> list[HypeResponse]:
        with self._session() as db:
            rows = db.execute(
                select(HypeResponseRow)
                .where(HypeResponseRow.flare_id == flare_id)
                .order_by(HypeResponseRow.created_at.asc(), HypeResponseRow.seq.asc())
            ).scalars().all()
            return [_to_hype(r) for r in rows]

    def count_hypes_by_sender_since(self, user_id: int, since: datetime) -> int:
        with self._session() as db:
            return db.execute(
                select(func.count(HypeResponseRow.seq)).where(
                    HypeResponseRow.from_user_id == user_id,
                    HypeResponseRow.created_at >= as_utc(since),
                )
            ).scalar_one()

    # ---------- Preferences ----------

    def get_preferences(self, user_id: int) -> SOSPreferences:
        with self._session() as db:
            row = self._preferences_row(db, user_id)
            if row is None:
                row = SosPreferencesRow(user_id=user_id, notify_tribe_on_flare=True, anonymous_by_default=False)
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    # Created concurrently by another request
                    db.rollback()
                    row = self._preferences_row(db, user_id)
            return _to_preferences(row)

    def save_preferences(self, preferences: SOSPreferences) -> None:
        with self._session() as db:
            row = self._preferences_row(db, preferences.user_id)
            if row is None:
                row = SosPreferencesRow(user_id=preferences.user_id)
                db.add(row)
            row.notify_tribe_on_flare = preferences.notify_tribe_on_flare
            row.anonymous_by_default = preferences.anonymous_by_default
            row.last_flare_at = as_utc(preferences.last_flare_at)
            db.commit()

    @staticmethod
    def _preferences_row(db: Session, user_id: int) -> SosPreferencesRow | None:
        return db.execute(
            select(SosPreferencesRow).where(SosPreferencesRow.user_id == user_id)
        ).scalar_one_or_none()
