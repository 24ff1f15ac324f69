"""Pytest fixtures."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from fastinghero import models  # noqa: F401 - register for create_all
from fastinghero.core.background import BackgroundRunner
from fastinghero.core.clock import FrozenClock
from fastinghero.core.security import create_access_token
from fastinghero.db.base import Base
from fastinghero.db.session import get_db, make_engine
from fastinghero.domain.sos import Fast, Identity, NotificationKind
from fastinghero.main import create_app
from fastinghero.models import Fast as FastRow
from fastinghero.models import Tribe, TribeMembership, User
from fastinghero.services.directory_service import SqlFastDirectory, SqlTribeDirectory
from fastinghero.services.push_service import PushError
from fastinghero.services.rescue_engine import RescueEngine
from fastinghero.services.sos_store import InMemorySosStore
from fastinghero.services.sql_sos_store import SqlAlchemySosStore

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

_emails = itertools.count(1)

COACH_REPLY = {
    "immediate_action": "Drink a full glass of water now.",
    "distraction": "Walk around the block.",
    "science": "Ghrelin comes in waves and passes in about 20 minutes.",
    "motivation": "You are stronger than this craving.",
}


# ---------- Collaborator doubles ----------


@dataclass
class PushCall:
    user_ids: list[int]
    title: str
    body: str
    kind: NotificationKind
    data: dict = field(default_factory=dict)


class RecordingPush:
    """Push gateway that records every accepted call. Set ``fail`` to reject everything."""

    def __init__(self) -> None:
        self.calls: list[PushCall] = []
        self.fail = False
        self._lock = threading.Lock()

    def send(self, user_id, title, body, kind, data=None) -> None:
        self._record([user_id], title, body, kind, data)

    def send_batch(self, user_ids, title, body, kind, data=None) -> None:
        self._record(list(user_ids), title, body, kind, data)

    def _record(self, user_ids, title, body, kind, data) -> None:
        if self.fail:
            raise PushError("push provider unavailable")
        with self._lock:
            self.calls.append(PushCall(user_ids, title, body, kind, dict(data or {})))

    def of_kind(self, kind: NotificationKind) -> list[PushCall]:
        return [c for c in self.calls if c.kind is kind]

    def recipients(self, kind: NotificationKind) -> list[int]:
        return [uid for c in self.of_kind(kind) for uid in c.user_ids]


class StubCoach:
    def __init__(self, reply=None, error: Exception | None = None) -> None:
        self.reply = COACH_REPLY if reply is None else reply
        self.error = error
        self.calls: list[tuple[int, str, float | None]] = []

    def craving_help(self, user_id, description, hours_fasted=None):
        self.calls.append((user_id, description, hours_fasted))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeFastDirectory:
    def __init__(self) -> None:
        self.fasts: dict[int, Fast] = {}

    def start(self, user_id: int, start_time: datetime, fast_id: int | None = None) -> Fast:
        fast = Fast(id=fast_id or 100 + user_id, user_id=user_id, start_time=start_time)
        self.fasts[user_id] = fast
        return fast

    def find_active_by_user(self, user_id: int) -> Fast | None:
        return self.fasts.get(user_id)


class FakeTribeDirectory:
    def __init__(self) -> None:
        self.tribes: dict[int, list[int]] = {}

    def add_tribe(self, tribe_id: int, member_ids) -> None:
        self.tribes[tribe_id] = list(member_ids)

    def members_of(self, tribe_id: int) -> list[int]:
        return list(self.tribes.get(tribe_id, []))

    def size_of(self, tribe_id: int) -> int:
        return len(self.tribes.get(tribe_id, []))

    def primary_tribe_of(self, user_id: int) -> int | None:
        for tribe_id, members in self.tribes.items():
            if user_id in members:
                return tribe_id
        return None


def identity(user_id: int, name: str | None = None) -> Identity:
    return Identity(user_id=user_id, display_name=name if name is not None else f"User {user_id}")


# ---------- Engine fixtures ----------


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def push():
    return RecordingPush()


@pytest.fixture
def coach():
    return StubCoach()


@pytest.fixture
def runner():
    r = BackgroundRunner(max_workers=4, timeout_seconds=30.0)
    yield r
    r.shutdown(5.0)


@pytest.fixture
def store():
    return InMemorySosStore()


@pytest.fixture
def fasts():
    return FakeFastDirectory()


@pytest.fixture
def tribes():
    return FakeTribeDirectory()


@pytest.fixture
def rescue(store, fasts, tribes, push, coach, runner, clock):
    return RescueEngine(
        store=store,
        fasts=fasts,
        tribes=tribes,
        push=push,
        coach=coach,
        runner=runner,
        clock=clock,
        llm_reply_wait_seconds=5.0,
    )


# ---------- Database fixtures ----------


@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite file per test, tables created from the models."""
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlAlchemySosStore(session_factory)


class Seeder:
    """Creates users, fasts and tribes directly in the test database."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def user(self, display_name: str | None = "Someone", email: str | None = None, is_active: bool = True) -> int:
        with self.session_factory() as db:
            user = User(
                email=email or f"user{next(_emails)}@test.com",
                display_name=display_name,
                is_active=is_active,
            )
            db.add(user)
            db.commit()
            return user.id

    def fast(self, user_id: int, start_time: datetime, ended_at: datetime | None = None) -> int:
        with self.session_factory() as db:
            fast = FastRow(user_id=user_id, start_time=start_time, ended_at=ended_at)
            db.add(fast)
            db.commit()
            return fast.id

    def tribe(self, name: str, member_ids, joined_at: datetime = T0) -> int:
        with self.session_factory() as db:
            tribe = Tribe(name=name)
            db.add(tribe)
            db.flush()
            for offset, user_id in enumerate(member_ids):
                db.add(
                    TribeMembership(
                        tribe_id=tribe.id,
                        user_id=user_id,
                        joined_at=joined_at + timedelta(seconds=offset),
                    )
                )
            db.commit()
            return tribe.id


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def sql_rescue(session_factory, sql_store, push, coach, runner, clock):
    return RescueEngine(
        store=sql_store,
        fasts=SqlFastDirectory(session_factory),
        tribes=SqlTribeDirectory(session_factory),
        push=push,
        coach=coach,
        runner=runner,
        clock=clock,
        llm_reply_wait_seconds=5.0,
    )


@pytest.fixture
def client(session_factory, sql_rescue):
    """Test client with overridden DB and an injected rescue engine; sweeper off."""
    app = create_app(rescue_engine=sql_rescue, start_sweeper=False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
