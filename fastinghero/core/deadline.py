"""Per-operation deadlines carried in a context variable.

Request handlers open a ``deadline_scope`` around each SOS operation. Store
implementations call ``check_deadline`` before touching the backend, and I/O
collaborators size their timeouts with ``remaining_timeout``.

Pool threads start with an empty context, so detached work never inherits the
request's deadline; the background runner opens its own scope per task.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass

from fastinghero.core.errors import DeadlineExceeded


@dataclass(frozen=True)
class Deadline:
    expires_at: float  # time.monotonic() value

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


_current: ContextVar[Deadline | None] = ContextVar("fastinghero_deadline", default=None)


@contextmanager
def deadline_scope(seconds: float) -> Iterator[Deadline]:
    """Run the enclosed block under a deadline ``seconds`` from now.

    A nested scope never extends an enclosing, earlier deadline.
    """
    deadline = Deadline(time.monotonic() + seconds)
    outer = _current.get()
    if outer is not None and outer.expires_at < deadline.expires_at:
        deadline = outer
    token = _current.set(deadline)
    try:
        yield deadline
    finally:
        _current.reset(token)


def current_deadline() -> Deadline | None:
    return _current.get()


def remaining_timeout(default: float) -> float:
    """Timeout for the next I/O call: ``default`` capped by the active deadline."""
    deadline = _current.get()
    if deadline is None:
        return default
    return min(default, deadline.remaining())


def check_deadline() -> None:
    deadline = _current.get()
    if deadline is not None and deadline.expired:
        raise DeadlineExceeded("Operation deadline exceeded")
