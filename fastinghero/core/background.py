"""Detached task pool for work that must outlive the HTTP request."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable

from fastinghero.core.deadline import deadline_scope

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Fire-and-forget tasks, each under its own fresh deadline.

    Task failures are logged and the task's future resolves to ``None``; a
    failing background task never propagates into the request that queued it.
    """

    def __init__(self, max_workers: int = 4, timeout_seconds: float = 30.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sos-bg")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future = self._executor.submit(self._run, name, fn, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _run(self, name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
        with deadline_scope(self.timeout_seconds):
            try:
                return fn(*args, **kwargs)
            except Exception:
                logger.exception("Background task %s failed", name)
                return None

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight tasks. Returns True when none remain."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, grace_seconds: float) -> None:
        if not self.drain(grace_seconds):
            logger.warning("Background tasks still running after %.1fs grace period", grace_seconds)
        self._executor.shutdown(wait=False, cancel_futures=True)
