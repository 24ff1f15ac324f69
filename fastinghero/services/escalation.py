"""Escalation sweeper: AI fallback for flares nobody answered.

Each tick walks the ACTIVE flares. A flare past the grace window that has
not escalated yet gets one of two outcomes:

- someone already hyped it: the fallback flag is set silently;
- nobody did: the flag is set, then one AI_FALLBACK push goes to the owner.

The flag is claimed before the push, so a push error or a crash after the
claim can never lead to a second fallback; the fallback is one attempt.

Only one sweeper may run per process. Multi-instance deployments need an
external single-writer guarantee (leader lease) on top of this.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from fastinghero.core.clock import Clock
from fastinghero.core.deadline import deadline_scope
from fastinghero.core.errors import FallbackAlreadySet, FlareInactive, NotFound, StoreError
from fastinghero.core.sos_policies import GRACE_WINDOW
from fastinghero.domain.sos import Flare, FlareStatus, NotificationKind
from fastinghero.services.push_service import PushError, PushGateway
from fastinghero.services.sos_store import SosStore

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Cortex Backup"


def fallback_body(hours_fasted: float) -> str:
    return (
        f"I see you're at {hours_fasted:.1f} hours and struggling. The tribe hasn't responded yet, "
        "but I'm here. This craving will pass in 15-20 minutes. Drink water, move your body, "
        "or call someone. You're stronger than this moment."
    )


@dataclass
class SweepReport:
    scanned: int = 0
    fallbacks_sent: int = 0
    marked_silently: int = 0
    expired: int = 0
    errors: int = 0


class EscalationSweeper:
    def __init__(
        self,
        store: SosStore,
        push: PushGateway,
        clock: Clock,
        grace_window: timedelta = GRACE_WINDOW,
        expire_after: timedelta | None = None,
    ) -> None:
        self.store = store
        self.push = push
        self.clock = clock
        self.grace_window = grace_window
        self.expire_after = expire_after

    def tick(self, stop: threading.Event | None = None) -> SweepReport:
        """One pass over ACTIVE flares. Stops early, between flares, once ``stop`` is set."""
        report = SweepReport()
        for flare in self.store.find_all_active():
            if stop is not None and stop.is_set():
                logger.info("Sweeper stopping mid-tick after %s flares", report.scanned)
                break
            report.scanned += 1
            try:
                self._sweep_one(flare, self.clock.now(), report)
            except StoreError as exc:
                report.errors += 1
                logger.error("Sweeper failed on flare %s: %s", flare.id, exc)
        return report

    def _sweep_one(self, flare: Flare, now: datetime, report: SweepReport) -> None:
        age = now - flare.created_at
        if self.expire_after is not None and age >= self.expire_after:
            if self.store.update_status(flare.id, FlareStatus.EXPIRED, now):
                report.expired += 1
                logger.info("Flare %s expired after %s", flare.id, age)
            return
        if flare.ai_fallback_fired or age < self.grace_window:
            return

        # Re-read: a resolve or a hype may have landed since find_all_active
        try:
            current = self.store.find_flare(flare.id)
        except NotFound:
            return
        if current.status is not FlareStatus.ACTIVE or current.ai_fallback_fired:
            return

        has_hypes = bool(self.store.list_hypes(current.id))
        if not self._claim_fallback(current.id):
            return
        if has_hypes:
            report.marked_silently += 1
            logger.info("Flare %s already has hypes; fallback marked without push", current.id)
            return

        try:
            self.push.send(
                current.owner_id,
                FALLBACK_TITLE,
                fallback_body(current.hours_fasted),
                NotificationKind.AI_FALLBACK,
                {"flare_id": current.id},
            )
        except PushError as exc:
            logger.warning("AI fallback push for flare %s failed: %s", current.id, exc)
        report.fallbacks_sent += 1
        logger.info("AI fallback fired for flare %s", current.id)

    def _claim_fallback(self, flare_id: str) -> bool:
        try:
            self.store.set_ai_fallback_fired(flare_id)
            return True
        except (FallbackAlreadySet, FlareInactive, NotFound) as exc:
            logger.debug("Fallback for flare %s not claimed: %s", flare_id, exc.kind)
            return False




SWEEP_JOB_ID = "sos-escalation-sweep"

# One sweeper per process; held from start() until the last tick has finished
_process_guard = threading.Lock()


class SweeperScheduler:
    """Runs ``EscalationSweeper.tick`` as an APScheduler interval job.

    ``max_instances=1`` keeps ticks from overlapping and ``coalesce`` folds
    missed runs into one. The first tick runs at start.
    """

    def __init__(self, sweeper: EscalationSweeper, interval_seconds: float = 60.0, tick_timeout_seconds: float = 30.0) -> None:
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self.tick_timeout_seconds = tick_timeout_seconds
        self._stop = threading.Event()
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if not _process_guard.acquire(blocking=False):
            raise RuntimeError("An escalation sweeper is already running in this process")
        self._stop.clear()
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_tick,
            "interval",
            seconds=self.interval_seconds,
            id=SWEEP_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
        )
        try:
            scheduler.start()
        except Exception:
            _process_guard.release()
            raise
        self._scheduler = scheduler
        logger.info("Escalation sweeper started (every %.0fs)", self.interval_seconds)

    def stop(self) -> None:
        """Stop scheduling and wait for a tick in flight; it ends at the next flare boundary."""
        if self._scheduler is None:
            return
        self._stop.set()
        try:
            self._scheduler.shutdown(wait=True)
        finally:
            self._scheduler = None
            _process_guard.release()
        logger.info("Escalation sweeper stopped")

    def _run_tick(self) -> None:
        try:
            with deadline_scope(self.tick_timeout_seconds):
                report = self.sweeper.tick(self._stop)
        except Exception:
            logger.exception("Escalation sweep failed")
            return
        if report.fallbacks_sent or report.marked_silently or report.expired:
            logger.info("Sweep: %s", report)
