"""Daily hype budget per sender, scaled by tribe size.

Small tribes are effectively unlimited; large tribes are capped to keep a
single member from spamming everyone. Days are UTC days.

The cap is a ceiling, not a reservation. Within one process the check and
the insert for a sender run under that sender's lock, so the cap holds
exactly. Two instances can still both observe ``cap - 1`` and both insert;
that overshoot stands and nothing is rolled back.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from fastinghero.core.clock import Clock
from fastinghero.core.sos_policies import HYPE_CAP_TIERS, HYPE_CAP_UNBOUNDED
from fastinghero.services.directory_service import TribeDirectory
from fastinghero.services.sos_store import SosStore


def hype_cap(tribe_size: int | None) -> int:
    """Daily cap for a tribe of ``tribe_size`` members. ``None`` means no tribe."""
    if tribe_size is None:
        return HYPE_CAP_UNBOUNDED
    for upper_bound, cap in HYPE_CAP_TIERS:
        if tribe_size <= upper_bound:
            return cap
    return HYPE_CAP_UNBOUNDED


def start_of_day_utc(instant: datetime) -> datetime:
    instant = instant.astimezone(timezone.utc)
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class QuotaDecision:
    used: int
    cap: int

    @property
    def allowed(self) -> bool:
        return self.used < self.cap

    @property
    def remaining(self) -> int:
        return max(0, self.cap - self.used)


class HypeQuota:
    def __init__(self, store: SosStore, tribes: TribeDirectory, clock: Clock) -> None:
        self.store = store
        self.tribes = tribes
        self.clock = clock
        self._guard = threading.Lock()
        self._sender_locks: dict[int, threading.Lock] = {}

    def sender_lock(self, sender_id: int) -> threading.Lock:
        """Hold across ``check`` and the insert it allows."""
        with self._guard:
            return self._sender_locks.setdefault(sender_id, threading.Lock())

    def check(self, sender_id: int, tribe_id: int | None) -> QuotaDecision:
        """Remaining budget for ``sender_id`` against the flare's tribe, read live."""
        size = self.tribes.size_of(tribe_id) if tribe_id is not None else None
        cap = hype_cap(size)
        used = self.store.count_hypes_by_sender_since(sender_id, start_of_day_utc(self.clock.now()))
        return QuotaDecision(used=used, cap=cap)
