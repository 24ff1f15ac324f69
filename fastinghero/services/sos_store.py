"""SOS store contract and the in-memory implementation.

The store exclusively owns flares, hypes and preferences. Callers get copies;
mutating a returned value never changes stored state.

Atomicity: ``append_hype`` and the ``hype_count`` increment are visible
together or not at all, as are the two halves of ``supersede_active``. The in-memory store does this with a single lock;
the SQL store with a single transaction.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from fastinghero.core.deadline import check_deadline
from fastinghero.core.errors import FallbackAlreadySet, FlareInactive, NotFound, StoreError
from fastinghero.domain.sos import Flare, FlareStatus, HypeResponse, SOSPreferences


class SosStore(Protocol):
    def save_flare(self, flare: Flare) -> None: ...

    def supersede_active(self, flare: Flare, resolved_at: datetime) -> str | None:
        """Expire the owner's ACTIVE flare, if any, and insert ``flare`` as one step.

        Returns the expired flare's id. If the insert fails nothing changes.
        """
        ...

    def find_flare(self, flare_id: str) -> Flare:
        """Raises NotFound."""
        ...

    def find_active_by_owner(self, owner_id: int) -> Flare | None: ...

    def find_all_active(self) -> list[Flare]:
        """ACTIVE flares, oldest first."""
        ...

    def update_status(self, flare_id: str, status: FlareStatus, resolved_at: datetime) -> bool:
        """Move an ACTIVE flare to ``status``. Returns False if it was already terminal."""
        ...

    def set_ai_fallback_fired(self, flare_id: str) -> None:
        """Raises NotFound, FlareInactive, or FallbackAlreadySet."""
        ...

    def append_hype(self, hype: HypeResponse) -> int:
        """Persist ``hype`` and return the flare's post-increment hype_count."""
        ...

    def list_hypes(self, flare_id: str) -> list[HypeResponse]: ...

    def count_hypes_by_sender_since(self, user_id: int, since: datetime) -> int: ...

    def get_preferences(self, user_id: int) -> SOSPreferences: ...

    def save_preferences(self, preferences: SOSPreferences) -> None: ...


class InMemorySosStore:
    """Thread-safe store for tests and single-process development."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flares: dict[str, Flare] = {}
        self._hypes: list[HypeResponse] = []
        self._preferences: dict[int, SOSPreferences] = {}

    def save_flare(self, flare: Flare) -> None:
        check_deadline()
        with self._lock:
            if flare.status is FlareStatus.ACTIVE:
                for other in self._flares.values():
                    if (
                        other.owner_id == flare.owner_id
                        and other.status is FlareStatus.ACTIVE
                        and other.id != flare.id
                    ):
                        raise StoreError(f"User {flare.owner_id} already has an active flare")
            self._flares[flare.id] = replace(flare)

    def supersede_active(self, flare: Flare, resolved_at: datetime) -> str | None:
        check_deadline()
        with self._lock:
            if flare.id in self._flares:
                raise StoreError(f"Flare {flare.id} already exists")
            previous = next(
                (f for f in self._flares.values() if f.owner_id == flare.owner_id and f.status is FlareStatus.ACTIVE),
                None,
            )
            if previous is not None:
                previous.status = FlareStatus.EXPIRED
                previous.resolved_at = resolved_at
            self._flares[flare.id] = replace(flare)
            return previous.id if previous is not None else None

    def find_flare(self, flare_id: str) -> Flare:
        check_deadline()
        with self._lock:
            flare = self._flares.get(flare_id)
            if flare is None:
                raise NotFound(flare_id)
            return replace(flare)

    def find_active_by_owner(self, owner_id: int) -> Flare | None:
        check_deadline()
        with self._lock:
            for flare in self._flares.values():
                if flare.owner_id == owner_id and flare.status is FlareStatus.ACTIVE:
                    return replace(flare)
        return None

    def find_all_active(self) -> list[Flare]:
        check_deadline()
        with self._lock:
            active = [replace(f) for f in self._flares.values() if f.status is FlareStatus.ACTIVE]
        return sorted(active, key=lambda f: f.created_at)

    def update_status(self, flare_id: str, status: FlareStatus, resolved_at: datetime) -> bool:
        check_deadline()
        with self._lock:
            flare = self._flares.get(flare_id)
            if flare is None:
                raise NotFound(flare_id)
            if flare.status is not FlareStatus.ACTIVE:
                return False
            flare.status = status
            flare.resolved_at = resolved_at
            return True

    def set_ai_fallback_fired(self, flare_id: str) -> None:
        check_deadline()
        with self._lock:
            flare = self._flares.get(flare_id)
            if flare is None:
                raise NotFound(flare_id)
            if flare.ai_fallback_fired:
                raise FallbackAlreadySet(flare_id)
            if flare.status is not FlareStatus.ACTIVE:
                raise FlareInactive(flare_id, flare.status.value)
            flare.ai_fallback_fired = True

    def append_hype(self, hype: HypeResponse) -> int:
        check_deadline()
        with self._lock:
            flare = self._flares.get(hype.flare_id)
            if flare is None:
                raise NotFound(hype.flare_id)
            if flare.status is not FlareStatus.ACTIVE:
                raise FlareInactive(flare.id, flare.status.value)
            self._hypes.append(replace(hype))
            flare.hype_count += 1
            return flare.hype_count

    def list_hypes(self, flare_id: str) -> list[HypeResponse]:
        check_deadline()
        with self._lock:
            hypes = [replace(h) for h in self._hypes if h.flare_id == flare_id]
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(hypes, key=lambda h: h.created_at)

    def count_hypes_by_sender_since(self, user_id: int, since: datetime) -> int:
        check_deadline()
        with self._lock:
            return sum(1 for h in self._hypes if h.from_user_id == user_id and h.created_at >= since)

    def get_preferences(self, user_id: int) -> SOSPreferences:
        check_deadline()
        with self._lock:
            prefs = self._preferences.get(user_id)
            if prefs is None:
                prefs = SOSPreferences(user_id=user_id)
                self._preferences[user_id] = prefs
            return replace(prefs)

    def save_preferences(self, preferences: SOSPreferences) -> None:
        check_deadline()
        with self._lock:
            self._preferences[preferences.user_id] = replace(preferences)
