"""Per-user minimum interval between flares."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from fastinghero.core.clock import Clock
from fastinghero.core.sos_policies import COOLDOWN
from fastinghero.domain.sos import SOSPreferences


@dataclass(frozen=True)
class CooldownDecision:
    allowed: bool
    remaining: timedelta = timedelta(0)


class CooldownGate:
    """Pure check against ``preferences.last_flare_at``; no side effects."""

    def __init__(self, clock: Clock, cooldown: timedelta = COOLDOWN) -> None:
        self.clock = clock
        self.cooldown = cooldown

    def check(self, preferences: SOSPreferences) -> CooldownDecision:
        if preferences.last_flare_at is None:
            return CooldownDecision(allowed=True)
        elapsed = self.clock.now() - preferences.last_flare_at
        if elapsed >= self.cooldown:
            return CooldownDecision(allowed=True)
        return CooldownDecision(allowed=False, remaining=self.cooldown - elapsed)
