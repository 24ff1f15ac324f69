"""SOS domain values shared by the stores, the rescue engine and the API."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class FlareStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RESCUED = "RESCUED"  # user survived the urge
    FAILED = "FAILED"  # user broke the fast
    EXPIRED = "EXPIRED"  # janitor / superseded

    @property
    def is_terminal(self) -> bool:
        return self is not FlareStatus.ACTIVE


class NotificationKind(str, enum.Enum):
    FLARE_RAISED = "FLARE_RAISED"
    HYPE_RECEIVED = "HYPE_RECEIVED"
    FLARE_RESOLVED = "FLARE_RESOLVED"
    AI_FALLBACK = "AI_FALLBACK"


@dataclass
class Flare:
    """A user's request for mid-fast support."""

    id: str
    owner_id: int
    fast_id: int
    tribe_id: int | None
    description: str
    hours_fasted: float
    status: FlareStatus
    hype_count: int
    anonymous: bool
    ai_fallback_fired: bool
    created_at: datetime
    resolved_at: datetime | None = None


@dataclass
class HypeResponse:
    id: str
    flare_id: str
    from_user_id: int
    from_display_name: str
    emoji: str
    created_at: datetime
    message: str | None = None


@dataclass
class SOSPreferences:
    user_id: int
    notify_tribe_on_flare: bool = True
    anonymous_by_default: bool = False
    last_flare_at: datetime | None = None


@dataclass(frozen=True)
class Fast:
    id: int
    user_id: int
    start_time: datetime


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""

    user_id: int
    display_name: str | None
