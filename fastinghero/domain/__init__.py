"""Domain values."""

from fastinghero.domain.sos import (
    Fast,
    Flare,
    FlareStatus,
    HypeResponse,
    Identity,
    NotificationKind,
    SOSPreferences,
)

__all__ = [
    "Fast",
    "Flare",
    "FlareStatus",
    "HypeResponse",
    "Identity",
    "NotificationKind",
    "SOSPreferences",
]
