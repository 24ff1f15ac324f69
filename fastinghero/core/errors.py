"""SOS domain errors.

Every error carries a machine-readable ``kind`` and the HTTP status the API
maps it to. State errors put the remediation hint (remaining cooldown,
remaining quota) in ``details`` so clients can format specific feedback.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any


class RescueError(Exception):
    """Base class for all SOS errors."""

    kind = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the API response."""
        return {
            "error": {
                "kind": self.kind,
                "message": self.message,
                "details": self.details,
            }
        }


# ---------- Validation ----------


class InvalidInput(RescueError):
    kind = "INVALID_INPUT"
    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(message=message, details={"field": field})


# ---------- Lookup ----------


class NotFound(RescueError):
    kind = "NOT_FOUND"
    status_code = 404

    def __init__(self, flare_id: str):
        super().__init__(message="SOS flare not found", details={"flare_id": flare_id})


# ---------- Authorization ----------


class SelfHypeForbidden(RescueError):
    kind = "SELF_HYPE_FORBIDDEN"
    status_code = 403

    def __init__(self, flare_id: str):
        super().__init__(message="You cannot hype your own flare", details={"flare_id": flare_id})


class NotOwner(RescueError):
    kind = "NOT_OWNER"
    status_code = 403

    def __init__(self, flare_id: str):
        super().__init__(
            message="Only the user who raised this flare can resolve it",
            details={"flare_id": flare_id},
        )


# ---------- State ----------


def format_remaining(remaining: timedelta) -> str:
    """Render a duration as "3h 22m", rounding partial minutes up."""
    total_minutes = max(0, -(-int(remaining.total_seconds()) // 60))
    hours, minutes = divmod(total_minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class CooldownActive(RescueError):
    kind = "COOLDOWN_ACTIVE"
    status_code = 429

    def __init__(self, remaining: timedelta):
        self.remaining = remaining
        pretty = format_remaining(remaining)
        super().__init__(
            message=f"SOS cooldown active. Wait {pretty} before raising another flare.",
            details={
                "remaining_seconds": int(remaining.total_seconds()),
                "remaining": pretty,
            },
        )


class NoActiveFast(RescueError):
    kind = "NO_ACTIVE_FAST"
    status_code = 409

    def __init__(self):
        super().__init__(message="No active fast found. Start a fast before raising a flare.")


class FlareInactive(RescueError):
    kind = "FLARE_INACTIVE"
    status_code = 409

    def __init__(self, flare_id: str, status: str):
        super().__init__(
            message="SOS flare is no longer active",
            details={"flare_id": flare_id, "status": status},
        )


class QuotaExhausted(RescueError):
    kind = "QUOTA_EXHAUSTED"
    status_code = 429

    def __init__(self, used: int, cap: int):
        self.used = used
        self.cap = cap
        super().__init__(
            message=f"You've used {used} of {cap} hypes today",
            details={"used": used, "cap": cap, "remaining": max(0, cap - used)},
        )


class FallbackAlreadySet(RescueError):
    """Raised by stores when the AI fallback flag is already set; callers may ignore it."""

    kind = "ALREADY_SET"
    status_code = 409

    def __init__(self, flare_id: str):
        super().__init__(message="AI fallback already fired", details={"flare_id": flare_id})


# ---------- Transport / dependency ----------


class StoreError(RescueError):
    """Backend failure. Opaque to clients."""

    kind = "INTERNAL"
    status_code = 500

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"kind": self.kind, "message": "Internal error", "details": {}}}


class DeadlineExceeded(StoreError):
    pass
