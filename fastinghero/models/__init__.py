"""SQLAlchemy models."""

from __future__ import annotations

from fastinghero.models.fast import Fast
from fastinghero.models.hype_response import HypeResponseRow
from fastinghero.models.sos_flare import SosFlare
from fastinghero.models.sos_preferences import SosPreferencesRow
from fastinghero.models.tribe import Tribe, TribeMembership
from fastinghero.models.user import User

__all__ = [
    "User",
    "Fast",
    "Tribe",
    "TribeMembership",
    "SosFlare",
    "HypeResponseRow",
    "SosPreferencesRow",
]
