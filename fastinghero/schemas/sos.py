"""SOS flare and hype schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from fastinghero.domain.sos import FlareStatus


class RaiseFlareRequest(BaseModel):
    description: str = ""


class SendHypeRequest(BaseModel):
    emoji: str
    message: str | None = None


class ResolveFlareRequest(BaseModel):
    survived: bool


class FlareResponse(BaseModel):
    id: str
    owner_id: int | None
    fast_id: int
    tribe_id: int | None
    description: str
    hours_fasted: float
    status: FlareStatus
    hype_count: int
    anonymous: bool
    ai_fallback_fired: bool
    created_at: datetime
    resolved_at: datetime | None

    model_config = {"from_attributes": True}


class RaiseFlareResponse(BaseModel):
    flare: FlareResponse
    ai_reply: dict[str, Any] | None = None


class HypeResponseOut(BaseModel):
    id: str
    flare_id: str
    from_user_id: int
    from_display_name: str
    message: str | None
    emoji: str
    created_at: datetime

    model_config = {"from_attributes": True}


class SosPreferencesResponse(BaseModel):
    user_id: int
    notify_tribe_on_flare: bool
    anonymous_by_default: bool
    last_flare_at: datetime | None

    model_config = {"from_attributes": True}


class SosPreferencesUpdate(BaseModel):
    notify_tribe_on_flare: bool | None = None
    anonymous_by_default: bool | None = None
