"""SOS flare API.

Thin adapter over the rescue engine. Each handler runs the engine call under
the request deadline; domain errors are rendered by the app-level handler.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fastinghero.core.config import settings
from fastinghero.core.deadline import deadline_scope
from fastinghero.core.deps import get_current_user, get_rescue_engine
from fastinghero.domain.sos import Flare, Identity
from fastinghero.schemas.sos import (
    FlareResponse,
    HypeResponseOut,
    RaiseFlareRequest,
    RaiseFlareResponse,
    ResolveFlareRequest,
    SendHypeRequest,
    SosPreferencesResponse,
    SosPreferencesUpdate,
)
from fastinghero.services.rescue_engine import RescueEngine

router = APIRouter(prefix="/sos", tags=["sos"])
preferences_router = APIRouter(prefix="/user", tags=["sos"])


def _request_deadline():
    return deadline_scope(settings.request_timeout_seconds)


def _flare_view(flare: Flare, caller: Identity) -> FlareResponse:
    """Anonymous flares show their owner only to the owner."""
    view = FlareResponse.model_validate(flare)
    if flare.anonymous and flare.owner_id != caller.user_id:
        view = view.model_copy(update={"owner_id": None})
    return view


@router.post("", response_model=RaiseFlareResponse)
def raise_flare(
    data: RaiseFlareRequest,
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    """Raise an SOS flare for the caller's active fast. Returns the flare and an immediate coaching reply, if any."""
    with _request_deadline():
        raised = engine.raise_flare(current_user, data.description)
    return RaiseFlareResponse(
        flare=_flare_view(raised.flare, current_user),
        ai_reply=raised.ai_reply,
    )


# /active is declared before /{flare_id} so it is not captured as an id


@router.get("/active", response_model=FlareResponse | None)
def get_my_active_flare(
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    with _request_deadline():
        flare = engine.get_active_flare(current_user.user_id)
    return _flare_view(flare, current_user) if flare else None


@router.get("/{flare_id}", response_model=FlareResponse)
def get_flare(
    flare_id: str,
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    with _request_deadline():
        flare = engine.get_flare(flare_id)
    return _flare_view(flare, current_user)


@router.post("/{flare_id}/hype", response_model=HypeResponseOut)
def send_hype(
    flare_id: str,
    data: SendHypeRequest,
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    """Send encouragement to someone else's active flare. Counts against the daily hype quota."""
    with _request_deadline():
        hype = engine.send_hype(flare_id, current_user, data.emoji, data.message)
    return HypeResponseOut.model_validate(hype)


@router.get("/{flare_id}/hypes", response_model=list[HypeResponseOut])
def list_hypes(
    flare_id: str,
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    """Hypes for a flare, oldest first."""
    with _request_deadline():
        hypes = engine.list_hypes(flare_id)
    return [HypeResponseOut.model_validate(h) for h in hypes]


@router.post("/{flare_id}/resolve", response_model=FlareResponse)
def resolve_flare(
    flare_id: str,
    data: ResolveFlareRequest,
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    """Close the caller's flare. Resolving a closed flare returns it unchanged."""
    with _request_deadline():
        flare = engine.resolve_flare(flare_id, current_user, data.survived)
    return _flare_view(flare, current_user)


@preferences_router.get("/sos-settings", response_model=SosPreferencesResponse)
def get_sos_settings(
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    with _request_deadline():
        preferences = engine.get_preferences(current_user.user_id)
    return SosPreferencesResponse.model_validate(preferences)


@preferences_router.put("/sos-settings", response_model=SosPreferencesResponse)
def update_sos_settings(
    data: SosPreferencesUpdate,
    current_user: Identity = Depends(get_current_user),
    engine: RescueEngine = Depends(get_rescue_engine),
):
    """Update SOS preferences. Omitted fields are left as they are."""
    with _request_deadline():
        preferences = engine.update_preferences(
            current_user.user_id,
            notify_tribe_on_flare=data.notify_tribe_on_flare,
            anonymous_by_default=data.anonymous_by_default,
        )
    return SosPreferencesResponse.model_validate(preferences)
