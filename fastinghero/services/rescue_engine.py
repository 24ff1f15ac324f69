"""Rescue engine: the SOS flare lifecycle.

    raise_flare  -> ACTIVE
    send_hype    -> stays ACTIVE, hype_count += 1
    sweeper      -> stays ACTIVE, ai_fallback_fired = True (see escalation.py)
    resolve      -> RESCUED (responders notified) | FAILED

Terminal states are sinks. Side effects are ordered so a durable flare
exists before any outbound notification; notifications and the coaching
reply run on the background runner, detached from the request deadline.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Protocol

from fastinghero.core.background import BackgroundRunner
from fastinghero.core.clock import Clock
from fastinghero.core.errors import (
    CooldownActive,
    FlareInactive,
    InvalidInput,
    NoActiveFast,
    NotOwner,
    QuotaExhausted,
    SelfHypeForbidden,
    StoreError,
)
from fastinghero.core.sos_policies import (
    ANONYMOUS_SENDER_NAME,
    DEFAULT_HYPE_BODY,
    MAX_DESCRIPTION_LENGTH,
    MAX_EMOJI_LENGTH,
    MAX_HYPE_MESSAGE_LENGTH,
    UNKNOWN_HYPE_SENDER_NAME,
)
from fastinghero.domain.sos import Flare, FlareStatus, HypeResponse, Identity, NotificationKind, SOSPreferences
from fastinghero.services.ai_service import AIServiceError
from fastinghero.services.cooldown import CooldownGate
from fastinghero.services.directory_service import FastDirectory, TribeDirectory
from fastinghero.services.fanout import FanoutDispatcher
from fastinghero.services.hype_quota import HypeQuota
from fastinghero.services.push_service import PushError, PushGateway
from fastinghero.services.sos_store import SosStore

logger = logging.getLogger(__name__)

# Attempts at persisting last_flare_at after the flare itself is saved
PREFERENCES_WRITE_ATTEMPTS = 2


class CravingHelper(Protocol):
    def craving_help(self, user_id: int, description: str, hours_fasted: float | None = None) -> Any: ...


@dataclass(frozen=True)
class RaisedFlare:
    flare: Flare
    ai_reply: Any | None


def normalize_description(description: str | None) -> str:
    text = (description or "").rstrip()
    if len(text) > MAX_DESCRIPTION_LENGTH:
        raise InvalidInput("description", f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return text


def normalize_emoji(emoji: str | None) -> str:
    value = (emoji or "").strip()
    if not value:
        raise InvalidInput("emoji", "Emoji is required")
    if len(value) > MAX_EMOJI_LENGTH:
        raise InvalidInput("emoji", f"Emoji must be at most {MAX_EMOJI_LENGTH} characters")
    return value


def normalize_message(message: str | None) -> str | None:
    """Trim and cut to the maximum length. Blank messages become None."""
    if message is None:
        return None
    text = message.strip()[:MAX_HYPE_MESSAGE_LENGTH].rstrip()
    return text or None


class RescueEngine:
    def __init__(
        self,
        store: SosStore,
        fasts: FastDirectory,
        tribes: TribeDirectory,
        push: PushGateway,
        coach: CravingHelper,
        runner: BackgroundRunner,
        clock: Clock,
        llm_reply_wait_seconds: float = 20.0,
    ) -> None:
        self.store = store
        self.fasts = fasts
        self.tribes = tribes
        self.push = push
        self.coach = coach
        self.runner = runner
        self.clock = clock
        self.llm_reply_wait_seconds = llm_reply_wait_seconds
        self.cooldown = CooldownGate(clock)
        self.quota = HypeQuota(store, tribes, clock)
        self.fanout = FanoutDispatcher(tribes, push)

    # ---------- Raise ----------

    def raise_flare(self, owner: Identity, description: str | None) -> RaisedFlare:
        """Raise a flare. Checks run in order and the first failure wins."""
        text = normalize_description(description)

        preferences = self.store.get_preferences(owner.user_id)

        decision = self.cooldown.check(preferences)
        if not decision.allowed:
            logger.info("Flare denied for user %s: cooldown %s remaining", owner.user_id, decision.remaining)
            raise CooldownActive(decision.remaining)

        fast = self.fasts.find_active_by_user(owner.user_id)
        if fast is None:
            raise NoActiveFast()

        now = self.clock.now()
        hours_fasted = max(0.0, (now - fast.start_time).total_seconds() / 3600)

        flare = Flare(
            id=str(uuid.uuid4()),
            owner_id=owner.user_id,
            fast_id=fast.id,
            tribe_id=self.tribes.primary_tribe_of(owner.user_id),
            description=text,
            hours_fasted=hours_fasted,
            status=FlareStatus.ACTIVE,
            hype_count=0,
            anonymous=preferences.anonymous_by_default,
            ai_fallback_fired=False,
            created_at=now,
        )
        expired_id = self.store.supersede_active(flare, now)
        if expired_id is not None:
            logger.info("Flare %s expired, superseded by %s from user %s", expired_id, flare.id, owner.user_id)
        logger.info("Flare %s raised by user %s at hour %.1f", flare.id, owner.user_id, hours_fasted)

        preferences.last_flare_at = now
        self._record_last_flare(preferences)

        reply_future = self.runner.submit("craving-help", self._coach_reply, flare)

        if preferences.notify_tribe_on_flare and flare.tribe_id is not None:
            self.runner.submit("fanout", self.fanout.dispatch, flare, owner.display_name)

        try:
            ai_reply = reply_future.result(timeout=self.llm_reply_wait_seconds)
        except FutureTimeout:
            logger.warning("Coaching reply for flare %s not ready after %.0fs", flare.id, self.llm_reply_wait_seconds)
            ai_reply = None

        return RaisedFlare(flare=flare, ai_reply=ai_reply)

    def _record_last_flare(self, preferences: SOSPreferences) -> None:
        for attempt in range(1, PREFERENCES_WRITE_ATTEMPTS + 1):
            try:
                self.store.save_preferences(preferences)
                return
            except StoreError as exc:
                logger.warning(
                    "Saving last_flare_at for user %s failed (attempt %s/%s): %s",
                    preferences.user_id,
                    attempt,
                    PREFERENCES_WRITE_ATTEMPTS,
                    exc,
                )
        logger.error("Cooldown anchor not recorded for user %s", preferences.user_id)

    def _coach_reply(self, flare: Flare) -> Any | None:
        try:
            return self.coach.craving_help(flare.owner_id, flare.description, flare.hours_fasted)
        except AIServiceError as exc:
            logger.warning("Coaching reply failed for flare %s: %s", flare.id, exc)
            return None

    # ---------- Hype ----------

    def send_hype(self, flare_id: str, sender: Identity, emoji: str, message: str | None = None) -> HypeResponse:
        flare = self.store.find_flare(flare_id)
        if flare.status is not FlareStatus.ACTIVE:
            raise FlareInactive(flare.id, flare.status.value)
        if sender.user_id == flare.owner_id:
            raise SelfHypeForbidden(flare.id)

        with self.quota.sender_lock(sender.user_id):
            decision = self.quota.check(sender.user_id, flare.tribe_id)
            if not decision.allowed:
                logger.info("Hype denied for user %s: %s/%s used today", sender.user_id, decision.used, decision.cap)
                raise QuotaExhausted(decision.used, decision.cap)

            hype = HypeResponse(
                id=str(uuid.uuid4()),
                flare_id=flare.id,
                from_user_id=sender.user_id,
                from_display_name=sender.display_name or UNKNOWN_HYPE_SENDER_NAME,
                message=normalize_message(message),
                emoji=normalize_emoji(emoji),
                created_at=self.clock.now(),
            )
            self.store.append_hype(hype)

        self.runner.submit("hype-notify", self._notify_hype, flare.owner_id, hype)
        return hype

    def _notify_hype(self, owner_id: int, hype: HypeResponse) -> None:
        try:
            self.push.send(
                owner_id,
                f"{hype.from_display_name} sent reinforcements! {hype.emoji}",
                hype.message or DEFAULT_HYPE_BODY,
                NotificationKind.HYPE_RECEIVED,
                {"flare_id": hype.flare_id, "hype_id": hype.id},
            )
        except PushError as exc:
            logger.warning("Hype notification for flare %s failed: %s", hype.flare_id, exc)

    def list_hypes(self, flare_id: str) -> list[HypeResponse]:
        self.store.find_flare(flare_id)
        return self.store.list_hypes(flare_id)

    # ---------- Resolve ----------

    def resolve_flare(self, flare_id: str, caller: Identity, survived: bool) -> Flare:
        """Close the flare. Repeat calls on a closed flare change nothing and notify no one."""
        flare = self.store.find_flare(flare_id)
        if flare.owner_id != caller.user_id:
            raise NotOwner(flare.id)
        if flare.status.is_terminal:
            return flare

        status = FlareStatus.RESCUED if survived else FlareStatus.FAILED
        applied = self.store.update_status(flare.id, status, self.clock.now())
        resolved = self.store.find_flare(flare.id)
        if not applied:
            # Another request resolved it first and owns the notifications
            return resolved

        logger.info("Flare %s resolved as %s", flare.id, status.value)
        if survived:
            name = ANONYMOUS_SENDER_NAME if flare.anonymous else (caller.display_name or UNKNOWN_HYPE_SENDER_NAME)
            self.runner.submit("resolve-notify", self._thank_responders, flare.id, name)
        return resolved

    def _thank_responders(self, flare_id: str, owner_name: str) -> None:
        responders = list(dict.fromkeys(h.from_user_id for h in self.store.list_hypes(flare_id)))
        if not responders:
            return
        try:
            self.push.send_batch(
                responders,
                f"{owner_name} held the line!",
                f"False alarm. {owner_name} survived the urge. Thanks for the support!",
                NotificationKind.FLARE_RESOLVED,
                {"flare_id": flare_id},
            )
        except PushError as exc:
            logger.warning("Rescue notification for flare %s failed: %s", flare_id, exc)

    # ---------- Reads and preferences ----------

    def get_flare(self, flare_id: str) -> Flare:
        return self.store.find_flare(flare_id)

    def get_active_flare(self, user_id: int) -> Flare | None:
        return self.store.find_active_by_owner(user_id)

    def get_preferences(self, user_id: int) -> SOSPreferences:
        return self.store.get_preferences(user_id)

    def update_preferences(
        self,
        user_id: int,
        notify_tribe_on_flare: bool | None = None,
        anonymous_by_default: bool | None = None,
    ) -> SOSPreferences:
        preferences = self.store.get_preferences(user_id)
        if notify_tribe_on_flare is not None:
            preferences.notify_tribe_on_flare = notify_tribe_on_flare
        if anonymous_by_default is not None:
            preferences.anonymous_by_default = anonymous_by_default
        self.store.save_preferences(preferences)
        return preferences
