"""Rescue engine tests: raise, hype and resolve against the in-memory store."""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from types import SimpleNamespace

import pytest

from fastinghero.core.errors import (
    CooldownActive,
    FlareInactive,
    InvalidInput,
    NoActiveFast,
    NotFound,
    NotOwner,
    QuotaExhausted,
    SelfHypeForbidden,
    StoreError,
)
from fastinghero.domain.sos import FlareStatus, NotificationKind
from fastinghero.services import rescue_engine as rescue_engine_module
from fastinghero.services.ai_service import AIServiceError
from tests.conftest import T0, identity

OWNER = identity(1, "Maya")
HELPER = identity(2, "Theo")


@pytest.fixture
def tribe_of_twelve(fasts, tribes):
    """Owner 1 in tribe 7 with eleven others, fasting since five hours ago."""
    tribes.add_tribe(7, range(1, 13))
    fasts.start(1, T0 - timedelta(hours=5))
    return 7


# ---------- Raise ----------


def test_happy_rescue_scenario(rescue, store, push, runner, clock, tribe_of_twelve):
    raised = rescue.raise_flare(OWNER, "sugar urge")
    flare = raised.flare
    assert flare.hours_fasted == pytest.approx(5.0)
    assert flare.status is FlareStatus.ACTIVE
    assert flare.tribe_id == 7
    assert raised.ai_reply["immediate_action"]

    clock.advance(minutes=1)
    rescue.send_hype(flare.id, HELPER, "🔥")
    assert store.find_flare(flare.id).hype_count == 1

    clock.advance(minutes=1)
    resolved = rescue.resolve_flare(flare.id, OWNER, survived=True)
    assert resolved.status is FlareStatus.RESCUED
    assert resolved.resolved_at == clock.now()
    runner.drain(5)
    thanks = push.of_kind(NotificationKind.FLARE_RESOLVED)
    assert len(thanks) == 1
    assert thanks[0].user_ids == [2]
    assert thanks[0].title == "Maya held the line!"

    clock.advance(minutes=1)
    again = rescue.resolve_flare(flare.id, OWNER, survived=True)
    runner.drain(5)
    assert again == resolved
    assert len(push.of_kind(NotificationKind.FLARE_RESOLVED)) == 1


def test_raise_fans_out_to_tribe_except_owner(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "sugar urge").flare
    runner.drain(5)
    raised = push.of_kind(NotificationKind.FLARE_RAISED)
    assert sorted(push.recipients(NotificationKind.FLARE_RAISED)) == list(range(2, 13))
    assert raised[0].title == "Tribe Alert: Maya needs backup"
    assert raised[0].data["flare_id"] == flare.id


def test_anonymous_preference_hides_owner(rescue, push, runner, tribe_of_twelve):
    rescue.update_preferences(1, anonymous_by_default=True)
    flare = rescue.raise_flare(OWNER, "").flare
    runner.drain(5)
    assert flare.anonymous
    call = push.of_kind(NotificationKind.FLARE_RAISED)[0]
    assert "Maya" not in call.title + call.body


def test_notify_disabled_skips_fanout(rescue, push, runner, tribe_of_twelve):
    rescue.update_preferences(1, notify_tribe_on_flare=False)
    rescue.raise_flare(OWNER, "")
    runner.drain(5)
    assert push.of_kind(NotificationKind.FLARE_RAISED) == []


def test_raise_then_find_active_returns_same_flare(rescue, store, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "sugar urge").flare
    assert store.find_active_by_owner(1) == flare
    assert rescue.get_active_flare(1) == flare


def test_raise_records_cooldown_anchor(rescue, store, clock, tribe_of_twelve):
    rescue.raise_flare(OWNER, "")
    assert store.get_preferences(1).last_flare_at == clock.now()


def test_cooldown_scenario(rescue, clock, fasts, tribe_of_twelve):
    rescue.raise_flare(OWNER, "first")

    clock.advance(hours=23, minutes=59)
    with pytest.raises(CooldownActive) as exc:
        rescue.raise_flare(OWNER, "second")
    assert exc.value.remaining >= timedelta(minutes=1)

    clock.advance(minutes=1)
    assert rescue.raise_flare(OWNER, "third").flare.status is FlareStatus.ACTIVE


def test_new_flare_expires_the_previous_active_one(rescue, store, clock, tribe_of_twelve):
    first = rescue.raise_flare(OWNER, "first").flare
    clock.advance(hours=24)
    second = rescue.raise_flare(OWNER, "second").flare

    old = store.find_flare(first.id)
    assert old.status is FlareStatus.EXPIRED
    assert old.resolved_at == clock.now()
    assert store.find_active_by_owner(1).id == second.id


def test_failed_insert_keeps_previous_flare_active(rescue, store, clock, tribe_of_twelve, monkeypatch):
    first = rescue.raise_flare(OWNER, "first").flare
    clock.advance(hours=24)
    # Reusing the first flare's id makes the store reject the new one
    monkeypatch.setattr(rescue_engine_module, "uuid", SimpleNamespace(uuid4=lambda: uuid.UUID(first.id)))

    with pytest.raises(StoreError):
        rescue.raise_flare(OWNER, "second")

    previous = store.find_flare(first.id)
    assert previous.status is FlareStatus.ACTIVE
    assert previous.resolved_at is None
    assert previous.description == "first"
    assert store.find_active_by_owner(1).id == first.id


def test_cooldown_checked_before_active_fast(rescue, store, clock):
    prefs = store.get_preferences(1)
    prefs.last_flare_at = clock.now()
    store.save_preferences(prefs)
    with pytest.raises(CooldownActive):
        rescue.raise_flare(OWNER, "")


def test_no_active_fast(rescue, store):
    with pytest.raises(NoActiveFast):
        rescue.raise_flare(OWNER, "")
    assert store.find_active_by_owner(1) is None


def test_hours_fasted_never_negative(rescue, fasts, clock):
    fasts.start(1, clock.now() + timedelta(minutes=5))
    assert rescue.raise_flare(OWNER, "").flare.hours_fasted == 0.0


def test_description_trailing_whitespace_trimmed(rescue, tribe_of_twelve):
    assert rescue.raise_flare(OWNER, "sugar urge  \n").flare.description == "sugar urge"


def test_description_too_long(rescue, store, tribe_of_twelve):
    with pytest.raises(InvalidInput) as exc:
        rescue.raise_flare(OWNER, "x" * 1025)
    assert exc.value.details == {"field": "description"}
    assert store.find_active_by_owner(1) is None


def test_description_at_limit_accepted(rescue, tribe_of_twelve):
    assert len(rescue.raise_flare(OWNER, "é" * 1024).flare.description) == 1024


def test_llm_failure_yields_null_reply(rescue, coach, tribe_of_twelve):
    coach.error = AIServiceError("provider down")
    raised = rescue.raise_flare(OWNER, "sugar urge")
    assert raised.ai_reply is None
    assert raised.flare.status is FlareStatus.ACTIVE


def test_unexpected_llm_error_also_yields_null_reply(rescue, coach, tribe_of_twelve):
    coach.error = RuntimeError("boom")
    assert rescue.raise_flare(OWNER, "").ai_reply is None


def test_coach_receives_description_and_hours(rescue, coach, tribe_of_twelve):
    rescue.raise_flare(OWNER, "sugar urge")
    assert coach.calls == [(1, "sugar urge", pytest.approx(5.0))]


# ---------- Hype ----------


def test_send_hype_then_list_includes_it(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    hype = rescue.send_hype(flare.id, HELPER, "🔥", "  You got this  ")
    assert hype.message == "You got this"
    assert hype.from_display_name == "Theo"
    assert rescue.list_hypes(flare.id) == [hype]

    runner.drain(5)
    notes = push.of_kind(NotificationKind.HYPE_RECEIVED)
    assert notes[0].user_ids == [1]
    assert notes[0].title == "Theo sent reinforcements! 🔥"
    assert notes[0].body == "You got this"


def test_hype_without_message_uses_default_body(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.send_hype(flare.id, HELPER, "💪")
    runner.drain(5)
    assert push.of_kind(NotificationKind.HYPE_RECEIVED)[0].body == "You've got this! Keep pushing!"


def test_unknown_sender_name_snapshot(rescue, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    hype = rescue.send_hype(flare.id, identity(3, ""), "🔥")
    assert hype.from_display_name == "A friend"


def test_message_truncated_to_512(rescue, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    hype = rescue.send_hype(flare.id, HELPER, "🔥", "a" * 600)
    assert len(hype.message) == 512


@pytest.mark.parametrize("emoji", ["", "   ", "x" * 17])
def test_invalid_emoji(rescue, store, emoji, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    with pytest.raises(InvalidInput):
        rescue.send_hype(flare.id, HELPER, emoji)
    assert store.find_flare(flare.id).hype_count == 0


def test_self_hype_rejected(rescue, store, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    with pytest.raises(SelfHypeForbidden):
        rescue.send_hype(flare.id, OWNER, "🔥")
    assert store.find_flare(flare.id).hype_count == 0
    assert store.list_hypes(flare.id) == []


def test_hype_unknown_flare(rescue):
    with pytest.raises(NotFound):
        rescue.send_hype("missing", HELPER, "🔥")


def test_hype_on_resolved_flare(rescue, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.resolve_flare(flare.id, OWNER, survived=False)
    with pytest.raises(FlareInactive):
        rescue.send_hype(flare.id, HELPER, "🔥")


def test_same_sender_may_hype_twice(rescue, store, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.send_hype(flare.id, HELPER, "🔥")
    rescue.send_hype(flare.id, HELPER, "💪")
    assert store.find_flare(flare.id).hype_count == 2


def test_hypes_listed_in_insertion_order_on_timestamp_ties(rescue, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    sent = [rescue.send_hype(flare.id, identity(uid), "🔥") for uid in (2, 3, 4)]
    assert [h.id for h in rescue.list_hypes(flare.id)] == [h.id for h in sent]


def test_list_hypes_unknown_flare(rescue):
    with pytest.raises(NotFound):
        rescue.list_hypes("missing")


def test_quota_scenario(rescue, fasts, tribes, clock):
    """Tribe of 60: cap 10. The 11th hype of the UTC day is refused; tomorrow it works."""
    tribes.add_tribe(9, range(1, 61))
    owners = list(range(20, 31))
    for uid in owners:
        fasts.start(uid, T0 - timedelta(hours=3))
    flares = [rescue.raise_flare(identity(uid), "").flare for uid in owners]

    for flare in flares[:10]:
        rescue.send_hype(flare.id, HELPER, "🔥")
    with pytest.raises(QuotaExhausted) as exc:
        rescue.send_hype(flares[10].id, HELPER, "🔥")
    assert (exc.value.used, exc.value.cap) == (10, 10)

    clock.set(T0.replace(hour=0) + timedelta(days=1))
    assert rescue.send_hype(flares[10].id, HELPER, "🔥")


def test_simultaneous_hypes_stay_within_cap(rescue, fasts, tribes):
    """Tribe of 60: cap 10. Twenty hypes from one sender land at once."""
    tribes.add_tribe(9, range(1, 61))
    fasts.start(20, T0 - timedelta(hours=3))
    flare = rescue.raise_flare(identity(20), "").flare
    start = threading.Barrier(20)

    def send(_):
        start.wait(timeout=5)
        try:
            rescue.send_hype(flare.id, HELPER, "🔥")
            return True
        except QuotaExhausted:
            return False

    with ThreadPoolExecutor(max_workers=20) as pool:
        accepted = sum(pool.map(send, range(20)))

    assert 10 <= accepted <= 11


def test_hype_notify_failure_does_not_fail_hype(rescue, push, runner, store, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    push.fail = True
    rescue.send_hype(flare.id, HELPER, "🔥")
    runner.drain(5)
    assert store.find_flare(flare.id).hype_count == 1


# ---------- Resolve ----------


def test_resolve_failed_sends_nothing(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.send_hype(flare.id, HELPER, "🔥")
    resolved = rescue.resolve_flare(flare.id, OWNER, survived=False)
    runner.drain(5)
    assert resolved.status is FlareStatus.FAILED
    assert push.of_kind(NotificationKind.FLARE_RESOLVED) == []


def test_resolve_without_hypes_sends_nothing(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.resolve_flare(flare.id, OWNER, survived=True)
    runner.drain(5)
    assert push.of_kind(NotificationKind.FLARE_RESOLVED) == []


def test_resolve_notifies_each_responder_once(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    for uid in (2, 3, 2):
        rescue.send_hype(flare.id, identity(uid), "🔥")
    rescue.resolve_flare(flare.id, OWNER, survived=True)
    runner.drain(5)
    assert push.recipients(NotificationKind.FLARE_RESOLVED) == [2, 3]


def test_anonymous_flare_resolve_keeps_owner_hidden(rescue, push, runner, tribe_of_twelve):
    rescue.update_preferences(1, anonymous_by_default=True)
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.send_hype(flare.id, HELPER, "🔥")
    rescue.resolve_flare(flare.id, OWNER, survived=True)
    runner.drain(5)
    call = push.of_kind(NotificationKind.FLARE_RESOLVED)[0]
    assert "Maya" not in call.title + call.body


def test_resolve_by_non_owner(rescue, store, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    with pytest.raises(NotOwner):
        rescue.resolve_flare(flare.id, HELPER, survived=True)
    assert store.find_flare(flare.id).status is FlareStatus.ACTIVE


def test_resolve_unknown_flare(rescue):
    with pytest.raises(NotFound):
        rescue.resolve_flare("missing", OWNER, survived=True)


def test_resolve_terminal_with_other_outcome_is_noop(rescue, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    failed = rescue.resolve_flare(flare.id, OWNER, survived=False)
    assert rescue.resolve_flare(flare.id, OWNER, survived=True) == failed


def test_resolve_push_failure_is_swallowed(rescue, push, runner, tribe_of_twelve):
    flare = rescue.raise_flare(OWNER, "").flare
    rescue.send_hype(flare.id, HELPER, "🔥")
    push.fail = True
    assert rescue.resolve_flare(flare.id, OWNER, survived=True).status is FlareStatus.RESCUED
    runner.drain(5)


# ---------- Preferences ----------


def test_preferences_created_with_defaults(rescue):
    prefs = rescue.get_preferences(42)
    assert prefs.notify_tribe_on_flare is True
    assert prefs.anonymous_by_default is False
    assert prefs.last_flare_at is None


def test_update_preferences_leaves_omitted_fields(rescue):
    rescue.update_preferences(42, anonymous_by_default=True)
    prefs = rescue.update_preferences(42, notify_tribe_on_flare=False)
    assert prefs.anonymous_by_default is True
    assert prefs.notify_tribe_on_flare is False
