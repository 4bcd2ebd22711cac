"""Tests for the reservation ledger, pause arbiter and offer state machine.

These run against an InMemoryRepository directly, without the engine lock
or any gateways.
"""

from datetime import datetime, timedelta, timezone

import pytest

from placements.exceptions import IllegalStateError, ValidationError
from placements.repository import InMemoryRepository
from placements.scheduling.calendar import default_schedule
from placements.scheduling.ledger import ReservationLedger
from placements.scheduling.models import (
    Blogger,
    Channel,
    DeliveryHandle,
    OfferStatus,
    PostingMode,
    SkipReason,
    SkippedTarget,
    Slot,
)
from placements.scheduling.offer_machine import OfferStateMachine, validate_mode
from placements.scheduling.pause import PauseArbiter

NOW = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
WINDOW_TO = NOW + timedelta(days=2)


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def ledger(repo):
    return ReservationLedger(repo)


@pytest.fixture
def arbiter():
    return PauseArbiter(max_days=30)


@pytest.fixture
def machine(repo, ledger, arbiter):
    return OfferStateMachine(repo, ledger, arbiter)


@pytest.fixture
def blogger(repo):
    blogger = Blogger(id=repo.next_id("blogger"), username="alice", chat_id=42)
    repo.put_blogger(blogger)
    return blogger


def make_channel(repo, blogger, mode=PostingMode.PRECHECK, weekly_limit=7, schedule=None):
    channel = Channel(
        id=repo.next_id("channel"),
        blogger_id=blogger.id,
        title="Alice",
        destination="@alice",
        schedule=schedule or default_schedule(),
        weekly_limit=weekly_limit,
        mode=mode,
    )
    repo.put_channel(channel)
    return channel


@pytest.fixture
def channel(repo, blogger):
    return make_channel(repo, blogger)


# =============================================================================
# ReservationLedger
# =============================================================================


class TestReservationLedger:
    def test_free_instants_exclude_reserved(self, machine, ledger, blogger, channel):
        offer = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        free = ledger.free_instants(channel, NOW, WINDOW_TO, NOW)
        assert offer.scheduled_at not in free
        assert free[0] == NOW.replace(hour=11)

    def test_terminal_offers_release_their_instant(self, machine, ledger, blogger, channel):
        offer = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        machine.decline(offer, NOW)
        assert ledger.reserved_instants(blogger.id) == set()
        assert ledger.active_count(blogger.id) == 0

    def test_capacity_counts_active_offers(self, repo, machine, ledger, blogger):
        channel = make_channel(repo, blogger, weekly_limit=2)
        machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        assert ledger.has_capacity(blogger.id, channel) is True
        machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        assert ledger.has_capacity(blogger.id, channel) is False

    def test_available_slots_include_own_instant(self, machine, ledger, blogger, channel):
        offer = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        slots = ledger.available_slots(offer, NOW)
        assert slots[0] == offer.scheduled_at
        assert len(slots) == 20

    def test_available_slots_drop_past_own_instant(self, machine, ledger, blogger, channel):
        offer = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        later = offer.scheduled_at + timedelta(minutes=5)
        assert offer.scheduled_at not in ledger.available_slots(offer, later)


# =============================================================================
# PauseArbiter
# =============================================================================


class TestPauseArbiter:
    def test_pause_sets_expiry(self, arbiter, channel):
        until = arbiter.pause(channel, 3, NOW)
        assert until == NOW + timedelta(days=3)
        assert arbiter.is_paused(channel, NOW + timedelta(days=2)) is True
        assert arbiter.is_paused(channel, until) is False

    def test_repause_replaces_expiry(self, arbiter, channel):
        arbiter.pause(channel, 5, NOW)
        arbiter.pause(channel, 1, NOW)
        assert channel.pause_until == NOW + timedelta(days=1)

    @pytest.mark.parametrize("days", [0, 31, -1, True, 2.0])
    def test_invalid_duration(self, arbiter, channel, days):
        with pytest.raises(ValidationError):
            arbiter.pause(channel, days, NOW)
        assert channel.pause_until is None

    def test_manual_mode_cannot_pause(self, repo, arbiter, blogger):
        channel = make_channel(repo, blogger, mode=PostingMode.MANUAL_APPROVAL)
        with pytest.raises(IllegalStateError):
            arbiter.pause(channel, 1, NOW)

    def test_resume_reports_whether_paused(self, arbiter, channel):
        assert arbiter.resume(channel) is False
        arbiter.pause(channel, 1, NOW)
        assert arbiter.resume(channel) is True
        assert channel.pause_until is None

    def test_expired_lists_only_run_out_pauses(self, repo, arbiter, blogger, channel):
        other = make_channel(repo, blogger)
        arbiter.pause(channel, 1, NOW)
        arbiter.pause(other, 2, NOW)
        assert arbiter.expired([channel, other], NOW + timedelta(days=1)) == [channel]


# =============================================================================
# OfferStateMachine
# =============================================================================


class TestTransitionTable:
    @pytest.mark.parametrize("status", [OfferStatus.PENDING_PRECHECK, OfferStatus.PENDING_APPROVAL])
    def test_pending_statuses_accept_decisions(self, status):
        allowed = OfferStateMachine.allowed_actions(status)
        assert {"approve", "decline", "reschedule", "cancel_by_owner"} <= set(allowed)

    def test_scheduled_accepts_delivery_actions(self):
        allowed = set(OfferStateMachine.allowed_actions(OfferStatus.SCHEDULED))
        assert allowed == {"cancel_by_owner", "cancel_by_advertiser", "claim", "complete", "fail"}

    @pytest.mark.parametrize("status", [s for s in OfferStatus if s.is_terminal])
    def test_terminal_statuses_accept_nothing(self, status):
        assert OfferStateMachine.allowed_actions(status) == []

    def test_only_manual_offers_archive(self):
        assert OfferStateMachine.can_transition(OfferStatus.PENDING_APPROVAL, "archive")
        assert not OfferStateMachine.can_transition(OfferStatus.PENDING_PRECHECK, "archive")


class TestCreate:
    def test_precheck_offer(self, machine, blogger, channel):
        offer = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 99.99, NOW)
        assert offer.status is OfferStatus.PENDING_PRECHECK
        assert offer.scheduled_at == NOW.replace(hour=10)
        assert offer.decision_deadline == NOW + timedelta(hours=1)
        assert offer.expected_payout == 79.99
        assert offer.posting_mode is PostingMode.PRECHECK

    def test_manual_offer_has_no_deadline(self, repo, machine, blogger):
        channel = make_channel(repo, blogger, mode=PostingMode.MANUAL_APPROVAL)
        offer = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        assert offer.status is OfferStatus.PENDING_APPROVAL
        assert offer.decision_deadline is None

    def test_deadline_capped_by_scheduled_instant(self, machine, blogger, channel):
        now = NOW.replace(hour=9, minute=50)
        offer = machine.create(blogger, channel, now, WINDOW_TO, "Ad", 10.0, now)
        assert offer.decision_deadline == offer.scheduled_at == NOW.replace(hour=10)

    def test_address_checked_before_pause(self, machine, arbiter, blogger, channel):
        blogger.chat_id = None
        arbiter.pause(channel, 1, NOW)
        outcome = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        assert isinstance(outcome, SkippedTarget)
        assert outcome.reason is SkipReason.NO_DELIVERY_ADDRESS

    def test_pause_checked_before_limit(self, repo, machine, arbiter, blogger):
        channel = make_channel(repo, blogger, weekly_limit=1)
        machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        arbiter.pause(channel, 1, NOW)
        outcome = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        assert outcome.reason is SkipReason.PAUSED
        assert outcome.target == f"channel:{channel.id}"

    def test_no_free_slot(self, repo, machine, blogger):
        channel = make_channel(repo, blogger, schedule=(Slot(1, 10),))
        machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        outcome = machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)
        assert outcome.reason is SkipReason.NO_SLOT_IN_WINDOW


class TestTransitions:
    @pytest.fixture
    def offer(self, machine, blogger, channel):
        return machine.create(blogger, channel, NOW, WINDOW_TO, "Ad", 10.0, NOW)

    def test_approve_records_decision(self, machine, offer):
        later = NOW + timedelta(minutes=3)
        machine.approve(offer, later)
        assert offer.status is OfferStatus.SCHEDULED
        assert offer.decided_at == later
        assert offer.decision_deadline is None

    def test_illegal_action_leaves_offer_untouched(self, machine, offer):
        machine.decline(offer, NOW)
        updated_at = offer.updated_at
        with pytest.raises(IllegalStateError) as exc_info:
            machine.approve(offer, NOW + timedelta(minutes=1))
        assert exc_info.value.action == "approve"
        assert offer.status is OfferStatus.DECLINED_BY_OWNER
        assert offer.updated_at == updated_at

    def test_reschedule_keeps_status(self, machine, offer):
        target = NOW.replace(hour=15)
        machine.reschedule(offer, target, NOW)
        assert offer.scheduled_at == target
        assert offer.status is OfferStatus.PENDING_PRECHECK
        assert offer.decision_deadline == NOW + timedelta(hours=1)

    def test_reschedule_rejects_unavailable_instant(self, machine, offer):
        with pytest.raises(ValidationError):
            machine.reschedule(offer, NOW.replace(hour=21), NOW)

    def test_cancel_after_claim_is_illegal(self, machine, offer):
        machine.approve(offer, NOW)
        machine.claim(offer, NOW.replace(hour=10))
        with pytest.raises(IllegalStateError, match="delivery already in progress"):
            machine.cancel(offer, by_owner=False, now=NOW.replace(hour=10))
        assert offer.status is OfferStatus.SCHEDULED

    def test_double_claim_is_illegal(self, machine, offer):
        machine.approve(offer, NOW)
        machine.claim(offer, NOW)
        with pytest.raises(IllegalStateError):
            machine.claim(offer, NOW)

    def test_release_claim_makes_offer_due_again(self, machine, offer):
        machine.approve(offer, NOW)
        due_at = offer.scheduled_at
        machine.claim(offer, due_at)
        assert machine.is_due(offer, due_at) is False
        machine.release_claim(offer)
        assert machine.is_due(offer, due_at) is True

    def test_complete_records_handle(self, machine, offer):
        machine.approve(offer, NOW)
        done = NOW.replace(hour=10, second=2)
        machine.complete(offer, DeliveryHandle("555", "@alice"), done)
        assert offer.status is OfferStatus.REWARDED
        assert offer.delivery_handle == "555"
        assert offer.published_at == done

    def test_fail_records_error(self, machine, offer):
        machine.approve(offer, NOW)
        machine.fail(offer, "Forbidden", NOW)
        assert offer.status is OfferStatus.PUBLISH_FAILED
        assert offer.error == "Forbidden"

    def test_expiry_predicates(self, machine, offer):
        assert machine.is_precheck_expired(offer, NOW + timedelta(minutes=59)) is False
        assert machine.is_precheck_expired(offer, NOW + timedelta(hours=1)) is True
        assert machine.is_approval_expired(offer, NOW.replace(hour=11)) is False

    def test_marked_text(self, machine, offer):
        assert machine.marked_text(offer) == "Ad\n\n#ad"


class TestValidateMode:
    def test_accepts_values_and_members(self):
        assert validate_mode("manual_approval") is PostingMode.MANUAL_APPROVAL
        assert validate_mode(PostingMode.PRECHECK) is PostingMode.PRECHECK

    def test_rejects_unknown(self):
        with pytest.raises(ValidationError):
            validate_mode("autopost")
