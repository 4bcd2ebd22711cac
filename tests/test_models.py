"""
Tests for placements.scheduling.models -- the shared placement data types.

Covers:
    - OfferStatus groups (active, pending, terminal) and titles
    - PostingMode policy properties
    - Slot validity and ordering
    - Entity to_dict/from_dict shapes, including stored snapshot defaults
    - OfferSummary projection
"""

from datetime import datetime, timezone

import pytest

from placements.scheduling.models import (
    ACTIVE_STATUSES,
    Blogger,
    Channel,
    CreateOffersResult,
    Offer,
    OfferStatus,
    OfferSummary,
    PostingMode,
    SkipReason,
    SkippedTarget,
    Slot,
)

AT = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def make_offer(**overrides):
    values = dict(
        id=1,
        blogger_id=2,
        channel_id=3,
        status=OfferStatus.PENDING_PRECHECK,
        scheduled_at=AT,
        window_from=AT.replace(hour=8),
        window_to=AT.replace(day=7),
        text="Buy our course",
        price=100.0,
        expected_payout=80.0,
        posting_mode=PostingMode.PRECHECK,
        decision_deadline=AT.replace(hour=9),
    )
    values.update(overrides)
    return Offer(**values)


# ===========================================================================
# OfferStatus
# ===========================================================================


class TestOfferStatus:
    def test_nine_statuses(self):
        assert len(OfferStatus) == 9

    @pytest.mark.parametrize(
        "status", [OfferStatus.PENDING_PRECHECK, OfferStatus.PENDING_APPROVAL, OfferStatus.SCHEDULED]
    )
    def test_active_statuses(self, status):
        assert status.is_active
        assert not status.is_terminal

    @pytest.mark.parametrize("status", [s for s in OfferStatus if s not in ACTIVE_STATUSES])
    def test_terminal_statuses(self, status):
        assert status.is_terminal
        assert not status.awaits_decision

    def test_only_pending_awaits_decision(self):
        assert {s for s in OfferStatus if s.awaits_decision} == {
            OfferStatus.PENDING_PRECHECK,
            OfferStatus.PENDING_APPROVAL,
        }

    def test_every_status_has_a_title(self):
        assert OfferStatus.REWARDED.title == "Published"
        assert all(s.title for s in OfferStatus)


# ===========================================================================
# PostingMode
# ===========================================================================


class TestPostingMode:
    def test_precheck(self):
        assert PostingMode.PRECHECK.supports_pause is True
        assert PostingMode.PRECHECK.initial_status is OfferStatus.PENDING_PRECHECK

    def test_manual_approval(self):
        assert PostingMode.MANUAL_APPROVAL.supports_pause is False
        assert PostingMode.MANUAL_APPROVAL.initial_status is OfferStatus.PENDING_APPROVAL
        assert PostingMode("manual_approval").title == "Manual approval"


# ===========================================================================
# Slot
# ===========================================================================


class TestSlot:
    @pytest.mark.parametrize("slot,valid", [
        (Slot(1, 0), True),
        (Slot(7, 23), True),
        (Slot(0, 10), False),
        (Slot(3, 24), False),
    ])
    def test_validity(self, slot, valid):
        assert slot.is_valid is valid

    def test_orders_by_day_then_hour(self):
        assert sorted([Slot(2, 9), Slot(1, 20), Slot(1, 10)]) == [Slot(1, 10), Slot(1, 20), Slot(2, 9)]


# ===========================================================================
# Entities
# ===========================================================================


class TestBlogger:
    def test_round_trip(self):
        blogger = Blogger(id=4, username="alice", telegram_user_id=77, chat_id=88)
        assert Blogger.from_dict(blogger.to_dict()) == blogger

    def test_from_dict_defaults(self):
        blogger = Blogger.from_dict({"id": "4"})
        assert blogger.id == 4
        assert blogger.chat_id is None


class TestChannel:
    def test_to_dict_shape(self):
        channel = Channel(
            id=1,
            blogger_id=2,
            title="Tech news",
            destination="@technews",
            schedule=(Slot(1, 10),),
            pause_until=AT,
            created_at=AT,
        )
        data = channel.to_dict()
        assert data["schedule"] == [{"day": 1, "hour": 10}]
        assert data["mode"] == "precheck"
        assert data["pause_until"] == "2026-01-05T10:00:00+00:00"
        assert Channel.from_dict(data) == channel

    def test_from_dict_defaults(self):
        channel = Channel.from_dict({"id": 1, "blogger_id": 2, "destination": -100123})
        assert channel.destination == "-100123"
        assert channel.schedule == ()
        assert channel.weekly_limit == 7
        assert channel.mode is PostingMode.PRECHECK
        assert channel.pause_until is None


class TestOffer:
    def test_round_trip(self):
        offer = make_offer(created_at=AT, updated_at=AT, publish_claimed_at=AT)
        assert Offer.from_dict(offer.to_dict()) == offer

    def test_to_dict_uses_enum_values(self):
        data = make_offer().to_dict()
        assert data["status"] == "pending_precheck"
        assert data["posting_mode"] == "precheck"
        assert data["delivery_handle"] is None

    def test_from_dict_missing_required_field(self):
        data = make_offer().to_dict()
        del data["scheduled_at"]
        with pytest.raises(KeyError):
            Offer.from_dict(data)


class TestOfferSummary:
    def test_projection(self):
        summary = OfferSummary.from_offer(make_offer())
        assert summary.cpv == 100.0
        assert summary.status_title == "Awaiting precheck"
        assert summary.mode_title == "Precheck"
        assert summary.decision_deadline == AT.replace(hour=9)

    def test_is_frozen(self):
        summary = OfferSummary.from_offer(make_offer())
        with pytest.raises(AttributeError):
            summary.status = OfferStatus.SCHEDULED

    def test_to_dict(self):
        data = OfferSummary.from_offer(make_offer()).to_dict()
        assert data["scheduled_at"] == "2026-01-05T10:00:00+00:00"
        assert data["expected_payout"] == 80.0


class TestCreateOffersResult:
    def test_to_dict(self):
        result = CreateOffersResult(
            created=[OfferSummary.from_offer(make_offer())],
            skipped=[SkippedTarget("channel:9", SkipReason.PAUSED, "until Friday")],
        )
        data = result.to_dict()
        assert data["created"][0]["id"] == 1
        assert data["skipped"] == [
            {"target": "channel:9", "reason": "paused", "detail": "until Friday"}
        ]
