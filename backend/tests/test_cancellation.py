from datetime import timedelta
from decimal import Decimal

import pytest

from gigflow import models
from gigflow.crud import crud_booking
from gigflow.core.policy import CancellationBand
from gigflow.models.booking import BookingStatus
from gigflow.models.cancellation import CancellationReason
from gigflow.models.contract import ContractStatus
from gigflow.models.opportunity import OpportunityStatus
from gigflow.models.party import Party, Side
from gigflow.models.payment import MilestoneKind, MilestoneStatus, PaymentRecordKind
from gigflow.models.trust import TrustReason
from gigflow.services import application_registry, booking_orchestrator, payment_ledger, trust_engine
from gigflow.services.cancellation import cancellation_service, compute_split, split_amounts
from gigflow.utils.errors import ConflictError, StateError, ValidationError


@pytest.mark.parametrize(
    "side,days,band,refund,compensation",
    [
        (Side.ARTIST, 120, "artist_over_90", 100, 0),
        (Side.ARTIST, 91, "artist_over_90", 100, 0),
        (Side.ARTIST, 90, "artist_30_to_90", 100, 0),
        (Side.ARTIST, 29, "artist_under_30", 100, 0),
        (Side.ORGANIZER, 31, "organizer_over_30", 80, 20),
        (Side.ORGANIZER, 30, "organizer_15_to_30", 50, 50),
        (Side.ORGANIZER, 15, "organizer_15_to_30", 50, 50),
        (Side.ORGANIZER, 14, "organizer_under_15", 0, 100),
        (Side.ORGANIZER, 0, "organizer_under_15", 0, 100),
    ],
)
def test_day_bands(side, days, band, refund, compensation):
    split = compute_split(models.Booking(), side, days)

    assert split.band == band
    assert split.organizer_refund_pct == refund
    assert split.artist_compensation_pct == compensation
    assert split.organizer_refund_pct + split.artist_compensation_pct + split.platform_retain_pct == 100


@pytest.mark.parametrize(
    "reason,band,platform",
    [
        (CancellationReason.FORCE_MAJEURE, "force_majeure", 3),
        (CancellationReason.MUTUAL_AGREEMENT, "mutual_agreement", 3),
        (CancellationReason.CONTRACT_EXPIRED, "no_penalty", 0),
    ],
)
def test_carve_outs_ignore_the_day_count(reason, band, platform):
    split = compute_split(models.Booking(), Side.ORGANIZER, 3, reason=reason)

    assert split.band == band
    assert split.platform_retain_pct == platform
    assert split.trust_delta == 0


def test_standard_reason_needs_a_side():
    with pytest.raises(ValidationError):
        compute_split(models.Booking(), None, 10)


def test_policy_override_is_used():
    table = [CancellationBand("flat", "artist", None, None, 60, 40, 0, "0", -1)]

    split = compute_split(models.Booking(), "artist", 5, policy_override=table)

    assert (split.band, split.organizer_refund_pct, split.artist_compensation_pct) == ("flat", 60, 40)


def test_override_that_does_not_sum_to_100_is_rejected():
    table = [{"key": "bad", "initiator": "artist", "organizer_refund_pct": 60,
              "artist_compensation_pct": 30, "platform_retain_pct": 0}]

    with pytest.raises(ValidationError):
        compute_split(models.Booking(), Side.ARTIST, 5, policy_override=table)


def test_split_amounts_platform_absorbs_rounding():
    split = compute_split(models.Booking(), Side.ORGANIZER, 20)

    amounts = split_amounts(Decimal("100.01"), split)

    assert amounts.refund == Decimal("50.01")
    assert amounts.compensation == Decimal("50.00")
    assert amounts.platform == Decimal("0.00")
    assert amounts.refund + amounts.compensation + amounts.platform == amounts.total_paid


def test_late_organizer_cancellation_pays_the_artist(db, flow):
    booking = flow.confirmed_booking()
    when = booking.event_start_at - timedelta(days=10)

    record = booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, now=when)

    assert record.policy_tier == "organizer_under_15"
    assert record.days_before_event == 10
    assert record.total_paid == Decimal("3000.00")
    assert record.refund_amount == Decimal("0.00")
    assert record.compensation_amount == Decimal("3000.00")
    assert record.platform_amount == Decimal("0.00")
    assert record.trust_deltas == {str(booking.organizer_id): -10}
    assert booking.status is BookingStatus.CANCELLED
    assert booking.opportunity.status is OpportunityStatus.ACTIVE
    assert trust_engine.get_score(db, booking.organizer_id, now=when).score == 40
    assert trust_engine.get_score(db, booking.artist_id, now=when).score == 50

    deposit = flow.milestone(booking, MilestoneKind.DEPOSIT)
    assert deposit.held_amount == Decimal("0.00")
    assert deposit.released_amount == Decimal("3000.00")
    assert deposit.status is MilestoneStatus.SETTLED
    assert flow.milestone(booking, MilestoneKind.BALANCE).status is MilestoneStatus.WAIVED
    commission = flow.milestone(booking, MilestoneKind.COMMISSION)
    assert commission.status is MilestoneStatus.WAIVED
    assert not [r for r in commission.records if r.kind is PaymentRecordKind.COMMISSION]
    payment_ledger.check_invariant(booking)


def test_retry_returns_the_same_record(db, flow):
    booking = flow.confirmed_booking()
    when = booking.event_start_at - timedelta(days=10)

    first = booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, now=when)
    second = booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, now=when)

    assert second.id == first.id
    assert db.query(models.CancellationRecord).count() == 1
    assert trust_engine.get_score(db, booking.organizer_id, now=when).score == 40
    penalties = (
        db.query(models.TrustScoreEvent)
        .filter(models.TrustScoreEvent.reason_code == TrustReason.CANCELLATION)
        .count()
    )
    assert penalties == 1


@pytest.mark.parametrize(
    "reason,refund,compensation,platform",
    [
        (CancellationReason.FORCE_MAJEURE, "2910.00", "0.00", "90.00"),
        (CancellationReason.MUTUAL_AGREEMENT, "2850.00", "60.00", "90.00"),
    ],
)
def test_carve_out_cancellations_split_held_escrow(db, flow, reason, refund, compensation, platform):
    booking = flow.confirmed_booking()
    when = booking.event_start_at - timedelta(days=3)

    record = booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, reason=reason, now=when)

    assert record.refund_amount == Decimal(refund)
    assert record.compensation_amount == Decimal(compensation)
    assert record.platform_amount == Decimal(platform)
    assert record.trust_deltas is None
    assert trust_engine.get_score(db, booking.organizer_id, now=when).score == 50
    deposit = flow.milestone(booking, MilestoneKind.DEPOSIT)
    assert deposit.returned_amount == Decimal(refund)
    payment_ledger.check_invariant(booking)


def test_artist_cancels_before_signing(db, flow):
    booking = flow.booking()

    record = booking_orchestrator.cancel_booking(db, booking.id, booking.artist_id, now=flow.now)

    assert record.policy_tier == "artist_30_to_90"
    assert record.total_paid == Decimal("0.00")
    assert record.artist_penalty_pct == Decimal("30")
    assert record.artist_penalty_amount == Decimal("3000.00")
    assert trust_engine.get_score(db, booking.artist_id, now=flow.now).score == 45
    assert booking.contract.status is ContractStatus.VOIDED


def test_platform_reason_is_reserved(db, flow):
    booking = flow.booking()

    with pytest.raises(ValidationError):
        booking_orchestrator.cancel_booking(
            db, booking.id, booking.artist_id, reason=CancellationReason.CONTRACT_EXPIRED, now=flow.now
        )


def test_standard_cancellation_without_an_actor_is_rejected(db, flow):
    booking = flow.booking()

    with pytest.raises(ValidationError):
        cancellation_service.cancel(db, booking.id, None, now=flow.now)
    assert booking.status is BookingStatus.CONTRACT_SENT


def test_in_progress_booking_falls_in_the_latest_band(db, flow):
    booking = flow.confirmed_booking()
    flow.pay(flow.milestone(booking, MilestoneKind.BALANCE))
    booking_orchestrator.start_event(db, booking, booking.event_start_at)
    assert booking.status is BookingStatus.IN_PROGRESS

    when = booking.event_start_at + timedelta(minutes=5)
    record = booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, now=when)

    assert record.days_before_event == 0
    assert record.policy_tier == "organizer_under_15"
    assert record.total_paid == Decimal("10000.00")
    assert record.refund_amount == Decimal("0.00")
    assert record.compensation_amount == Decimal("10000.00")
    assert booking.status is BookingStatus.CANCELLED
    assert booking.opportunity.status is OpportunityStatus.FILLED
    assert trust_engine.get_score(db, booking.organizer_id, now=when).score == 40
    payment_ledger.check_invariant(booking)


def test_completed_booking_cannot_be_cancelled(db, flow):
    booking = flow.confirmed_booking()
    booking_orchestrator.start_event(db, booking, booking.event_start_at)
    after = booking.event_end_at
    booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=after)
    booking_orchestrator.confirm_completion(db, booking.id, booking.organizer_id, now=after)

    with pytest.raises(StateError):
        booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, now=after)


def test_cancelled_opportunity_can_be_booked_again(db, flow):
    booking = flow.booking()
    booking_orchestrator.cancel_booking(db, booking.id, booking.organizer_id, now=flow.now)
    opportunity = booking.opportunity
    assert opportunity.status is OpportunityStatus.ACTIVE

    rival = flow.user(3, Party.ARTIST)
    application = flow.apply(rival.id, opportunity.id)
    application_registry.respond(db, application.id, booking.organizer_id, "accept", now=flow.now)
    db.flush()

    rebooked = application.booking
    assert rebooked.id != booking.id
    assert rebooked.opportunity_id == opportunity.id
    assert rebooked.status is BookingStatus.CONTRACT_SENT
    assert opportunity.status is OpportunityStatus.FILLED
    assert crud_booking.live_booking_for_opportunity(db, opportunity.id).id == rebooked.id


def test_opportunity_keeps_a_single_live_booking(db, flow):
    booking = flow.booking()
    opportunity = booking.opportunity
    rival = flow.user(3, Party.ARTIST)
    opportunity.status = OpportunityStatus.ACTIVE
    application = flow.apply(rival.id, opportunity.id)

    with pytest.raises(ConflictError):
        application_registry.respond(db, application.id, booking.organizer_id, "accept", now=flow.now)
    assert db.query(models.Booking).filter(models.Booking.opportunity_id == opportunity.id).count() == 1
