from datetime import timedelta
from decimal import Decimal

import pytest

from gigflow.models.booking import BookingStatus
from gigflow.models.party import Party
from gigflow.models.payment import EscrowStatus, MilestoneKind, MilestoneStatus, PaymentRecordKind
from gigflow.services import booking_orchestrator, payment_ledger, trust_engine
from gigflow.services.ops_scheduler import handle_completion_window, handle_event_start
from gigflow.services.payment_ledger import GatewayConfirmation
from gigflow.utils.errors import AuthorizationError, ConflictError, StateError, ValidationError


def _in_progress(db, flow, pay_balance=True):
    booking = flow.confirmed_booking()
    if pay_balance:
        flow.pay(flow.milestone(booking, MilestoneKind.BALANCE))
    booking_orchestrator.start_event(db, booking, booking.event_start_at)
    return booking


def test_deposit_alone_does_not_confirm(db, flow):
    booking = flow.executed_booking()

    flow.pay(flow.milestone(booking, MilestoneKind.DEPOSIT))

    assert booking.status is BookingStatus.DEPOSIT_PAID
    assert not booking_orchestrator.can_confirm(booking)


def test_checklist_before_deposit_confirms_on_payment(db, flow):
    booking = flow.executed_booking()

    booking_orchestrator.update_checklist(db, booking.id, booking.organizer_id, True, now=flow.now)
    assert booking.status is BookingStatus.AWAITING_DEPOSIT

    flow.pay(flow.milestone(booking, MilestoneKind.DEPOSIT))
    assert booking.status is BookingStatus.CONFIRMED
    assert booking.confirmed_at == flow.now


def test_confirmed_checklist_cannot_be_reopened(db, flow):
    booking = flow.confirmed_booking()

    with pytest.raises(StateError):
        booking_orchestrator.update_checklist(db, booking.id, booking.artist_id, False, now=flow.now)


def test_event_start_sweep(db, flow):
    booking = flow.confirmed_booking()
    db.commit()

    early = handle_event_start(db, now=booking.event_start_at - timedelta(minutes=1))
    started = handle_event_start(db, now=booking.event_start_at)

    assert early["bookings_started"] == 0
    assert started["bookings_started"] == 1
    db.refresh(booking)
    assert booking.status is BookingStatus.IN_PROGRESS
    assert booking.completion_deadline == booking.event_end_at + timedelta(hours=72)


def test_unconfirmed_booking_is_not_started(db, flow):
    booking = flow.executed_booking()
    db.commit()

    summary = handle_event_start(db, now=booking.event_start_at + timedelta(hours=1))

    assert summary["bookings_started"] == 0
    db.refresh(booking)
    assert booking.status is BookingStatus.AWAITING_DEPOSIT


def test_both_confirmations_complete_the_booking(db, flow):
    booking = _in_progress(db, flow)
    after = booking.event_end_at + timedelta(hours=1)

    booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, rating=5, now=after)
    assert booking.status is BookingStatus.IN_PROGRESS

    booking_orchestrator.confirm_completion(db, booking.id, booking.organizer_id, now=after)
    assert booking.status is BookingStatus.COMPLETED
    assert booking.completed_at == after

    for kind in (MilestoneKind.DEPOSIT, MilestoneKind.BALANCE):
        milestone = flow.milestone(booking, kind)
        assert milestone.status is MilestoneStatus.SETTLED
        assert milestone.escrow_status is EscrowStatus.RELEASED
    assert payment_ledger.total_held(booking) == Decimal("0.00")
    commission = flow.milestone(booking, MilestoneKind.COMMISSION)
    assert commission.status is MilestoneStatus.SETTLED
    assert [r.amount for r in commission.records if r.kind is PaymentRecordKind.COMMISSION] == [Decimal("1200.00")]

    for user in (booking.artist, booking.organizer):
        assert user.completed_bookings_count == 1
        assert trust_engine.get_score(db, user.id, now=after).score == 55


def test_completion_with_unpaid_balance_releases_only_held_escrow(db, flow):
    booking = _in_progress(db, flow, pay_balance=False)
    after = booking.event_end_at

    booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=after)
    booking_orchestrator.confirm_completion(db, booking.id, booking.organizer_id, now=after)

    assert booking.status is BookingStatus.COMPLETED
    assert flow.milestone(booking, MilestoneKind.DEPOSIT).released_amount == Decimal("3000.00")
    assert flow.milestone(booking, MilestoneKind.BALANCE).status is MilestoneStatus.PENDING
    payment_ledger.check_invariant(booking)


def test_balance_paid_after_completion_goes_to_the_artist(db, flow):
    booking = _in_progress(db, flow, pay_balance=False)
    after = booking.event_end_at
    booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=after)
    booking_orchestrator.confirm_completion(db, booking.id, booking.organizer_id, now=after)
    balance = flow.milestone(booking, MilestoneKind.BALANCE)
    confirmation = GatewayConfirmation(
        transaction_id="tx-late-balance",
        intent_id=None,
        status="success",
        amount=balance.amount,
        currency=balance.currency,
    )

    later = after + timedelta(days=2)
    booking_orchestrator.record_payment(db, balance.id, confirmation, now=later)
    booking_orchestrator.record_payment(db, balance.id, confirmation, now=later)

    assert booking.status is BookingStatus.COMPLETED
    assert balance.held_amount == Decimal("0.00")
    assert balance.released_amount == Decimal("7000.00")
    assert balance.escrow_status is EscrowStatus.RELEASED
    assert balance.status is MilestoneStatus.SETTLED
    assert balance.settled_at == later
    assert len([r for r in balance.records if r.kind is PaymentRecordKind.RELEASE]) == 1
    assert payment_ledger.total_held(booking) == Decimal("0.00")
    payment_ledger.check_invariant(booking)


def test_same_side_cannot_confirm_twice(db, flow):
    booking = _in_progress(db, flow)

    booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=booking.event_end_at)
    with pytest.raises(ConflictError):
        booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=booking.event_end_at)


def test_completion_before_the_event_is_rejected(db, flow):
    booking = flow.confirmed_booking()

    with pytest.raises(StateError):
        booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=flow.now)


def test_rating_out_of_range(db, flow):
    booking = _in_progress(db, flow)

    with pytest.raises(ValidationError):
        booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, rating=6, now=booking.event_end_at)


def test_unconfirmed_completion_escalates_to_dispute(db, flow):
    booking = _in_progress(db, flow)
    booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=booking.event_end_at)
    db.commit()
    deadline = booking.completion_deadline

    assert handle_completion_window(db, now=deadline)["bookings_disputed"] == 0
    summary = handle_completion_window(db, now=deadline + timedelta(minutes=1))

    assert summary["bookings_disputed"] == 1
    db.refresh(booking)
    assert booking.status is BookingStatus.DISPUTED
    assert "artist" in booking.disputes[0].reason
    assert booking.disputes[0].raised_by_user_id is None
    assert payment_ledger.total_held(booking) == Decimal("10000.00")


def test_party_can_raise_a_dispute(db, flow):
    booking = _in_progress(db, flow)

    dispute = booking_orchestrator.raise_dispute(db, booking.id, booking.organizer_id, "artist no-show")

    assert booking.status is BookingStatus.DISPUTED
    assert dispute.raised_by_user_id == booking.organizer_id
    with pytest.raises(StateError):
        booking_orchestrator.confirm_completion(db, booking.id, booking.artist_id, now=booking.event_end_at)


def test_outsider_cannot_touch_the_booking(db, flow):
    booking = flow.confirmed_booking()
    stranger = flow.user(9, Party.ORGANIZER)

    with pytest.raises(AuthorizationError):
        booking_orchestrator.raise_dispute(db, booking.id, stranger.id, "not mine")
    with pytest.raises(AuthorizationError):
        booking_orchestrator.update_checklist(db, booking.id, stranger.id, True, now=flow.now)
