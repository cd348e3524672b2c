"""Top-level booking state machine.

pending_contract -> contract_sent -> awaiting_deposit -> deposit_paid ->
confirmed -> in_progress -> completed, with cancelled and disputed
reachable from any non-terminal state. Contract and payment steps are
delegated to their own services; this module sequences them and applies
the trust consequences of terminal events.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import models
from ..core import policy
from ..core.config import settings
from ..crud import crud_application, crud_booking, crud_user
from ..models.application import ApplicationStatus
from ..models.base import utcnow
from ..models.booking import BookingStatus
from ..models.cancellation import CancellationReason
from ..models.contract import ContractStatus
from ..models.negotiation import NegotiationStatus
from ..models.opportunity import OpportunityStatus, SlotCategory
from ..models.party import Capability, Side
from ..models.payment import EscrowStatus
from ..models.trust import TrustReason
from ..utils.errors import (
    AuthorizationError,
    ConflictError,
    StateError,
    ValidationError,
)
from ..utils.notifications import NotificationEvent, notify, notify_parties
from . import contract_manager, payment_ledger, trust_engine
from .cancellation import cancellation_service
from .payment_ledger import GatewayConfirmation

logger = logging.getLogger(__name__)


def _participant(db: Session, booking: models.Booking, actor_id: int, capability: Capability) -> Side:
    side = booking.side_of(actor_id)
    actor = crud_user.user.require_user(db, actor_id)
    if side is None or not actor.party.can(capability):
        raise AuthorizationError("Actor is not a party to this booking", {"actor_id": str(actor_id)})
    return side


def _event_window(opportunity: models.Opportunity) -> tuple[datetime, datetime]:
    start = datetime.combine(opportunity.event_date, opportunity.start_time)
    end = datetime.combine(opportunity.event_date, opportunity.end_time)
    if end <= start:
        # sets that run past midnight
        end += timedelta(days=1)
    return start, end


_CLOSE_EVENTS = {
    ApplicationStatus.DECLINED: NotificationEvent.APPLICATION_DECLINED,
    ApplicationStatus.EXPIRED: NotificationEvent.APPLICATION_EXPIRED,
}


def decline_open_application(
    db: Session,
    application: models.Application,
    now: datetime,
    status: ApplicationStatus = ApplicationStatus.DECLINED,
) -> None:
    """Close an application that still holds a pending slot, and its negotiation."""
    if not application.holds_pending_slot:
        return
    negotiation = application.negotiation
    if negotiation is not None and not negotiation.status.is_terminal:
        negotiation.status = (
            NegotiationStatus.EXPIRED if status is ApplicationStatus.EXPIRED else NegotiationStatus.DECLINED
        )
        negotiation.closed_at = now
    application.status = status
    application.responded_at = now
    crud_application.release_pending_slot(db, application.artist_id)
    if status is ApplicationStatus.WITHDRAWN:
        notify(db, application.opportunity.owner_id, NotificationEvent.APPLICATION_WITHDRAWN, {"application_id": application.id})
    else:
        event = _CLOSE_EVENTS.get(status, NotificationEvent.APPLICATION_DECLINED)
        notify(db, application.artist_id, event, {"application_id": application.id})


def book_application(
    db: Session,
    application: models.Application,
    fee: Decimal,
    slot: SlotCategory,
    now: Optional[datetime] = None,
) -> models.Booking:
    """Create the booking for an accepted application and send its contract.

    Fills the opportunity and declines every other open application on it.
    """
    now = now or utcnow()
    opportunity = application.opportunity
    if opportunity.status is not OpportunityStatus.ACTIVE:
        raise StateError("Opportunity is no longer open", {"status": opportunity.status.value})
    if crud_booking.live_booking_for_opportunity(db, opportunity.id) is not None:
        raise ConflictError("Opportunity already has a live booking", {"opportunity_id": str(opportunity.id)})
    if crud_booking.artist_booked_on(db, application.artist_id, opportunity.event_date):
        raise ConflictError("Artist is already booked on that date", {"event_date": opportunity.event_date.isoformat()})

    start, end = _event_window(opportunity)
    booking = models.Booking(
        opportunity_id=opportunity.id,
        application_id=application.id,
        artist_id=application.artist_id,
        organizer_id=opportunity.owner_id,
        venue_id=opportunity.venue_id,
        agreed_fee=payment_ledger.to_cents(fee),
        currency=application.currency,
        slot=slot,
        event_date=opportunity.event_date,
        event_start_at=start,
        event_end_at=end,
        status=BookingStatus.PENDING_CONTRACT,
        checklist_complete=False,
    )
    db.add(booking)

    application.status = ApplicationStatus.ACCEPTED
    application.responded_at = now
    crud_application.release_pending_slot(db, application.artist_id)
    opportunity.status = OpportunityStatus.FILLED
    for sibling in crud_application.open_siblings(db, application):
        decline_open_application(db, sibling, now)
    db.flush()

    notify(db, application.artist_id, NotificationEvent.APPLICATION_ACCEPTED, {"application_id": application.id, "booking_id": booking.id})
    trust_engine.touch(db, booking.artist_id, now=now)
    trust_engine.touch(db, booking.organizer_id, now=now)
    contract_manager.generate(db, booking, now=now)
    logger.info(
        "Booking created booking=%s application=%s fee=%s %s",
        booking.id,
        application.id,
        booking.agreed_fee,
        booking.currency,
    )
    return booking


def can_confirm(booking: models.Booking) -> bool:
    contract = booking.contract
    deposit = payment_ledger.deposit_milestone(booking)
    return (
        contract is not None
        and contract.status is ContractStatus.FULLY_EXECUTED
        and deposit is not None
        and deposit.escrow_status is EscrowStatus.HELD
        and bool(booking.checklist_complete)
    )


def advance(db: Session, booking: models.Booking, now: Optional[datetime] = None) -> models.Booking:
    """Move a pre-event booking forward as far as its guards allow."""
    now = now or utcnow()
    if booking.status is BookingStatus.AWAITING_DEPOSIT:
        deposit = payment_ledger.deposit_milestone(booking)
        if deposit is not None and deposit.escrow_status is EscrowStatus.HELD:
            booking.status = BookingStatus.DEPOSIT_PAID
    if booking.status is BookingStatus.DEPOSIT_PAID and can_confirm(booking):
        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = now
        notify_parties(db, booking, NotificationEvent.BOOKING_CONFIRMED)
    db.flush()
    return booking


def record_payment(
    db: Session,
    milestone_id: int,
    confirmation: GatewayConfirmation,
    now: Optional[datetime] = None,
) -> models.PaymentMilestone:
    milestone = payment_ledger.record_payment(db, milestone_id, confirmation, now=now)
    booking = milestone.booking
    if booking.status is BookingStatus.COMPLETED:
        # balance settled after both sides confirmed; it goes straight to the artist
        payment_ledger.release_for_completion(db, booking, now=now)
        logger.info("Late payment released booking=%s milestone=%s", booking.id, milestone.id)
    else:
        advance(db, booking, now=now)
    return milestone


def update_checklist(
    db: Session,
    booking_id: int,
    actor_id: int,
    complete: bool,
    now: Optional[datetime] = None,
) -> models.Booking:
    booking = crud_booking.require_booking(db, booking_id, lock=True)
    _participant(db, booking, actor_id, Capability.RESPOND)
    if booking.status.is_terminal or booking.status is BookingStatus.IN_PROGRESS:
        raise StateError("Checklist is closed for this booking", {"status": booking.status.value})
    if not complete and booking.status is BookingStatus.CONFIRMED:
        raise StateError("A confirmed booking's checklist cannot be reopened")
    booking.checklist_complete = bool(complete)
    return advance(db, booking, now=now)


def start_event(db: Session, booking: models.Booking, now: datetime) -> bool:
    """Confirmed bookings whose start time has passed go in_progress."""
    if booking.status is not BookingStatus.CONFIRMED or booking.event_start_at > now:
        return False
    booking.status = BookingStatus.IN_PROGRESS
    booking.started_at = now
    booking.completion_deadline = booking.event_end_at + timedelta(hours=settings.COMPLETION_CONFIRMATION_HOURS)
    notify_parties(db, booking, NotificationEvent.BOOKING_STARTED)
    db.flush()
    return True


def _apply_completion_trust(db: Session, booking: models.Booking, now: datetime) -> None:
    for user_id in (booking.artist_id, booking.organizer_id):
        user = crud_user.user.require_user(db, user_id)
        user.completed_bookings_count = (user.completed_bookings_count or 0) + 1
        trust_engine.apply_delta(
            db,
            user_id,
            policy.COMPLETION_DELTA,
            TrustReason.BOOKING_COMPLETED,
            booking_id=booking.id,
            now=now,
        )
        bonus = policy.COMPLETION_MILESTONE_BONUSES.get(user.completed_bookings_count)
        if bonus:
            trust_engine.apply_delta(
                db,
                user_id,
                bonus,
                TrustReason.COMPLETION_MILESTONE,
                metadata={"completed_bookings": user.completed_bookings_count},
                booking_id=booking.id,
                now=now,
            )


def _complete(db: Session, booking: models.Booking, now: datetime) -> None:
    booking.status = BookingStatus.COMPLETED
    booking.completed_at = now
    payment_ledger.release_for_completion(db, booking, now=now)
    _apply_completion_trust(db, booking, now)
    notify_parties(db, booking, NotificationEvent.BOOKING_COMPLETED)
    logger.info("Booking completed booking=%s", booking.id)


def confirm_completion(
    db: Session,
    booking_id: int,
    actor_id: int,
    rating: Optional[int] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Booking:
    """Record one side's completion confirmation; the second one completes the booking."""
    now = now or utcnow()
    booking = crud_booking.require_booking(db, booking_id, lock=True)
    side = _participant(db, booking, actor_id, Capability.CONFIRM_COMPLETION)
    if booking.status is not BookingStatus.IN_PROGRESS:
        raise StateError("Completion can only be confirmed once the event is under way", {"status": booking.status.value})
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5", {"rating": str(rating)})
    if any(c.side is side for c in booking.confirmations):
        raise ConflictError("Completion already confirmed by this party", {"side": side.value})

    booking.confirmations.append(
        models.CompletionConfirmation(side=side, user_id=actor_id, rating=rating, note=note)
    )
    db.flush()
    if {c.side for c in booking.confirmations} == {Side.ARTIST, Side.ORGANIZER}:
        _complete(db, booking, now)
    db.flush()
    return booking


def _open_dispute(
    db: Session,
    booking: models.Booking,
    reason: str,
    raised_by: Optional[int],
) -> models.Dispute:
    booking.status = BookingStatus.DISPUTED
    dispute = models.Dispute(reason=reason, raised_by_user_id=raised_by)
    booking.disputes.append(dispute)
    notify_parties(db, booking, NotificationEvent.BOOKING_DISPUTED, {"reason": reason})
    db.flush()
    return dispute


def raise_dispute(
    db: Session,
    booking_id: int,
    actor_id: int,
    reason: str,
) -> models.Dispute:
    booking = crud_booking.require_booking(db, booking_id, lock=True)
    _participant(db, booking, actor_id, Capability.RESPOND)
    if booking.status.is_terminal:
        raise StateError("Booking is already closed", {"status": booking.status.value})
    return _open_dispute(db, booking, reason, actor_id)


def escalate_unconfirmed(db: Session, booking: models.Booking, now: datetime) -> bool:
    """In-progress bookings past the confirmation window go to manual review."""
    if (
        booking.status is not BookingStatus.IN_PROGRESS
        or booking.completion_deadline is None
        or booking.completion_deadline > now
    ):
        return False
    confirmed = sorted(c.side.value for c in booking.confirmations)
    _open_dispute(
        db,
        booking,
        f"completion not confirmed by both parties (confirmed: {', '.join(confirmed) or 'none'})",
        None,
    )
    return True


def cancel_booking(
    db: Session,
    booking_id: int,
    actor_id: int,
    reason: CancellationReason = CancellationReason.STANDARD,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.CancellationRecord:
    return cancellation_service.cancel(db, booking_id, actor_id, reason=reason, note=note, now=now)


def bookings_to_start(db: Session, now: datetime) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(models.Booking.status == BookingStatus.CONFIRMED, models.Booking.event_start_at <= now)
        .order_by(models.Booking.id.asc())
        .all()
    )


def bookings_past_confirmation_window(db: Session, now: datetime) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(
            models.Booking.status == BookingStatus.IN_PROGRESS,
            models.Booking.completion_deadline < now,
        )
        .order_by(models.Booking.id.asc())
        .all()
    )
