"""Bounded offer/counter-offer protocol between artist and organizer.

A negotiation opens when the organizer side counters an application
(round 1, artist to respond) and alternates turns from there. Each counter
resets the response window; the round cap and the fee band are measured
against the artist's original proposal.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..crud import crud_application, crud_booking, crud_user
from ..models.application import ApplicationStatus
from ..models.base import utcnow
from ..models.negotiation import NegotiationStatus
from ..models.opportunity import SlotCategory
from ..models.party import Capability, Side
from ..schemas.negotiation import OfferTerms
from ..utils.errors import (
    AuthorizationError,
    ConflictError,
    DeadlineExceededError,
    LimitExceededError,
    StateError,
    ValidationError,
)
from ..utils.notifications import NotificationEvent, notify
from . import booking_orchestrator
from .payment_ledger import to_cents

logger = logging.getLogger(__name__)

_AWAITING_STATUS = {
    Side.ARTIST: NegotiationStatus.PENDING_ARTIST_RESPONSE,
    Side.ORGANIZER: NegotiationStatus.PENDING_ORGANIZER_RESPONSE,
}


def _deadline(now: datetime) -> datetime:
    return now + timedelta(hours=settings.NEGOTIATION_RESPONSE_HOURS)


def validate_terms(
    original_fee: Decimal,
    base_slot: SlotCategory,
    event_date: date,
    terms: OfferTerms,
) -> tuple[Decimal, SlotCategory]:
    """Check a counter-offer against the fee band, slot and date rules."""
    fee = to_cents(terms.fee)
    if fee <= 0:
        raise ValidationError("Fee must be positive", {"fee": str(fee)})
    tolerance = Decimal(settings.NEGOTIATION_FEE_TOLERANCE_PCT)
    deviation = abs(fee - original_fee) * Decimal(100) / original_fee
    if deviation > tolerance:
        raise ValidationError(
            f"Fee may not deviate more than {tolerance}% from the original proposal",
            {"fee": str(fee), "original_fee": str(original_fee)},
        )
    slot = terms.slot or base_slot
    if slot is not base_slot and not slot.is_adjacent_to(base_slot):
        raise ValidationError(
            "Slot may only move to an adjacent category",
            {"slot": slot.value, "base_slot": base_slot.value},
        )
    if terms.event_date is not None and terms.event_date != event_date:
        raise ValidationError("Event date cannot be negotiated", {"event_date": terms.event_date.isoformat()})
    return fee, slot


def open_negotiation(
    db: Session,
    application: models.Application,
    terms: OfferTerms,
    now: Optional[datetime] = None,
) -> models.Negotiation:
    """Open the negotiation for an application with the organizer's counter."""
    now = now or utcnow()
    if application.negotiation is not None:
        raise ConflictError("Application already has a negotiation", {"application_id": str(application.id)})
    opportunity = application.opportunity
    original_fee = to_cents(application.proposed_fee)
    fee, slot = validate_terms(original_fee, opportunity.slot, opportunity.event_date, terms)

    negotiation = models.Negotiation(
        status=NegotiationStatus.PENDING_ARTIST_RESPONSE,
        round=1,
        original_fee=original_fee,
        current_fee=fee,
        current_slot=slot,
        event_date=opportunity.event_date,
        currency=application.currency,
        last_offer_by=Side.ORGANIZER,
        response_deadline=_deadline(now),
    )
    negotiation.offers.append(
        models.NegotiationOffer(round=0, offered_by=Side.ARTIST, fee=original_fee, slot=opportunity.slot, message=application.message)
    )
    negotiation.offers.append(
        models.NegotiationOffer(round=1, offered_by=Side.ORGANIZER, fee=fee, slot=slot, message=terms.message)
    )
    application.negotiation = negotiation
    application.status = ApplicationStatus.COUNTER_OFFERED
    application.responded_at = now
    db.flush()
    notify(db, application.artist_id, NotificationEvent.NEGOTIATION_OFFER, {"negotiation_id": negotiation.id, "round": 1, "fee": fee})
    logger.info("Negotiation opened negotiation=%s application=%s fee=%s", negotiation.id, application.id, fee)
    return negotiation


def expire(db: Session, negotiation: models.Negotiation, now: Optional[datetime] = None) -> bool:
    """Expire a live negotiation whose window has closed. False if nothing to do."""
    now = now or utcnow()
    if negotiation.status.is_terminal or negotiation.response_deadline >= now:
        return False
    application = negotiation.application
    booking_orchestrator.decline_open_application(db, application, now, status=ApplicationStatus.EXPIRED)
    negotiation.status = NegotiationStatus.EXPIRED
    negotiation.closed_at = now
    notify(db, application.opportunity.owner_id, NotificationEvent.NEGOTIATION_EXPIRED, {"negotiation_id": negotiation.id})
    db.flush()
    logger.info("Negotiation expired negotiation=%s round=%s", negotiation.id, negotiation.round)
    return True


def _resolve_side(db: Session, negotiation: models.Negotiation, actor_id: int) -> Side:
    application = negotiation.application
    actor = crud_user.user.require_user(db, actor_id)
    if actor_id == application.artist_id:
        side = Side.ARTIST
    elif actor_id == application.opportunity.owner_id:
        side = Side.ORGANIZER
    else:
        side = None
    if side is None or not actor.party.can(Capability.RESPOND):
        raise AuthorizationError("Actor is not a party to this negotiation", {"actor_id": str(actor_id)})
    return side


def respond(
    db: Session,
    negotiation_id: int,
    actor_id: int,
    action: str,
    terms: Optional[OfferTerms] = None,
    now: Optional[datetime] = None,
) -> models.Negotiation:
    """Accept, decline or counter on the actor's turn."""
    now = now or utcnow()
    negotiation = crud_booking.require_negotiation(db, negotiation_id)
    crud_application.require_application(db, negotiation.application_id, lock=True)
    side = _resolve_side(db, negotiation, actor_id)

    if negotiation.status.is_terminal:
        raise StateError("Negotiation is closed", {"status": negotiation.status.value})
    if now > negotiation.response_deadline:
        expire(db, negotiation, now=now)
        db.commit()
        raise DeadlineExceededError(
            "Response window has passed; the negotiation expired",
            {"response_deadline": negotiation.response_deadline.isoformat()},
        )
    if negotiation.awaiting is not side:
        raise StateError("It is not this party's turn", {"awaiting": negotiation.awaiting.value})

    application = negotiation.application
    counterpart = application.opportunity.owner_id if side is Side.ARTIST else application.artist_id
    if action == "accept":
        negotiation.status = NegotiationStatus.ACCEPTED
        negotiation.closed_at = now
        booking_orchestrator.book_application(
            db, application, negotiation.current_fee, negotiation.current_slot, now=now
        )
        notify(db, counterpart, NotificationEvent.NEGOTIATION_ACCEPTED, {"negotiation_id": negotiation.id})
    elif action == "decline":
        booking_orchestrator.decline_open_application(db, application, now)
        negotiation.status = NegotiationStatus.DECLINED
        negotiation.closed_at = now
        notify(db, counterpart, NotificationEvent.NEGOTIATION_DECLINED, {"negotiation_id": negotiation.id})
    elif action == "counter":
        if negotiation.round >= settings.NEGOTIATION_MAX_ROUNDS:
            raise LimitExceededError(
                "Negotiation round limit reached",
                {"round": str(negotiation.round), "max_rounds": str(settings.NEGOTIATION_MAX_ROUNDS)},
            )
        if terms is None:
            raise ValidationError("A counter-offer needs terms", {"terms": "required"})
        if terms.slot is None:
            terms = terms.model_copy(update={"slot": negotiation.current_slot})
        fee, slot = validate_terms(
            negotiation.original_fee, application.opportunity.slot, negotiation.event_date, terms
        )
        negotiation.round += 1
        negotiation.current_fee = fee
        negotiation.current_slot = slot
        negotiation.last_offer_by = side
        negotiation.status = _AWAITING_STATUS[side.other]
        negotiation.response_deadline = _deadline(now)
        negotiation.offers.append(
            models.NegotiationOffer(round=negotiation.round, offered_by=side, fee=fee, slot=slot, message=terms.message)
        )
        notify(db, counterpart, NotificationEvent.NEGOTIATION_OFFER, {"negotiation_id": negotiation.id, "round": negotiation.round, "fee": fee})
    else:
        raise ValidationError("Unknown negotiation action", {"action": str(action)})

    db.flush()
    logger.info(
        "Negotiation %s by %s negotiation=%s round=%s status=%s",
        action,
        side.value,
        negotiation.id,
        negotiation.round,
        negotiation.status.value,
    )
    return negotiation


def overdue_negotiations(db: Session, now: datetime) -> List[models.Negotiation]:
    return (
        db.query(models.Negotiation)
        .filter(
            models.Negotiation.status.in_(
                [NegotiationStatus.PENDING_ARTIST_RESPONSE, NegotiationStatus.PENDING_ORGANIZER_RESPONSE]
            ),
            models.Negotiation.response_deadline < now,
        )
        .order_by(models.Negotiation.id.asc())
        .all()
    )
