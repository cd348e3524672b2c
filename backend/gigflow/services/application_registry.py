"""Artist applications against open opportunities.

Each application that is still open holds one of the artist's pending
slots. The slot limit comes from the artist's trust tier, and the slot is
taken in the same transaction that inserts the application.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..crud import crud_application, crud_booking, crud_opportunity, crud_user
from ..models.application import (
    OPEN_APPLICATION_STATUSES,
    RESPONDABLE_APPLICATION_STATUSES,
    ApplicationStatus,
)
from ..models.base import utcnow
from ..models.opportunity import OpportunityStatus
from ..models.party import Capability
from ..schemas.negotiation import OfferTerms
from ..utils.errors import (
    AuthorizationError,
    ConflictError,
    DeadlineExceededError,
    StateError,
    ValidationError,
)
from ..utils.notifications import NotificationEvent, notify
from . import booking_orchestrator, negotiation_engine, trust_engine
from .payment_ledger import to_cents

logger = logging.getLogger(__name__)


def submit(
    db: Session,
    artist_id: int,
    opportunity_id: int,
    proposed_fee: Decimal,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Application:
    now = now or utcnow()
    artist = crud_user.user.require_user(db, artist_id)
    if not artist.party.can(Capability.APPLY):
        raise AuthorizationError("Only artists can apply to opportunities")
    if not artist.is_verified:
        raise AuthorizationError("Artist profile is not verified")
    fee = to_cents(proposed_fee)
    if fee <= 0:
        raise ValidationError("Proposed fee must be positive", {"proposed_fee": str(proposed_fee)})

    opportunity = crud_opportunity.require_opportunity(db, opportunity_id)
    if opportunity.status is not OpportunityStatus.ACTIVE:
        raise StateError("Opportunity is not accepting applications", {"status": opportunity.status.value})
    if now >= opportunity.application_deadline:
        raise DeadlineExceededError(
            "Application deadline has passed",
            {"application_deadline": opportunity.application_deadline.isoformat()},
        )
    if crud_application.get_for_artist_and_opportunity(db, artist_id, opportunity_id) is not None:
        raise ConflictError("Artist already applied to this opportunity", {"opportunity_id": str(opportunity_id)})
    if crud_booking.artist_booked_on(db, artist_id, opportunity.event_date):
        raise ConflictError("Artist is already booked on that date", {"event_date": opportunity.event_date.isoformat()})

    limit = trust_engine.current_policy(db, artist_id, now=now).max_pending_applications
    crud_application.reserve_pending_slot(db, artist_id, limit)

    application = models.Application(
        artist_id=artist_id,
        opportunity_id=opportunity_id,
        proposed_fee=fee,
        currency=opportunity.currency,
        message=message,
        status=ApplicationStatus.PENDING,
    )
    db.add(application)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError("Artist already applied to this opportunity", {"opportunity_id": str(opportunity_id)}) from exc
    trust_engine.touch(db, artist_id, now=now)
    notify(db, opportunity.owner_id, NotificationEvent.APPLICATION_SUBMITTED, {"application_id": application.id, "artist_id": artist_id})
    logger.info("Application submitted id=%s artist=%s opportunity=%s fee=%s", application.id, artist_id, opportunity_id, fee)
    return application


def _as_owner(db: Session, application: models.Application, actor_id: int) -> None:
    actor = crud_user.user.require_user(db, actor_id)
    if application.opportunity.owner_id != actor_id or not actor.party.can(Capability.RESPOND):
        raise AuthorizationError("Only the opportunity owner can respond to applications")


def respond(
    db: Session,
    application_id: int,
    actor_id: int,
    action: str,
    terms: Optional[OfferTerms] = None,
    now: Optional[datetime] = None,
) -> models.Application:
    """Organizer-side decision on an application.

    ``accept`` books it directly, ``counter`` opens a negotiation with
    ``terms``, ``shortlist`` and ``decline`` do what they say.
    """
    now = now or utcnow()
    application = crud_application.require_application(db, application_id, lock=True)
    _as_owner(db, application, actor_id)
    if action == "counter" and application.negotiation is not None:
        raise ConflictError("Application already has a negotiation", {"negotiation_id": str(application.negotiation.id)})
    if application.status not in RESPONDABLE_APPLICATION_STATUSES:
        raise StateError("Application can no longer be answered", {"status": application.status.value})

    if action == "accept":
        booking_orchestrator.book_application(
            db, application, application.proposed_fee, application.opportunity.slot, now=now
        )
    elif action == "decline":
        booking_orchestrator.decline_open_application(db, application, now)
    elif action == "counter":
        if terms is None:
            raise ValidationError("A counter-offer needs terms", {"terms": "required"})
        negotiation_engine.open_negotiation(db, application, terms, now=now)
    elif action == "shortlist":
        application.status = ApplicationStatus.SHORTLISTED
    else:
        raise ValidationError("Unknown application action", {"action": str(action)})
    trust_engine.touch(db, actor_id, now=now)
    db.flush()
    logger.info("Application %s id=%s status=%s", action, application.id, application.status.value)
    return application


def mark_viewed(db: Session, application_id: int, actor_id: int) -> models.Application:
    application = crud_application.require_application(db, application_id, lock=True)
    _as_owner(db, application, actor_id)
    if application.status is ApplicationStatus.PENDING:
        application.status = ApplicationStatus.VIEWED
        db.flush()
    return application


def withdraw(
    db: Session,
    application_id: int,
    actor_id: int,
    now: Optional[datetime] = None,
) -> models.Application:
    now = now or utcnow()
    application = crud_application.require_application(db, application_id, lock=True)
    if application.artist_id != actor_id:
        raise AuthorizationError("Only the applying artist can withdraw")
    if application.status not in OPEN_APPLICATION_STATUSES:
        raise StateError("Application can no longer be withdrawn", {"status": application.status.value})
    booking_orchestrator.decline_open_application(db, application, now, status=ApplicationStatus.WITHDRAWN)
    db.flush()
    logger.info("Application withdrawn id=%s artist=%s", application.id, actor_id)
    return application


def stale_applications(db: Session, now: datetime) -> List[models.Application]:
    """Open applications whose event date has already gone by."""
    return (
        db.query(models.Application)
        .join(models.Opportunity, models.Application.opportunity_id == models.Opportunity.id)
        .filter(
            models.Application.status.in_(list(OPEN_APPLICATION_STATUSES)),
            models.Opportunity.event_date < now.date(),
        )
        .order_by(models.Application.id.asc())
        .all()
    )


def expire_stale(db: Session, application: models.Application, now: datetime) -> bool:
    if not application.holds_pending_slot or application.opportunity.event_date >= now.date():
        return False
    booking_orchestrator.decline_open_application(db, application, now, status=ApplicationStatus.EXPIRED)
    db.flush()
    return True
