import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..crud import crud_application, crud_opportunity, crud_user
from ..models.application import ApplicationStatus
from ..models.base import utcnow
from ..models.opportunity import OpportunityStatus
from ..models.party import Capability, Party
from ..schemas.opportunity import OpportunityCreate
from ..utils.errors import AuthorizationError, StateError, ValidationError
from ..utils.notifications import NotificationEvent, notify
from .booking_orchestrator import decline_open_application

logger = logging.getLogger(__name__)


def create_opportunity(
    db: Session,
    owner_id: int,
    data: OpportunityCreate,
    now: Optional[datetime] = None,
) -> models.Opportunity:
    now = now or utcnow()
    owner = crud_user.user.require_user(db, owner_id)
    if not owner.party.can(Capability.POST_OPPORTUNITY):
        raise AuthorizationError("Only organizers and venues can post opportunities")
    field_errors = {}
    if data.budget_min > data.budget_max:
        field_errors["budget_min"] = "must not exceed budget_max"
    event_start = datetime.combine(data.event_date, data.start_time)
    if data.application_deadline >= event_start:
        field_errors["application_deadline"] = "must be before the event starts"
    if data.application_deadline <= now:
        field_errors["application_deadline"] = "must be in the future"
    venue_id = data.venue_id
    if venue_id is None and owner.party is Party.VENUE:
        venue_id = owner.id
    if venue_id is not None:
        venue = crud_user.user.get_user(db, venue_id)
        if venue is None or venue.party is not Party.VENUE:
            field_errors["venue_id"] = "is not a venue"
    if field_errors:
        raise ValidationError("Invalid opportunity", field_errors)

    opportunity = models.Opportunity(
        owner_id=owner.id,
        venue_id=venue_id,
        title=data.title,
        event_date=data.event_date,
        start_time=data.start_time,
        end_time=data.end_time,
        slot=data.slot,
        budget_min=data.budget_min,
        budget_max=data.budget_max,
        currency=(data.currency or settings.DEFAULT_CURRENCY).upper(),
        genres=data.genres,
        application_deadline=data.application_deadline,
        status=OpportunityStatus.ACTIVE,
    )
    db.add(opportunity)
    db.flush()
    logger.info("Opportunity created id=%s owner=%s event_date=%s", opportunity.id, owner.id, opportunity.event_date)
    return opportunity


def _owned_active(db: Session, opportunity_id: int, actor_id: int) -> models.Opportunity:
    opportunity = crud_opportunity.require_opportunity(db, opportunity_id, lock=True)
    if opportunity.owner_id != actor_id:
        raise AuthorizationError("Only the opportunity owner can do this")
    if opportunity.status is not OpportunityStatus.ACTIVE:
        raise StateError("Opportunity is not active", {"status": opportunity.status.value})
    return opportunity


def close_opportunity(
    db: Session,
    opportunity_id: int,
    actor_id: int,
    now: Optional[datetime] = None,
) -> models.Opportunity:
    """Stop taking applications; open ones are declined."""
    now = now or utcnow()
    opportunity = _owned_active(db, opportunity_id, actor_id)
    opportunity.status = OpportunityStatus.CLOSED
    for application in crud_application.open_for_opportunity(db, opportunity.id):
        decline_open_application(db, application, now)
    notify(db, opportunity.owner_id, NotificationEvent.OPPORTUNITY_CLOSED, {"opportunity_id": opportunity.id})
    db.flush()
    return opportunity


def cancel_opportunity(
    db: Session,
    opportunity_id: int,
    actor_id: int,
    now: Optional[datetime] = None,
) -> models.Opportunity:
    """Call the gig off before anyone is booked; open applications expire."""
    now = now or utcnow()
    opportunity = _owned_active(db, opportunity_id, actor_id)
    opportunity.status = OpportunityStatus.CANCELLED
    for application in crud_application.open_for_opportunity(db, opportunity.id):
        decline_open_application(db, application, now, status=ApplicationStatus.EXPIRED)
    db.flush()
    return opportunity
