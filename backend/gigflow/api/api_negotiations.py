from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..crud import crud_booking
from ..database import get_db
from ..models.user import User
from ..schemas.negotiation import NegotiationRespond, NegotiationResponse
from ..services import negotiation_engine
from ..utils.errors import AuthorizationError
from .dependencies import get_current_actor

router = APIRouter(tags=["negotiations"])


@router.get("/negotiations/{negotiation_id}", response_model=NegotiationResponse)
def read_negotiation(
    negotiation_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    negotiation = crud_booking.require_negotiation(db, negotiation_id)
    application = negotiation.application
    if actor.id not in (application.artist_id, application.opportunity.owner_id):
        raise AuthorizationError("Not a party to this negotiation")
    # lazy expiry on read
    if negotiation_engine.expire(db, negotiation):
        db.commit()
    return negotiation


@router.post("/negotiations/{negotiation_id}/respond", response_model=NegotiationResponse)
def respond_to_negotiation(
    negotiation_id: int,
    response_in: NegotiationRespond,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    negotiation = negotiation_engine.respond(
        db, negotiation_id, actor.id, response_in.action, terms=response_in.terms
    )
    db.commit()
    db.refresh(negotiation)
    return negotiation
