from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..crud import crud_application
from ..database import get_db
from ..models.user import User
from ..schemas.application import ApplicationRespond, ApplicationResponse
from ..services import application_registry
from ..utils.errors import AuthorizationError
from .dependencies import get_current_actor

router = APIRouter(tags=["applications"])


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
def read_application(
    application_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    application = crud_application.require_application(db, application_id)
    if actor.id not in (application.artist_id, application.opportunity.owner_id):
        raise AuthorizationError("Not a party to this application")
    return ApplicationResponse.from_model(application)


@router.post("/applications/{application_id}/respond", response_model=ApplicationResponse)
def respond_to_application(
    application_id: int,
    response_in: ApplicationRespond,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    application = application_registry.respond(
        db, application_id, actor.id, response_in.action, terms=response_in.terms
    )
    db.commit()
    db.refresh(application)
    return ApplicationResponse.from_model(application)


@router.post("/applications/{application_id}/view", response_model=ApplicationResponse)
def view_application(
    application_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    application = application_registry.mark_viewed(db, application_id, actor.id)
    db.commit()
    db.refresh(application)
    return ApplicationResponse.from_model(application)


@router.post("/applications/{application_id}/withdraw", response_model=ApplicationResponse)
def withdraw_application(
    application_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    application = application_registry.withdraw(db, application_id, actor.id)
    db.commit()
    db.refresh(application)
    return ApplicationResponse.from_model(application)
