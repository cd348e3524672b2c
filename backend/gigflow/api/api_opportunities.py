from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..crud import crud_opportunity
from ..database import get_db
from ..models.user import User
from ..schemas.application import ApplicationCreate, ApplicationResponse
from ..schemas.opportunity import OpportunityCreate, OpportunityResponse
from ..services import application_registry, opportunities
from .dependencies import get_current_actor

router = APIRouter(tags=["opportunities"])


@router.post("/opportunities", response_model=OpportunityResponse, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    opportunity_in: OpportunityCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    opportunity = opportunities.create_opportunity(db, actor.id, opportunity_in)
    db.commit()
    db.refresh(opportunity)
    return opportunity


@router.get("/opportunities/{opportunity_id}", response_model=OpportunityResponse)
def read_opportunity(opportunity_id: int, db: Session = Depends(get_db)):
    return crud_opportunity.require_opportunity(db, opportunity_id)


@router.post("/opportunities/{opportunity_id}/close", response_model=OpportunityResponse)
def close_opportunity(
    opportunity_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    opportunity = opportunities.close_opportunity(db, opportunity_id, actor.id)
    db.commit()
    db.refresh(opportunity)
    return opportunity


@router.post("/opportunities/{opportunity_id}/cancel", response_model=OpportunityResponse)
def cancel_opportunity(
    opportunity_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    opportunity = opportunities.cancel_opportunity(db, opportunity_id, actor.id)
    db.commit()
    db.refresh(opportunity)
    return opportunity


@router.post(
    "/opportunities/{opportunity_id}/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_application(
    opportunity_id: int,
    application_in: ApplicationCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    application = application_registry.submit(
        db,
        actor.id,
        opportunity_id,
        application_in.proposed_fee,
        application_in.message,
    )
    db.commit()
    db.refresh(application)
    return ApplicationResponse.from_model(application)
