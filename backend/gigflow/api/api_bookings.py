from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from ..crud import crud_booking
from ..database import get_db
from ..models.user import User
from ..schemas.booking import (
    BookingResponse,
    CancellationResponse,
    CancelRequest,
    ChecklistUpdate,
    CompletionConfirm,
    DisputeCreate,
    DisputeResponse,
)
from ..schemas.contract import ContractResponse
from ..schemas.payment import MilestoneResponse
from ..services import booking_orchestrator
from ..utils.errors import NotFoundError
from .dependencies import ensure_booking_party, get_current_actor

router = APIRouter(tags=["bookings"])


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def read_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    booking = crud_booking.require_booking(db, booking_id)
    ensure_booking_party(booking, actor)
    return BookingResponse.from_model(booking)


@router.get("/bookings/{booking_id}/contract", response_model=ContractResponse)
def read_booking_contract(
    booking_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    booking = crud_booking.require_booking(db, booking_id)
    ensure_booking_party(booking, actor)
    if booking.contract is None:
        raise NotFoundError("Booking has no contract yet", {"booking_id": str(booking_id)})
    return booking.contract


@router.get("/bookings/{booking_id}/payments", response_model=List[MilestoneResponse])
def read_booking_payments(
    booking_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    booking = crud_booking.require_booking(db, booking_id)
    ensure_booking_party(booking, actor)
    return sorted(booking.milestones, key=lambda m: m.id)


@router.post("/bookings/{booking_id}/checklist", response_model=BookingResponse)
def update_checklist(
    booking_id: int,
    checklist_in: ChecklistUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    booking = booking_orchestrator.update_checklist(db, booking_id, actor.id, checklist_in.complete)
    db.commit()
    db.refresh(booking)
    return BookingResponse.from_model(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=CancellationResponse)
def cancel_booking(
    booking_id: int,
    cancel_in: CancelRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    record = booking_orchestrator.cancel_booking(
        db, booking_id, actor.id, reason=cancel_in.reason, note=cancel_in.note
    )
    db.commit()
    db.refresh(record)
    return record


@router.post("/bookings/{booking_id}/complete", response_model=BookingResponse)
def confirm_completion(
    booking_id: int,
    confirm_in: CompletionConfirm,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    booking = booking_orchestrator.confirm_completion(
        db, booking_id, actor.id, rating=confirm_in.rating, note=confirm_in.note
    )
    db.commit()
    db.refresh(booking)
    return BookingResponse.from_model(booking)


@router.post(
    "/bookings/{booking_id}/disputes",
    response_model=DisputeResponse,
    status_code=status.HTTP_201_CREATED,
)
def raise_dispute(
    booking_id: int,
    dispute_in: DisputeCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    dispute = booking_orchestrator.raise_dispute(db, booking_id, actor.id, dispute_in.reason)
    db.commit()
    db.refresh(dispute)
    return dispute
