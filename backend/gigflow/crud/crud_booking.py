from datetime import date
from sqlalchemy.orm import Session
from typing import Optional

from .. import models
from ..models.booking import BookingStatus
from ..utils.errors import NotFoundError


def get_booking(db: Session, booking_id: int, lock: bool = False) -> Optional[models.Booking]:
    query = db.query(models.Booking).filter(models.Booking.id == booking_id)
    if lock:
        # Row lock on PostgreSQL; a no-op on SQLite, where writes serialize anyway.
        query = query.with_for_update().populate_existing()
    return query.first()


def require_booking(db: Session, booking_id: int, lock: bool = False) -> models.Booking:
    booking = get_booking(db, booking_id, lock=lock)
    if booking is None:
        raise NotFoundError("Booking not found", {"booking_id": str(booking_id)})
    return booking


def artist_booked_on(db: Session, artist_id: int, event_date: date) -> bool:
    return (
        db.query(models.Booking.id)
        .filter(
            models.Booking.artist_id == artist_id,
            models.Booking.event_date == event_date,
            models.Booking.status != BookingStatus.CANCELLED,
        )
        .first()
        is not None
    )


def live_booking_for_opportunity(db: Session, opportunity_id: int) -> Optional[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(
            models.Booking.opportunity_id == opportunity_id,
            models.Booking.status != BookingStatus.CANCELLED,
        )
        .first()
    )


def require_contract(db: Session, contract_id: int) -> models.Contract:
    contract = db.query(models.Contract).filter(models.Contract.id == contract_id).first()
    if contract is None:
        raise NotFoundError("Contract not found", {"contract_id": str(contract_id)})
    return contract


def require_negotiation(db: Session, negotiation_id: int) -> models.Negotiation:
    negotiation = db.query(models.Negotiation).filter(models.Negotiation.id == negotiation_id).first()
    if negotiation is None:
        raise NotFoundError("Negotiation not found", {"negotiation_id": str(negotiation_id)})
    return negotiation


def require_milestone(db: Session, milestone_id: int) -> models.PaymentMilestone:
    milestone = db.query(models.PaymentMilestone).filter(models.PaymentMilestone.id == milestone_id).first()
    if milestone is None:
        raise NotFoundError("Payment milestone not found", {"milestone_id": str(milestone_id)})
    return milestone
