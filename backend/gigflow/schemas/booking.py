from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from ..models.booking import BookingStatus
from ..models.cancellation import CancellationReason
from ..models.dispute import DisputeStatus
from ..models.opportunity import SlotCategory
from ..models.party import Side


class ChecklistUpdate(BaseModel):
    complete: bool


class CancelRequest(BaseModel):
    reason: CancellationReason = CancellationReason.STANDARD
    note: Optional[str] = Field(default=None, max_length=2000)


class CompletionConfirm(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    note: Optional[str] = Field(default=None, max_length=2000)


class DisputeCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class CompletionConfirmationResponse(BaseModel):
    side: Side
    user_id: int
    rating: Optional[int] = None
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CancellationResponse(BaseModel):
    booking_id: int
    cancelled_by_side: Optional[Side] = None
    reason: CancellationReason
    days_before_event: int
    policy_tier: str
    organizer_refund_pct: int
    artist_compensation_pct: int
    platform_retain_pct: int
    artist_penalty_pct: Decimal
    currency: str
    total_paid: Decimal
    refund_amount: Decimal
    compensation_amount: Decimal
    platform_amount: Decimal
    artist_penalty_amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DisputeResponse(BaseModel):
    id: int
    booking_id: int
    status: DisputeStatus
    reason: Optional[str] = None
    raised_by_user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingResponse(BaseModel):
    id: int
    opportunity_id: int
    application_id: int
    artist_id: int
    organizer_id: int
    venue_id: Optional[int] = None
    agreed_fee: Decimal
    currency: str
    slot: SlotCategory
    event_date: date
    event_start_at: datetime
    event_end_at: datetime
    commission_percentage: Optional[Decimal] = None
    checklist_complete: bool
    status: BookingStatus
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completion_deadline: Optional[datetime] = None
    contract_id: Optional[int] = None
    confirmations: List[CompletionConfirmationResponse] = []
    cancellation: Optional[CancellationResponse] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_model(cls, booking) -> "BookingResponse":
        out = cls.model_validate(booking)
        contract = booking.contract
        return out.model_copy(update={"contract_id": contract.id if contract else None})
