from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal

from ..models.negotiation import NegotiationStatus
from ..models.opportunity import SlotCategory
from ..models.party import Side


class OfferTerms(BaseModel):
    """Terms carried by a counter-offer. Omitted fields keep their current value."""

    fee: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    slot: Optional[SlotCategory] = None
    event_date: Optional[date] = None
    message: Optional[str] = Field(default=None, max_length=2000)


class NegotiationRespond(BaseModel):
    action: Literal["accept", "decline", "counter"]
    terms: Optional[OfferTerms] = None


class NegotiationOfferResponse(BaseModel):
    round: int
    offered_by: Side
    fee: Decimal
    slot: SlotCategory
    message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NegotiationResponse(BaseModel):
    id: int
    application_id: int
    status: NegotiationStatus
    round: int
    original_fee: Decimal
    current_fee: Decimal
    current_slot: SlotCategory
    event_date: date
    currency: str
    last_offer_by: Side
    awaiting: Side
    response_deadline: datetime
    closed_at: Optional[datetime] = None
    offers: List[NegotiationOfferResponse] = []

    model_config = ConfigDict(from_attributes=True)
