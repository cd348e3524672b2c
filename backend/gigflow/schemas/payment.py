from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from ..models.payment import EscrowStatus, MilestoneKind, MilestoneStatus, Payee, PaymentRecordKind


class PaymentRecordResponse(BaseModel):
    id: int
    kind: PaymentRecordKind
    amount: Decimal
    currency: str
    payee: Payee
    gateway_transaction_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MilestoneResponse(BaseModel):
    id: int
    booking_id: int
    kind: MilestoneKind
    amount: Decimal
    currency: str
    status: MilestoneStatus
    escrow_status: EscrowStatus
    due_at: Optional[datetime] = None
    recorded_amount: Decimal
    held_amount: Decimal
    released_amount: Decimal
    returned_amount: Decimal
    gateway_intent_id: Optional[str] = None
    needs_manual_review: bool
    paid_at: Optional[datetime] = None
    records: List[PaymentRecordResponse] = []

    model_config = ConfigDict(from_attributes=True)


class ChargeIntentResponse(BaseModel):
    milestone_id: int
    intent_id: str
    amount: Decimal
    currency: str
