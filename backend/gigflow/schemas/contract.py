from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime, time
from decimal import Decimal

from ..models.contract import ContractStatus, SignatureMethod
from ..models.opportunity import SlotCategory
from ..models.party import Side
from ..models.trust import TrustTier


class PaymentScheduleItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    amount: Decimal
    due: str


class CancellationBandTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    initiator: str
    min_days: Optional[int] = None
    max_days: Optional[int] = None
    organizer_refund_pct: int
    artist_compensation_pct: int
    platform_retain_pct: int
    artist_penalty: str = "0"
    trust_delta: int = 0


# Snapshot written into Contract.terms; never edited afterwards
class ContractTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_id: int
    artist_id: int
    organizer_id: int
    venue_id: Optional[int] = None
    agreed_fee: Decimal
    currency: str = Field(min_length=3, max_length=3)
    commission_percentage_preview: Decimal
    deposit_percentage: Decimal
    deposit_amount: Decimal
    balance_amount: Decimal
    payment_schedule: List[PaymentScheduleItem]
    event_date: date
    start_time: time
    end_time: time
    slot: SlotCategory
    artist_tier: TrustTier
    organizer_tier: TrustTier
    clauses: List[str]
    cancellation_policy: List[CancellationBandTerms]
    signing_deadline: datetime


class SignatureCreate(BaseModel):
    method: SignatureMethod = SignatureMethod.TYPED
    signature_data: str = Field(min_length=1)
    # audit trail; every signature records where it came from
    ip_address: str = Field(min_length=1, max_length=64)
    user_agent: str = Field(min_length=1)


class ContractVoid(BaseModel):
    reason: Optional[str] = None


class ContractSignatureResponse(BaseModel):
    id: int
    side: Side
    user_id: int
    method: SignatureMethod
    signed_at: datetime

    model_config = {"from_attributes": True}


class ContractResponse(BaseModel):
    id: int
    booking_id: int
    status: ContractStatus
    terms: dict
    document_url: Optional[str] = None
    signing_deadline: datetime
    artist_signed_at: Optional[datetime] = None
    organizer_signed_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    signatures: List[ContractSignatureResponse] = []

    model_config = {"from_attributes": True}
