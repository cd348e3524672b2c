from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional
from datetime import datetime
from decimal import Decimal

from ..models.party import Party
from ..models.trust import TrustReason, TrustTier


class UserMirror(BaseModel):
    """Identity-service user as mirrored into the booking flow."""

    id: int = Field(gt=0)
    display_name: str = Field(min_length=1, max_length=200)
    party: Party
    is_verified: bool = False


class UserResponse(BaseModel):
    id: int
    display_name: str
    party: Party
    is_verified: bool
    completed_bookings_count: int

    model_config = ConfigDict(from_attributes=True)


class TrustScoreResponse(BaseModel):
    user_id: int
    score: int
    tier: TrustTier
    commission_percentage: Decimal
    max_pending_applications: int
    deposit_percentage: Decimal
    last_activity_at: datetime


class TrustEventResponse(BaseModel):
    id: int
    delta_requested: int
    delta_applied: int
    score_before: int
    score_after: int
    tier_after: TrustTier
    reason_code: TrustReason
    booking_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
