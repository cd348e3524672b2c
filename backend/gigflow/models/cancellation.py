# backend/gigflow/models/cancellation.py

import enum

from sqlalchemy import Column, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel
from .party import Side
from .types import CaseInsensitiveEnum, Money, Percentage


class CancellationReason(str, enum.Enum):
    STANDARD = "standard"
    FORCE_MAJEURE = "force_majeure"
    MUTUAL_AGREEMENT = "mutual_agreement"
    CONTRACT_EXPIRED = "contract_expired"
    CONTRACT_VOIDED = "contract_voided"

    @property
    def is_carve_out(self) -> bool:
        """Reasons that bypass the day-based tiers and never touch trust."""
        return self is not CancellationReason.STANDARD


class CancellationRecord(BaseModel):
    __tablename__ = "cancellation_records"

    id                = Column(Integer, primary_key=True, index=True)
    booking_id        = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True)
    # null when the platform cancelled (expired or voided contract)
    cancelled_by_side = Column(CaseInsensitiveEnum(Side, name="side"), nullable=True)
    cancelled_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason            = Column(CaseInsensitiveEnum(CancellationReason, name="cancellationreason"), nullable=False)
    days_before_event = Column(Integer, nullable=False)
    policy_tier       = Column(String(64), nullable=False)
    organizer_refund_pct    = Column(Integer, nullable=False)
    artist_compensation_pct = Column(Integer, nullable=False)
    platform_retain_pct     = Column(Integer, nullable=False)
    artist_penalty_pct      = Column(Percentage, nullable=False)
    currency          = Column(String(3), nullable=False)
    total_paid        = Column(Money, nullable=False)
    refund_amount     = Column(Money, nullable=False)
    compensation_amount = Column(Money, nullable=False)
    platform_amount   = Column(Money, nullable=False)
    artist_penalty_amount = Column(Money, nullable=False)
    # trust deltas applied, keyed by user id
    trust_deltas      = Column(JSON, nullable=True)
    note              = Column(Text, nullable=True)

    booking = relationship("Booking", back_populates="cancellation")
