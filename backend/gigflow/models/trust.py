# backend/gigflow/models/trust.py

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship

from .base import BaseModel, utcnow
from .types import CaseInsensitiveEnum


class TrustTier(str, enum.Enum):
    CRITICAL = "critical"
    HIGH_RISK = "high_risk"
    STANDARD = "standard"
    TRUSTED = "trusted"
    PREMIUM = "premium"


class TrustReason(str, enum.Enum):
    INITIALIZED = "initialized"
    BOOKING_COMPLETED = "booking_completed"
    COMPLETION_MILESTONE = "completion_milestone"
    CANCELLATION = "cancellation"
    INACTIVITY_DECAY = "inactivity_decay"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class TrustScore(BaseModel):
    """Current reputation of one user.

    Rows are only written through ``services.trust_engine``.
    """

    __tablename__ = "trust_scores"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    score   = Column(Integer, nullable=False, default=50)
    tier    = Column(CaseInsensitiveEnum(TrustTier, name="trusttier"), nullable=False)
    last_activity_at     = Column(DateTime, nullable=False, default=utcnow)
    # points already taken by decay during the current inactivity stretch
    decay_points_applied = Column(Integer, nullable=False, default=0)

    user    = relationship("User", back_populates="trust_score")
    history = relationship(
        "TrustScoreEvent",
        back_populates="trust_score",
        order_by="TrustScoreEvent.id",
        cascade="all, delete-orphan",
    )


class TrustScoreEvent(BaseModel):
    """Append-only history entry for a trust score change."""

    __tablename__ = "trust_score_events"

    id              = Column(Integer, primary_key=True, index=True)
    user_id         = Column(Integer, ForeignKey("trust_scores.user_id", ondelete="CASCADE"), nullable=False, index=True)
    delta_requested = Column(Integer, nullable=False)
    delta_applied   = Column(Integer, nullable=False)
    score_before    = Column(Integer, nullable=False)
    score_after     = Column(Integer, nullable=False)
    tier_after      = Column(CaseInsensitiveEnum(TrustTier, name="trusttier"), nullable=False)
    reason_code     = Column(CaseInsensitiveEnum(TrustReason, name="trustreason"), nullable=False)
    booking_id      = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    # opaque caller metadata, never read back by the engine
    details         = Column(JSON, nullable=True)

    trust_score = relationship("TrustScore", back_populates="history")
