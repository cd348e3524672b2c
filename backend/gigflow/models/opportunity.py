# backend/gigflow/models/opportunity.py

import enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, JSON, String, Time
from sqlalchemy.orm import relationship

from .base import BaseModel
from .types import CaseInsensitiveEnum, Money


class OpportunityStatus(str, enum.Enum):
    ACTIVE = "active"
    FILLED = "filled"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class SlotCategory(str, enum.Enum):
    """Position of a set within the event, in running order."""

    OPENING = "opening"
    SUPPORT = "support"
    HEADLINE = "headline"
    CLOSING = "closing"

    @property
    def rank(self) -> int:
        return list(SlotCategory).index(self)

    def is_adjacent_to(self, other: "SlotCategory") -> bool:
        return abs(self.rank - other.rank) == 1


class Opportunity(BaseModel):
    __tablename__ = "opportunities"

    id         = Column(Integer, primary_key=True, index=True)
    owner_id   = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    venue_id   = Column(Integer, ForeignKey("users.id"), nullable=True)
    title      = Column(String, nullable=False)
    event_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time   = Column(Time, nullable=False)
    slot       = Column(CaseInsensitiveEnum(SlotCategory, name="slotcategory"), nullable=False)
    budget_min = Column(Money, nullable=False)
    budget_max = Column(Money, nullable=False)
    currency   = Column(String(3), nullable=False)
    genres     = Column(JSON, nullable=False, default=list)
    application_deadline = Column(DateTime, nullable=False)
    status     = Column(
        CaseInsensitiveEnum(OpportunityStatus, name="opportunitystatus"),
        nullable=False,
        default=OpportunityStatus.ACTIVE,
        index=True,
    )

    owner        = relationship("User", foreign_keys=[owner_id])
    venue        = relationship("User", foreign_keys=[venue_id])
    applications = relationship("Application", back_populates="opportunity", order_by="Application.id")
