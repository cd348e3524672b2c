import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel
from .types import CaseInsensitiveEnum


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class Dispute(BaseModel):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(CaseInsensitiveEnum(DisputeStatus, name="disputestatus"), nullable=False, default=DisputeStatus.OPEN)
    reason = Column(Text, nullable=True)
    # null when opened by the completion-window sweep
    raised_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    booking = relationship("Booking", back_populates="disputes")
