# backend/gigflow/models/booking.py

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import backref, relationship

from .base import BaseModel
from .opportunity import SlotCategory
from .party import Side
from .types import CaseInsensitiveEnum, Money, Percentage


class BookingStatus(str, enum.Enum):
    PENDING_CONTRACT = "pending_contract"
    CONTRACT_SENT = "contract_sent"
    AWAITING_DEPOSIT = "awaiting_deposit"
    DEPOSIT_PAID = "deposit_paid"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.DISPUTED)


class Booking(BaseModel):
    __tablename__ = "bookings"

    id             = Column(Integer, primary_key=True, index=True)
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"), nullable=False)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, unique=True)
    artist_id      = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    organizer_id   = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    venue_id       = Column(Integer, ForeignKey("users.id"), nullable=True)
    agreed_fee     = Column(Money, nullable=False)
    currency       = Column(String(3), nullable=False)
    slot           = Column(CaseInsensitiveEnum(SlotCategory, name="slotcategory"), nullable=False)
    event_date     = Column(Date, nullable=False, index=True)
    event_start_at = Column(DateTime, nullable=False, index=True)
    event_end_at   = Column(DateTime, nullable=False)
    # set once, when the contract is fully executed
    commission_percentage = Column(Percentage, nullable=True)
    checklist_complete    = Column(Boolean, nullable=False, default=False)
    status         = Column(
        CaseInsensitiveEnum(BookingStatus, name="bookingstatus"),
        nullable=False,
        default=BookingStatus.PENDING_CONTRACT,
        index=True,
    )
    confirmed_at   = Column(DateTime, nullable=True)
    started_at     = Column(DateTime, nullable=True)
    completed_at   = Column(DateTime, nullable=True)
    cancelled_at   = Column(DateTime, nullable=True)
    completion_deadline = Column(DateTime, nullable=True)
    version        = Column(Integer, nullable=False)

    opportunity  = relationship("Opportunity")
    application  = relationship("Application", backref=backref("booking", uselist=False))
    artist       = relationship("User", foreign_keys=[artist_id])
    organizer    = relationship("User", foreign_keys=[organizer_id])
    contracts    = relationship(
        "Contract",
        back_populates="booking",
        order_by="Contract.id",
        cascade="all, delete-orphan",
    )
    milestones   = relationship(
        "PaymentMilestone",
        back_populates="booking",
        order_by="PaymentMilestone.id",
        cascade="all, delete-orphan",
    )
    confirmations = relationship(
        "CompletionConfirmation",
        back_populates="booking",
        cascade="all, delete-orphan",
    )
    cancellation = relationship("CancellationRecord", back_populates="booking", uselist=False)
    disputes     = relationship("Dispute", back_populates="booking")

    # one live booking per opportunity; a cancelled one frees it for rebooking
    __table_args__ = (
        Index(
            "uq_bookings_live_opportunity",
            "opportunity_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def contract(self):
        """The live (most recent) contract, if any."""
        return self.contracts[-1] if self.contracts else None

    def user_for(self, side: Side) -> int:
        return self.artist_id if side is Side.ARTIST else self.organizer_id

    def side_of(self, user_id: int):
        if user_id == self.artist_id:
            return Side.ARTIST
        if user_id == self.organizer_id:
            return Side.ORGANIZER
        return None


class CompletionConfirmation(BaseModel):
    __tablename__ = "completion_confirmations"
    __table_args__ = (
        UniqueConstraint("booking_id", "side", name="uq_completion_booking_side"),
    )

    id         = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    side       = Column(CaseInsensitiveEnum(Side, name="side"), nullable=False)
    user_id    = Column(Integer, ForeignKey("users.id"), nullable=False)
    rating     = Column(Integer, nullable=True)
    note       = Column(Text, nullable=True)

    booking = relationship("Booking", back_populates="confirmations")
