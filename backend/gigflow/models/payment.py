# backend/gigflow/models/payment.py

import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel
from .types import CENTS, CaseInsensitiveEnum, Money


class MilestoneKind(str, enum.Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"
    COMMISSION = "commission"


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"
    SETTLED = "settled"
    REFUNDED = "refunded"
    WAIVED = "waived"


PAYABLE_MILESTONE_STATUSES = frozenset({MilestoneStatus.PENDING, MilestoneStatus.OVERDUE})


class EscrowStatus(str, enum.Enum):
    NONE = "none"
    HELD = "held"
    RELEASED = "released"
    RETURNED = "returned"


class PaymentRecordKind(str, enum.Enum):
    CHARGE = "charge"
    RELEASE = "release"
    REFUND = "refund"
    COMMISSION = "commission"


class Payee(str, enum.Enum):
    PLATFORM = "platform"
    ARTIST = "artist"
    ORGANIZER = "organizer"


class PaymentMilestone(BaseModel):
    """A scheduled payment for a booking and its escrow buckets.

    ``recorded_amount`` is what the gateway confirmed. From then on the
    money lives in exactly one of ``held_amount``, ``released_amount`` or
    ``returned_amount``; the ledger checks that they always add back up.
    """

    __tablename__ = "payment_milestones"

    id              = Column(Integer, primary_key=True, index=True)
    booking_id      = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    kind            = Column(CaseInsensitiveEnum(MilestoneKind, name="milestonekind"), nullable=False)
    amount          = Column(Money, nullable=False)
    currency        = Column(String(3), nullable=False)
    status          = Column(
        CaseInsensitiveEnum(MilestoneStatus, name="milestonestatus"),
        nullable=False,
        default=MilestoneStatus.PENDING,
        index=True,
    )
    escrow_status   = Column(
        CaseInsensitiveEnum(EscrowStatus, name="escrowstatus"),
        nullable=False,
        default=EscrowStatus.NONE,
    )
    due_at          = Column(DateTime, nullable=True, index=True)
    recorded_amount = Column(Money, nullable=False, default=CENTS * 0)
    held_amount     = Column(Money, nullable=False, default=CENTS * 0)
    released_amount = Column(Money, nullable=False, default=CENTS * 0)
    returned_amount = Column(Money, nullable=False, default=CENTS * 0)
    gateway_intent_id   = Column(String, nullable=True, index=True)
    needs_manual_review = Column(Boolean, nullable=False, default=False)
    paid_at         = Column(DateTime, nullable=True)
    settled_at      = Column(DateTime, nullable=True)
    version         = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="milestones")
    records = relationship(
        "PaymentRecord",
        back_populates="milestone",
        order_by="PaymentRecord.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_escrowed(self) -> bool:
        return self.kind is not MilestoneKind.COMMISSION


class PaymentRecord(BaseModel):
    """Append-only money movement. Refunds carry a negative amount."""

    __tablename__ = "payment_records"

    id           = Column(Integer, primary_key=True, index=True)
    milestone_id = Column(Integer, ForeignKey("payment_milestones.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_id   = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    kind         = Column(CaseInsensitiveEnum(PaymentRecordKind, name="paymentrecordkind"), nullable=False)
    amount       = Column(Money, nullable=False)
    currency     = Column(String(3), nullable=False)
    payee        = Column(CaseInsensitiveEnum(Payee, name="payee"), nullable=False)
    gateway_transaction_id = Column(String, nullable=True)
    reason       = Column(Text, nullable=True)

    milestone = relationship("PaymentMilestone", back_populates="records")


class GatewayTransaction(BaseModel):
    """One row per gateway confirmation ever applied, keyed by its id."""

    __tablename__ = "gateway_transactions"

    id             = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String, nullable=False, unique=True)
    intent_id      = Column(String, nullable=True, index=True)
    milestone_id   = Column(Integer, ForeignKey("payment_milestones.id", ondelete="CASCADE"), nullable=False, index=True)
    amount         = Column(Money, nullable=False)
    currency       = Column(String(3), nullable=False)
    status         = Column(String(32), nullable=False)
