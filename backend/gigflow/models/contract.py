# backend/gigflow/models/contract.py

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship, validates

from .base import BaseModel, utcnow
from .party import Side
from .types import CaseInsensitiveEnum


class ContractStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_ARTIST = "pending_artist"
    PENDING_ORGANIZER = "pending_organizer"
    FULLY_EXECUTED = "fully_executed"
    EXPIRED = "expired"
    VOIDED = "voided"


# Contract states in which a signature is still outstanding.
AWAITING_SIGNATURE_STATUSES = frozenset(
    {ContractStatus.DRAFT, ContractStatus.PENDING_ARTIST, ContractStatus.PENDING_ORGANIZER}
)


class SignatureMethod(str, enum.Enum):
    TYPED = "typed"
    DRAWN = "drawn"
    UPLOADED = "uploaded"


class Contract(BaseModel):
    __tablename__ = "contracts"

    id           = Column(Integer, primary_key=True, index=True)
    booking_id   = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    status       = Column(
        CaseInsensitiveEnum(ContractStatus, name="contractstatus"),
        nullable=False,
        default=ContractStatus.DRAFT,
        index=True,
    )
    terms        = Column(JSON, nullable=False)
    document_url = Column(String, nullable=True)
    signing_deadline    = Column(DateTime, nullable=False, index=True)
    artist_signed_at    = Column(DateTime, nullable=True)
    organizer_signed_at = Column(DateTime, nullable=True)
    executed_at  = Column(DateTime, nullable=True)
    voided_at    = Column(DateTime, nullable=True)
    void_reason  = Column(Text, nullable=True)
    version      = Column(Integer, nullable=False)

    booking    = relationship("Booking", back_populates="contracts")
    signatures = relationship(
        "ContractSignature",
        back_populates="contract",
        order_by="ContractSignature.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @validates("terms")
    def _freeze_terms(self, key, value):
        if self.terms is not None and value != self.terms:
            raise ValueError("contract terms are immutable once generated")
        return value

    @property
    def awaiting(self):
        if self.status is ContractStatus.PENDING_ARTIST:
            return Side.ARTIST
        if self.status is ContractStatus.PENDING_ORGANIZER:
            return Side.ORGANIZER
        return None


class ContractSignature(BaseModel):
    __tablename__ = "contract_signatures"

    id          = Column(Integer, primary_key=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)
    side        = Column(CaseInsensitiveEnum(Side, name="side"), nullable=False)
    user_id     = Column(Integer, ForeignKey("users.id"), nullable=False)
    method      = Column(CaseInsensitiveEnum(SignatureMethod, name="signaturemethod"), nullable=False)
    signature_data = Column(Text, nullable=False)
    ip_address  = Column(String(64), nullable=False)
    user_agent  = Column(String, nullable=False)
    signed_at   = Column(DateTime, nullable=False, default=utcnow)

    contract = relationship("Contract", back_populates="signatures")
