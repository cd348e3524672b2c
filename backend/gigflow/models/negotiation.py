# backend/gigflow/models/negotiation.py

import enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel
from .opportunity import SlotCategory
from .party import Side
from .types import CaseInsensitiveEnum, Money


class NegotiationStatus(str, enum.Enum):
    PENDING_ARTIST_RESPONSE = "pending_artist_response"
    PENDING_ORGANIZER_RESPONSE = "pending_organizer_response"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (
            NegotiationStatus.ACCEPTED,
            NegotiationStatus.DECLINED,
            NegotiationStatus.EXPIRED,
        )


class Negotiation(BaseModel):
    """Offer/counter-offer thread attached to exactly one application."""

    __tablename__ = "negotiations"

    id             = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, unique=True)
    status         = Column(
        CaseInsensitiveEnum(NegotiationStatus, name="negotiationstatus"),
        nullable=False,
        index=True,
    )
    round          = Column(Integer, nullable=False, default=1)
    original_fee   = Column(Money, nullable=False)
    current_fee    = Column(Money, nullable=False)
    current_slot   = Column(CaseInsensitiveEnum(SlotCategory, name="slotcategory"), nullable=False)
    event_date     = Column(Date, nullable=False)
    currency       = Column(String(3), nullable=False)
    last_offer_by  = Column(CaseInsensitiveEnum(Side, name="side"), nullable=False)
    response_deadline = Column(DateTime, nullable=False, index=True)
    closed_at      = Column(DateTime, nullable=True)
    version        = Column(Integer, nullable=False)

    application = relationship("Application", back_populates="negotiation")
    offers      = relationship(
        "NegotiationOffer",
        back_populates="negotiation",
        order_by="NegotiationOffer.round",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def awaiting(self) -> Side:
        """The side whose turn it is."""
        return self.last_offer_by.other


class NegotiationOffer(BaseModel):
    """One entry in the offer history; never updated after insert."""

    __tablename__ = "negotiation_offers"

    id             = Column(Integer, primary_key=True, index=True)
    negotiation_id = Column(Integer, ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False, index=True)
    round          = Column(Integer, nullable=False)
    offered_by     = Column(CaseInsensitiveEnum(Side, name="side"), nullable=False)
    fee            = Column(Money, nullable=False)
    slot           = Column(CaseInsensitiveEnum(SlotCategory, name="slotcategory"), nullable=False)
    message        = Column(Text, nullable=True)

    negotiation = relationship("Negotiation", back_populates="offers")
