# backend/gigflow/models/application.py

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel
from .types import CaseInsensitiveEnum, Money


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    SHORTLISTED = "shortlisted"
    COUNTER_OFFERED = "counter_offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


# States that still hold one of the artist's pending slots.
OPEN_APPLICATION_STATUSES = frozenset(
    {
        ApplicationStatus.PENDING,
        ApplicationStatus.VIEWED,
        ApplicationStatus.SHORTLISTED,
        ApplicationStatus.COUNTER_OFFERED,
    }
)

# States from which the organizer side may still respond directly.
RESPONDABLE_APPLICATION_STATUSES = frozenset(
    {ApplicationStatus.PENDING, ApplicationStatus.VIEWED, ApplicationStatus.SHORTLISTED}
)


class Application(BaseModel):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("artist_id", "opportunity_id", name="uq_application_artist_opportunity"),
    )

    id             = Column(Integer, primary_key=True, index=True)
    artist_id      = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"), nullable=False, index=True)
    proposed_fee   = Column(Money, nullable=False)
    currency       = Column(String(3), nullable=False)
    message        = Column(Text, nullable=True)
    status         = Column(
        CaseInsensitiveEnum(ApplicationStatus, name="applicationstatus"),
        nullable=False,
        default=ApplicationStatus.PENDING,
        index=True,
    )
    responded_at   = Column(DateTime, nullable=True)
    version        = Column(Integer, nullable=False)

    artist      = relationship("User")
    opportunity = relationship("Opportunity", back_populates="applications")
    negotiation = relationship(
        "Negotiation",
        back_populates="application",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def holds_pending_slot(self) -> bool:
        return self.status in OPEN_APPLICATION_STATUSES


class ArtistApplicationQuota(BaseModel):
    """Per-artist counter of applications that hold a pending slot."""

    __tablename__ = "artist_application_quotas"

    artist_id     = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    pending_count = Column(Integer, nullable=False, default=0)
