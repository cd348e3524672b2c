# backend/gigflow/models/user.py

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from .base import BaseModel
from .party import Party
from .types import CaseInsensitiveEnum


class User(BaseModel):
    """Local mirror of an identity-service user.

    Only the stable id, the party kind and the verified flag are read by the
    booking flow; everything else about the person lives in the identity
    service.
    """

    __tablename__ = "users"

    id           = Column(Integer, primary_key=True, index=True, autoincrement=False)
    display_name = Column(String, nullable=False)
    party        = Column(CaseInsensitiveEnum(Party, name="party"), nullable=False, index=True)
    is_verified  = Column(Boolean, default=False, nullable=False)
    completed_bookings_count = Column(Integer, default=0, nullable=False)

    trust_score = relationship(
        "TrustScore",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
