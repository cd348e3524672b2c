from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional
from datetime import datetime
from decimal import Decimal

from ..models.application import ApplicationStatus
from .negotiation import OfferTerms


class ApplicationCreate(BaseModel):
    proposed_fee: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    message: Optional[str] = Field(default=None, max_length=2000)


class ApplicationRespond(BaseModel):
    action: Literal["accept", "decline", "counter", "shortlist"]
    terms: Optional[OfferTerms] = None


class ApplicationResponse(BaseModel):
    id: int
    artist_id: int
    opportunity_id: int
    proposed_fee: Decimal
    currency: str
    message: Optional[str] = None
    status: ApplicationStatus
    responded_at: Optional[datetime] = None
    created_at: datetime
    negotiation_id: Optional[int] = None
    booking_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_model(cls, application) -> "ApplicationResponse":
        out = cls.model_validate(application)
        return out.model_copy(
            update={
                "negotiation_id": application.negotiation.id if application.negotiation else None,
                "booking_id": application.booking.id if application.booking else None,
            }
        )
