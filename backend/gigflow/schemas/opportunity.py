from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import date, datetime, time
from decimal import Decimal

from ..models.opportunity import OpportunityStatus, SlotCategory


class OpportunityCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    venue_id: Optional[int] = None
    event_date: date
    start_time: time
    end_time: time
    slot: SlotCategory
    budget_min: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    budget_max: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    genres: List[str] = []
    application_deadline: datetime

    @field_validator("genres")
    def normalize_genres(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for genre in v:
            g = genre.strip().lower()
            if g and g not in seen:
                seen.append(g)
        return seen


class OpportunityResponse(BaseModel):
    id: int
    owner_id: int
    venue_id: Optional[int] = None
    title: str
    event_date: date
    start_time: time
    end_time: time
    slot: SlotCategory
    budget_min: Decimal
    budget_max: Decimal
    currency: str
    genres: List[str]
    application_deadline: datetime
    status: OpportunityStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
