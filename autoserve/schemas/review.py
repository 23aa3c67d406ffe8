"""Review schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)
    lead_id: UUID | None = None
    appointment_id: UUID | None = None

    @model_validator(mode="after")
    def _exactly_one_subject(self):
        if (self.lead_id is None) == (self.appointment_id is None):
            raise ValueError("Provide exactly one of lead_id or appointment_id")
        return self


class ReviewRead(BaseModel):
    id: UUID
    provider_id: UUID
    lead_id: UUID | None
    appointment_id: UUID | None
    rating: int
    comment: str | None
    created_at: datetime
