"""Lead schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class LeadRead(BaseModel):
    id: UUID
    diagnosis_id: UUID
    provider_id: UUID
    status: str
    is_free_lead: bool
    is_limited_preview: bool
    viewed_at: datetime | None
    contacted_at: datetime | None
    converted_at: datetime | None
    closed_at: datetime | None
    close_reason: str | None
    created_at: datetime
    # Diagnosis summary (withheld for limited previews)
    symptoms: str | None = None
    urgency: str | None = None
    diagnosis_result: dict | None = None


class LeadListResponse(BaseModel):
    items: list[LeadRead]
    total: int
    page: int
    per_page: int
    pages: int


class LeadClose(BaseModel):
    reason: str | None = Field(None, max_length=255)


class LeadStatsRead(BaseModel):
    total: int
    by_status: dict[str, int]
    this_month: int
    conversion_rate: float
