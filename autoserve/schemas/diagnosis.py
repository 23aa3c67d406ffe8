"""Diagnosis schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class DiagnosisCreate(BaseModel):
    symptoms: str = Field(..., min_length=3, max_length=5000)
    vehicle_id: UUID | None = None
    region_id: int | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class DiagnosisRead(BaseModel):
    id: UUID
    requester_id: UUID
    vehicle_id: UUID | None
    region_id: int | None
    symptoms: str
    status: str
    is_free: bool
    consumption_source: str
    result: dict[str, Any] | None
    urgency: str | None
    confidence_score: float | None
    error_message: str | None
    completed_at: datetime | None
    created_at: datetime


class DiagnosisSubmissionRead(BaseModel):
    diagnosis: DiagnosisRead
    lead_count: int
    skipped_provider_ids: list[UUID]


class MatchingProvidersRead(BaseModel):
    provider_ids: list[UUID]
