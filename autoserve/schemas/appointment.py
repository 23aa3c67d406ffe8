"""Appointment schemas - Pydantic models for the booking API."""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class AppointmentCreate(BaseModel):
    provider_id: UUID
    scheduled_date: date
    scheduled_time: time
    service_type: Literal["diagnostic", "repair", "maintenance", "inspection"]
    offering_ids: list[UUID] = Field(default_factory=list)
    vehicle_id: UUID | None = None
    diagnosis_id: UUID | None = None
    description: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=500)
    location_type: Literal["provider_shop", "requester_location"] = "provider_shop"
    address: str | None = Field(None, max_length=255)


class AppointmentReason(BaseModel):
    reason: str | None = Field(None, max_length=500)


class AppointmentReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AppointmentComplete(BaseModel):
    final_cost: Decimal | None = Field(None, ge=0)


class AppointmentReschedule(BaseModel):
    scheduled_date: date
    scheduled_time: time


class AppointmentLineItemRead(BaseModel):
    id: UUID
    offering_id: UUID | None
    service_name: str
    price: Decimal
    quantity: int
    duration_minutes: int


class AppointmentRead(BaseModel):
    id: UUID
    requester_id: UUID
    provider_id: UUID
    diagnosis_id: UUID | None
    vehicle_id: UUID | None
    scheduled_date: date
    scheduled_time: time
    estimated_duration_minutes: int
    service_type: str
    description: str | None
    location_type: str
    address: str | None
    status: str
    estimated_cost: Decimal
    final_cost: Decimal | None
    currency: str
    confirmed_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    cancelled_by: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    no_show_at: datetime | None
    created_at: datetime
    line_items: list[AppointmentLineItemRead] = Field(default_factory=list)


class AppointmentListResponse(BaseModel):
    items: list[AppointmentRead]
    total: int
    page: int
    per_page: int
    pages: int
