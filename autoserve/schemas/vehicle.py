"""Vehicle schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class VehicleCreate(BaseModel):
    make: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    year: int | None = Field(None, ge=1900, le=2100)
    mileage: int | None = Field(None, ge=0)
    fuel_type: str | None = Field(None, max_length=30)


class VehicleRead(BaseModel):
    id: UUID
    make: str
    model: str
    year: int | None
    mileage: int | None
    fuel_type: str | None
    is_primary: bool
    display_name: str
    created_at: datetime
