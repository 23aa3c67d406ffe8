"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentRead(BaseModel):
    id: UUID
    payment_reference: str
    provider: str
    amount: Decimal
    currency: str
    status: str
    target_kind: str
    target_id: UUID
    units: int | None
    completed_at: datetime | None
    created_at: datetime


class PaymentWebhook(BaseModel):
    """Settlement callback from the payment processor."""
    payment_reference: str = Field(..., min_length=1, max_length=40)
    status: Literal["success", "failed"]
    provider_reference: str | None = Field(None, max_length=100)
    failure_reason: str | None = Field(None, max_length=255)
