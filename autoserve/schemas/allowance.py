"""Allowance schemas - balances and purchased credit blocks."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class AllowanceBalanceRead(BaseModel):
    kind: str
    complimentary_remaining: int
    purchased_remaining: int
    total_consumed: int
    subscription_unlimited: bool
    subscription_remaining: int | None
    has_remaining: bool


class AllowancePurchaseRead(BaseModel):
    id: UUID
    kind: str
    package_id: UUID | None
    purchase_reference: str
    units_purchased: int
    units_remaining: int
    status: str
    expires_at: datetime | None
    amount_paid: Decimal
    currency: str
    created_at: datetime
