"""Package and subscription plan schemas."""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class AllowancePackageRead(BaseModel):
    id: UUID
    kind: str
    name: str
    slug: str
    description: str | None
    units: int
    price: Decimal
    currency: str
    validity_days: int | None


class SubscriptionPlanRead(BaseModel):
    id: UUID
    name: str
    slug: str
    description: str | None
    price: Decimal
    currency: str
    billing_period: str
    leads_per_period: int | None
    priority_listing: bool
