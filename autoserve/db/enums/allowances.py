"""Allowance ledger enums."""

from enum import Enum


class AllowanceKind(str, Enum):
    """What a credit entitles the holder to do."""

    DIAGNOSIS = "diagnosis"  # requester: one diagnostic request
    LEAD = "lead"  # provider: one sales lead


class PurchaseStatus(str, Enum):
    """
    Purchased credit block status.

    Flow: active → exhausted (units reach 0)
             ↘ expired (expires_at passed)
    """

    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"


class ConsumptionSource(str, Enum):
    """Where a consumed unit was drawn from."""

    COMPLIMENTARY = "complimentary"
    PURCHASE = "purchase"
    SUBSCRIPTION = "subscription"


class LedgerEntryType(str, Enum):
    GRANT = "grant"
    CONSUME = "consume"
    EXPIRE = "expire"
    REFUND = "refund"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


BILLING_PERIOD_DAYS = {
    BillingPeriod.MONTHLY: 30,
    BillingPeriod.QUARTERLY: 90,
    BillingPeriod.YEARLY: 365,
}
