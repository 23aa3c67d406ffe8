"""Allowance ledger models: balances, purchases, audit entries, subscriptions."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoserve.db.base import Base
from autoserve.db.enums import (
    AllowanceKind,
    BillingPeriod,
    ConsumptionSource,
    LedgerEntryType,
    PurchaseStatus,
    SubscriptionStatus,
)
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow

if TYPE_CHECKING:
    from autoserve.db.models.accounts import User


class AccountAllowance(Base):
    """
    Per-account credit balance for one allowance kind.

    `purchased_remaining` mirrors the sum of `units_remaining` across the
    account's active purchases and is maintained in the same transaction
    as every consume, grant and expiry.
    """

    __tablename__ = "account_allowances"
    __table_args__ = (
        UniqueConstraint("account_id", "kind", name="uq_account_allowances_account_kind"),
        enum_check("kind", AllowanceKind, "ck_account_allowances_kind"),
        CheckConstraint("complimentary_remaining >= 0", name="ck_account_allowances_complimentary"),
        CheckConstraint("purchased_remaining >= 0", name="ck_account_allowances_purchased"),
        CheckConstraint("total_consumed >= 0", name="ck_account_allowances_consumed"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    complimentary_remaining: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purchased_remaining: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_consumed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    account: Mapped["User"] = relationship(back_populates="allowances")


class AllowancePackage(Base):
    """Purchasable block of credits (e.g. "Starter - 10 leads")."""

    __tablename__ = "allowance_packages"
    __table_args__ = (
        enum_check("kind", AllowanceKind, "ck_allowance_packages_kind"),
        CheckConstraint("units > 0", name="ck_allowance_packages_units"),
        Index("idx_allowance_packages_kind", "kind", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GHS", nullable=False)
    validity_days: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = never expires
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)


class AllowancePurchase(Base):
    """
    A purchased block of credits.

    `purchase_reference` is the idempotency key for payment callbacks.
    Records are never deleted; they move to exhausted or expired.
    """

    __tablename__ = "allowance_purchases"
    __table_args__ = (
        UniqueConstraint("purchase_reference", name="uq_allowance_purchases_reference"),
        enum_check("kind", AllowanceKind, "ck_allowance_purchases_kind"),
        enum_check("status", PurchaseStatus, "ck_allowance_purchases_status"),
        CheckConstraint("units_remaining >= 0", name="ck_allowance_purchases_remaining_min"),
        CheckConstraint(
            "units_remaining <= units_purchased", name="ck_allowance_purchases_remaining_max"
        ),
        Index("idx_allowance_purchases_fifo", "account_id", "kind", "status", "created_at"),
        Index("idx_allowance_purchases_expiry", "status", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    package_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("allowance_packages.id", ondelete="SET NULL"), nullable=True
    )
    purchase_reference: Mapped[str] = mapped_column(String(100), nullable=False)

    units_purchased: Mapped[int] = mapped_column(Integer, nullable=False)
    units_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PurchaseStatus.ACTIVE.value, nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GHS", nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    package: Mapped["AllowancePackage | None"] = relationship()


class AllowanceLedgerEntry(Base):
    """Append-only audit trail of every grant, consumption, expiry and refund."""

    __tablename__ = "allowance_ledger_entries"
    __table_args__ = (
        enum_check("kind", AllowanceKind, "ck_allowance_ledger_kind"),
        enum_check("entry_type", LedgerEntryType, "ck_allowance_ledger_entry_type"),
        enum_check("source", ConsumptionSource, "ck_allowance_ledger_source"),
        Index("idx_allowance_ledger_account", "account_id", "kind", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    delta_units: Mapped[int] = mapped_column(Integer, nullable=False)  # +grant/refund, -consume/expire
    purchase_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("allowance_purchases.id", ondelete="SET NULL"), nullable=True
    )
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"
    __table_args__ = (
        enum_check("billing_period", BillingPeriod, "ck_subscription_plans_billing_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GHS", nullable=False)
    billing_period: Mapped[str] = mapped_column(
        String(20), default=BillingPeriod.MONTHLY.value, nullable=False
    )
    leads_per_period: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    priority_listing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)

    @property
    def is_unlimited(self) -> bool:
        return self.leads_per_period is None


class ProviderSubscription(Base):
    """
    Provider's subscription to a plan.

    Periodic lead entitlement is tracked with `period_key` (YYYY-MM) and
    `period_units_used`; the counter resets when the key rolls over.
    """

    __tablename__ = "provider_subscriptions"
    __table_args__ = (
        enum_check("status", SubscriptionStatus, "ck_provider_subscriptions_status"),
        CheckConstraint("period_units_used >= 0", name="ck_provider_subscriptions_used"),
        Index("idx_provider_subscriptions_active", "provider_id", "status", "ends_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscription_plans.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=SubscriptionStatus.PENDING.value, nullable=False
    )
    starts_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    period_key: Mapped[str | None] = mapped_column(String(7), nullable=True)
    period_units_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)

    plan: Mapped["SubscriptionPlan"] = relationship()
