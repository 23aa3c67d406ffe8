"""Allowance ledger - metered credits for diagnoses and leads.

Every mutation of a balance is a guarded single-statement UPDATE
(``... WHERE remaining > 0``) whose rowcount decides the outcome, so two
concurrent consumers can never both take the last unit. Balances are
mirrored in ``account_allowances`` and every change is appended to
``allowance_ledger_entries``.

Consumption order: complimentary counter -> oldest active purchase
(FIFO by created_at, then id) -> subscription entitlement (lead credits).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from autoserve.core.outcomes import FailureKind, Outcome, not_found
from autoserve.core.structured_logging import build_log_context
from autoserve.db.enums import (
    AllowanceKind,
    ConsumptionSource,
    LedgerEntryType,
    PurchaseStatus,
    SubscriptionStatus,
    UserRole,
)
from autoserve.db.models import (
    AccountAllowance,
    AllowanceLedgerEntry,
    AllowancePurchase,
    ProviderSubscription,
    SubscriptionPlan,
    User,
)
from autoserve.db.types import utcnow
from autoserve.services.policy_service import EngagementPolicy

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class Consumption:
    """Which source a consumed unit came from."""

    account_id: UUID
    kind: AllowanceKind
    source: ConsumptionSource
    purchase_id: UUID | None = None
    subscription_id: UUID | None = None

    @property
    def is_complimentary(self) -> bool:
        return self.source == ConsumptionSource.COMPLIMENTARY


@dataclass(frozen=True)
class AllowanceBalance:
    account_id: UUID
    kind: AllowanceKind
    complimentary_remaining: int
    purchased_remaining: int
    total_consumed: int
    subscription_unlimited: bool = False
    subscription_remaining: int | None = None

    @property
    def has_remaining(self) -> bool:
        return (
            self.complimentary_remaining > 0
            or self.purchased_remaining > 0
            or self.subscription_unlimited
            or bool(self.subscription_remaining)
        )


def period_key_for(moment: datetime) -> str:
    """Billing period bucket for subscription entitlements (YYYY-MM)."""
    return moment.strftime("%Y-%m")


# =============================================================================
# Internal helpers
# =============================================================================


def _get_allowance(db: Session, account_id: UUID, kind: AllowanceKind) -> AccountAllowance | None:
    return (
        db.query(AccountAllowance)
        .populate_existing()
        .filter(
            AccountAllowance.account_id == account_id,
            AccountAllowance.kind == kind.value,
        )
        .first()
    )


def _ensure_allowance(db: Session, account_id: UUID, kind: AllowanceKind) -> AccountAllowance:
    """Return the allowance row, creating an empty one if missing."""
    allowance = _get_allowance(db, account_id, kind)
    if allowance:
        return allowance

    allowance = AccountAllowance(
        account_id=account_id,
        kind=kind.value,
        complimentary_remaining=0,
        purchased_remaining=0,
        total_consumed=0,
    )
    try:
        with db.begin_nested():
            db.add(allowance)
            db.flush()
    except IntegrityError:
        # Created concurrently
        allowance = _get_allowance(db, account_id, kind)
        if allowance is None:
            raise
    return allowance


def _active_purchases(
    db: Session, account_id: UUID, kind: AllowanceKind, now: datetime
) -> Query:
    return db.query(AllowancePurchase).filter(
        AllowancePurchase.account_id == account_id,
        AllowancePurchase.kind == kind.value,
        AllowancePurchase.status == PurchaseStatus.ACTIVE.value,
        AllowancePurchase.units_remaining > 0,
        or_(AllowancePurchase.expires_at.is_(None), AllowancePurchase.expires_at > now),
    )


def _spendable_purchased(db: Session, account_id: UUID, kind: AllowanceKind, now: datetime) -> int:
    total = (
        _active_purchases(db, account_id, kind, now)
        .with_entities(func.coalesce(func.sum(AllowancePurchase.units_remaining), 0))
        .scalar()
    )
    return int(total or 0)


def _active_subscription(
    db: Session, account_id: UUID, now: datetime
) -> tuple[ProviderSubscription, SubscriptionPlan] | None:
    row = (
        db.query(ProviderSubscription, SubscriptionPlan)
        .populate_existing()
        .join(SubscriptionPlan, SubscriptionPlan.id == ProviderSubscription.plan_id)
        .filter(
            ProviderSubscription.provider_id == account_id,
            ProviderSubscription.status == SubscriptionStatus.ACTIVE.value,
            or_(ProviderSubscription.starts_at.is_(None), ProviderSubscription.starts_at <= now),
            or_(ProviderSubscription.ends_at.is_(None), ProviderSubscription.ends_at > now),
        )
        .order_by(ProviderSubscription.created_at.desc())
        .first()
    )
    if row is None:
        return None
    return row[0], row[1]


def _subscription_remaining(
    subscription: ProviderSubscription, plan: SubscriptionPlan, now: datetime
) -> int | None:
    """Units left this period; None means unlimited."""
    if plan.leads_per_period is None:
        return None
    used = subscription.period_units_used if subscription.period_key == period_key_for(now) else 0
    return max(plan.leads_per_period - used, 0)


def _record_entry(
    db: Session,
    *,
    account_id: UUID,
    kind: AllowanceKind,
    entry_type: LedgerEntryType,
    source: ConsumptionSource,
    delta_units: int,
    purchase_id: UUID | None = None,
    reference_type: str | None = None,
    reference_id: UUID | None = None,
) -> AllowanceLedgerEntry:
    entry = AllowanceLedgerEntry(
        account_id=account_id,
        kind=kind.value,
        entry_type=entry_type.value,
        source=source.value,
        delta_units=delta_units,
        purchase_id=purchase_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(entry)
    db.flush()  # Don't commit - let caller control transaction
    return entry


def _take_complimentary(db: Session, account_id: UUID, kind: AllowanceKind) -> bool:
    updated = (
        db.query(AccountAllowance)
        .filter(
            AccountAllowance.account_id == account_id,
            AccountAllowance.kind == kind.value,
            AccountAllowance.complimentary_remaining > 0,
        )
        .update(
            {
                AccountAllowance.complimentary_remaining: AccountAllowance.complimentary_remaining - 1,
                AccountAllowance.total_consumed: AccountAllowance.total_consumed + 1,
                AccountAllowance.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def _take_from_purchase(
    db: Session, account_id: UUID, kind: AllowanceKind, now: datetime
) -> UUID | None:
    """Decrement the oldest usable purchase. Returns its id, or None."""
    candidate_ids = [
        row.id
        for row in _active_purchases(db, account_id, kind, now)
        .with_entities(AllowancePurchase.id)
        .order_by(AllowancePurchase.created_at.asc(), AllowancePurchase.id.asc())
        .all()
    ]
    for purchase_id in candidate_ids:
        updated = (
            db.query(AllowancePurchase)
            .filter(
                AllowancePurchase.id == purchase_id,
                AllowancePurchase.status == PurchaseStatus.ACTIVE.value,
                AllowancePurchase.units_remaining > 0,
                or_(AllowancePurchase.expires_at.is_(None), AllowancePurchase.expires_at > now),
            )
            .update(
                {
                    AllowancePurchase.units_remaining: AllowancePurchase.units_remaining - 1,
                    # SET expressions see pre-update values
                    AllowancePurchase.status: case(
                        (AllowancePurchase.units_remaining == 1, PurchaseStatus.EXHAUSTED.value),
                        else_=PurchaseStatus.ACTIVE.value,
                    ),
                    AllowancePurchase.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            continue  # Lost the race for this purchase; try the next one

        db.query(AccountAllowance).filter(
            AccountAllowance.account_id == account_id,
            AccountAllowance.kind == kind.value,
            AccountAllowance.purchased_remaining > 0,
        ).update(
            {
                AccountAllowance.purchased_remaining: AccountAllowance.purchased_remaining - 1,
                AccountAllowance.total_consumed: AccountAllowance.total_consumed + 1,
                AccountAllowance.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
        return purchase_id
    return None


def _take_from_subscription(db: Session, account_id: UUID, now: datetime) -> UUID | None:
    active = _active_subscription(db, account_id, now)
    if active is None:
        return None
    subscription, plan = active
    key = period_key_for(now)

    criteria = [
        ProviderSubscription.id == subscription.id,
        ProviderSubscription.status == SubscriptionStatus.ACTIVE.value,
    ]
    if plan.leads_per_period is not None:
        criteria.append(
            or_(
                ProviderSubscription.period_key.is_(None),
                ProviderSubscription.period_key != key,
                ProviderSubscription.period_units_used < plan.leads_per_period,
            )
        )

    updated = (
        db.query(ProviderSubscription)
        .filter(*criteria)
        .update(
            {
                ProviderSubscription.period_units_used: case(
                    (ProviderSubscription.period_key == key, ProviderSubscription.period_units_used + 1),
                    else_=1,
                ),
                ProviderSubscription.period_key: key,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        return None

    _ensure_allowance(db, account_id, AllowanceKind.LEAD)
    db.query(AccountAllowance).filter(
        AccountAllowance.account_id == account_id,
        AccountAllowance.kind == AllowanceKind.LEAD.value,
    ).update(
        {
            AccountAllowance.total_consumed: AccountAllowance.total_consumed + 1,
            AccountAllowance.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    return subscription.id


# =============================================================================
# Queries
# =============================================================================


def has_remaining(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    now: datetime | None = None,
) -> bool:
    """True if at least one unit could be consumed right now."""
    return get_balance(db, account_id, kind, now=now).has_remaining


def get_balance(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    now: datetime | None = None,
) -> AllowanceBalance:
    """
    Spendable balance right now.

    Purchased units are summed over active, unexpired purchases, so a block
    past its expiry stops counting before the sweep marks it expired.
    """
    kind = AllowanceKind(kind)
    now = now or utcnow()
    allowance = _get_allowance(db, account_id, kind)

    subscription_unlimited = False
    subscription_remaining = None
    if kind == AllowanceKind.LEAD:
        active = _active_subscription(db, account_id, now)
        if active is not None:
            subscription_remaining = _subscription_remaining(active[0], active[1], now)
            subscription_unlimited = subscription_remaining is None

    if allowance is None:
        return AllowanceBalance(
            account_id=account_id,
            kind=kind,
            complimentary_remaining=0,
            purchased_remaining=_spendable_purchased(db, account_id, kind, now),
            total_consumed=0,
            subscription_unlimited=subscription_unlimited,
            subscription_remaining=subscription_remaining,
        )
    return AllowanceBalance(
        account_id=account_id,
        kind=kind,
        complimentary_remaining=allowance.complimentary_remaining,
        purchased_remaining=_spendable_purchased(db, account_id, kind, now),
        total_consumed=allowance.total_consumed,
        subscription_unlimited=subscription_unlimited,
        subscription_remaining=subscription_remaining,
    )


def list_purchases(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    status: PurchaseStatus | None = None,
) -> list[AllowancePurchase]:
    kind = AllowanceKind(kind)
    query = db.query(AllowancePurchase).filter(
        AllowancePurchase.account_id == account_id,
        AllowancePurchase.kind == kind.value,
    )
    if status:
        query = query.filter(AllowancePurchase.status == status.value)
    return query.order_by(AllowancePurchase.created_at.desc()).all()


def list_ledger_entries(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    limit: int = 50,
) -> list[AllowanceLedgerEntry]:
    kind = AllowanceKind(kind)
    return (
        db.query(AllowanceLedgerEntry)
        .filter(
            AllowanceLedgerEntry.account_id == account_id,
            AllowanceLedgerEntry.kind == kind.value,
        )
        .order_by(AllowanceLedgerEntry.created_at.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# Mutations
# =============================================================================


def consume(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    reference_type: str | None = None,
    reference_id: UUID | None = None,
    now: datetime | None = None,
) -> Outcome[Consumption]:
    """
    Atomically consume exactly one unit.

    Does not commit. Returns an ``out_of_credit`` failure (and changes
    nothing) when no source has a unit left.
    """
    kind = AllowanceKind(kind)
    now = now or utcnow()

    consumption: Consumption | None = None
    if _take_complimentary(db, account_id, kind):
        consumption = Consumption(account_id, kind, ConsumptionSource.COMPLIMENTARY)
    else:
        purchase_id = _take_from_purchase(db, account_id, kind, now)
        if purchase_id is not None:
            consumption = Consumption(
                account_id, kind, ConsumptionSource.PURCHASE, purchase_id=purchase_id
            )
        elif kind == AllowanceKind.LEAD:
            subscription_id = _take_from_subscription(db, account_id, now)
            if subscription_id is not None:
                consumption = Consumption(
                    account_id,
                    kind,
                    ConsumptionSource.SUBSCRIPTION,
                    subscription_id=subscription_id,
                )

    if consumption is None:
        logger.info(
            "No %s credits remaining",
            kind.value,
            extra=build_log_context(account_id=account_id),
        )
        return Outcome.fail(
            FailureKind.OUT_OF_CREDIT,
            f"No {kind.value} credits remaining",
            account_id=str(account_id),
            allowance_kind=kind.value,
        )

    _record_entry(
        db,
        account_id=account_id,
        kind=kind,
        entry_type=LedgerEntryType.CONSUME,
        source=consumption.source,
        delta_units=-1,
        purchase_id=consumption.purchase_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    return Outcome.success(consumption)


def refund(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    reference_type: str,
    reference_id: UUID,
) -> Outcome[Consumption]:
    """
    Return the unit consumed for ``(reference_type, reference_id)``.

    The unit goes back to the source it was drawn from. A purchase that has
    expired since keeps its status and the unit stays lapsed. Idempotent: a
    second call finds the earlier refund and changes nothing. Does not commit.
    """
    kind = AllowanceKind(kind)
    entries = (
        db.query(AllowanceLedgerEntry)
        .filter(
            AllowanceLedgerEntry.account_id == account_id,
            AllowanceLedgerEntry.kind == kind.value,
            AllowanceLedgerEntry.reference_type == reference_type,
            AllowanceLedgerEntry.reference_id == reference_id,
            AllowanceLedgerEntry.entry_type.in_(
                [LedgerEntryType.CONSUME.value, LedgerEntryType.REFUND.value]
            ),
        )
        .all()
    )
    consumed = next((e for e in entries if e.entry_type == LedgerEntryType.CONSUME.value), None)
    if consumed is None:
        return not_found("Consumption", reference_id)

    source = ConsumptionSource(consumed.source)
    consumption = Consumption(account_id, kind, source, purchase_id=consumed.purchase_id)
    if any(e.entry_type == LedgerEntryType.REFUND.value for e in entries):
        return Outcome.success(consumption)

    now = utcnow()
    restored: dict = {AccountAllowance.total_consumed: AccountAllowance.total_consumed - 1}
    if source == ConsumptionSource.COMPLIMENTARY:
        restored[AccountAllowance.complimentary_remaining] = AccountAllowance.complimentary_remaining + 1
    elif source == ConsumptionSource.PURCHASE and consumed.purchase_id is not None:
        reopened = (
            db.query(AllowancePurchase)
            .filter(
                AllowancePurchase.id == consumed.purchase_id,
                AllowancePurchase.status.in_(
                    [PurchaseStatus.ACTIVE.value, PurchaseStatus.EXHAUSTED.value]
                ),
            )
            .update(
                {
                    AllowancePurchase.units_remaining: AllowancePurchase.units_remaining + 1,
                    AllowancePurchase.status: PurchaseStatus.ACTIVE.value,
                    AllowancePurchase.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if reopened == 1:
            restored[AccountAllowance.purchased_remaining] = AccountAllowance.purchased_remaining + 1
    elif source == ConsumptionSource.SUBSCRIPTION:
        db.query(ProviderSubscription).filter(
            ProviderSubscription.provider_id == account_id,
            ProviderSubscription.status == SubscriptionStatus.ACTIVE.value,
            ProviderSubscription.period_key == period_key_for(consumed.created_at),
            ProviderSubscription.period_units_used > 0,
        ).update(
            {ProviderSubscription.period_units_used: ProviderSubscription.period_units_used - 1},
            synchronize_session=False,
        )

    restored[AccountAllowance.updated_at] = now
    db.query(AccountAllowance).filter(
        AccountAllowance.account_id == account_id,
        AccountAllowance.kind == kind.value,
        AccountAllowance.total_consumed > 0,
    ).update(restored, synchronize_session=False)

    _record_entry(
        db,
        account_id=account_id,
        kind=kind,
        entry_type=LedgerEntryType.REFUND,
        source=source,
        delta_units=1,
        purchase_id=consumed.purchase_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    logger.info(
        "Refunded one %s credit",
        kind.value,
        extra=build_log_context(account_id=account_id),
    )
    return Outcome.success(consumption)


def grant(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    units: int,
    purchase_reference: str,
    package_id: UUID | None = None,
    expires_at: datetime | None = None,
    amount_paid: Decimal = Decimal("0"),
    currency: str = "GHS",
) -> Outcome[AllowancePurchase]:
    """
    Record a purchased block of credits.

    Idempotent on ``purchase_reference``: a duplicate call returns the
    existing purchase unchanged.
    """
    kind = AllowanceKind(kind)
    if units <= 0:
        raise ValueError("units must be positive")

    existing = (
        db.query(AllowancePurchase)
        .filter(AllowancePurchase.purchase_reference == purchase_reference)
        .first()
    )
    if existing:
        return Outcome.success(existing)

    _ensure_allowance(db, account_id, kind)

    purchase = AllowancePurchase(
        account_id=account_id,
        kind=kind.value,
        package_id=package_id,
        purchase_reference=purchase_reference,
        units_purchased=units,
        units_remaining=units,
        status=PurchaseStatus.ACTIVE.value,
        expires_at=expires_at,
        amount_paid=amount_paid,
        currency=currency,
    )
    try:
        with db.begin_nested():
            db.add(purchase)
            db.flush()
    except IntegrityError:
        # Duplicate callback racing us on the same reference
        existing = (
            db.query(AllowancePurchase)
            .filter(AllowancePurchase.purchase_reference == purchase_reference)
            .first()
        )
        if existing is None:
            raise
        return Outcome.success(existing)

    db.query(AccountAllowance).filter(
        AccountAllowance.account_id == account_id,
        AccountAllowance.kind == kind.value,
    ).update(
        {
            AccountAllowance.purchased_remaining: AccountAllowance.purchased_remaining + units,
            AccountAllowance.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    _record_entry(
        db,
        account_id=account_id,
        kind=kind,
        entry_type=LedgerEntryType.GRANT,
        source=ConsumptionSource.PURCHASE,
        delta_units=units,
        purchase_id=purchase.id,
        reference_type="purchase",
    )
    logger.info(
        "Granted %s %s credits",
        units,
        kind.value,
        extra=build_log_context(account_id=account_id),
    )
    return Outcome.success(purchase)


def grant_complimentary(
    db: Session,
    account_id: UUID,
    kind: AllowanceKind | str,
    units: int,
) -> AllowanceBalance:
    """Top up the complimentary counter."""
    kind = AllowanceKind(kind)
    if units <= 0:
        raise ValueError("units must be positive")

    _ensure_allowance(db, account_id, kind)
    db.query(AccountAllowance).filter(
        AccountAllowance.account_id == account_id,
        AccountAllowance.kind == kind.value,
    ).update(
        {
            AccountAllowance.complimentary_remaining: AccountAllowance.complimentary_remaining + units,
            AccountAllowance.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    _record_entry(
        db,
        account_id=account_id,
        kind=kind,
        entry_type=LedgerEntryType.GRANT,
        source=ConsumptionSource.COMPLIMENTARY,
        delta_units=units,
    )
    return get_balance(db, account_id, kind)


def provision_account(db: Session, user: User, policy: EngagementPolicy) -> list[AccountAllowance]:
    """
    Create allowance rows for a new account.

    Requesters receive complimentary diagnosis credits and providers
    complimentary lead credits, as configured by the policy. Safe to call
    more than once: existing rows are left alone.
    """
    grants: list[tuple[AllowanceKind, int]] = []
    if user.role == UserRole.REQUESTER.value:
        grants.append((AllowanceKind.DIAGNOSIS, policy.complimentary_diagnoses))
    elif user.role == UserRole.PROVIDER.value:
        grants.append((AllowanceKind.LEAD, policy.complimentary_leads))

    rows = []
    for kind, units in grants:
        allowance = _get_allowance(db, user.id, kind)
        if allowance is None:
            _ensure_allowance(db, user.id, kind)
            if units > 0:
                grant_complimentary(db, user.id, kind, units)
            allowance = _get_allowance(db, user.id, kind)
        rows.append(allowance)
    return rows


def expire_purchases(db: Session, now: datetime | None = None) -> int:
    """
    Expire every active purchase whose expires_at has passed.

    Remaining units are removed from the account's purchased balance.
    Idempotent; a purchase concurrently consumed is re-read and retried.
    Does not commit.
    """
    now = now or utcnow()
    due = (
        db.query(AllowancePurchase.id)
        .filter(
            AllowancePurchase.status == PurchaseStatus.ACTIVE.value,
            AllowancePurchase.expires_at.isnot(None),
            AllowancePurchase.expires_at < now,
        )
        .all()
    )

    expired = 0
    for (purchase_id,) in due:
        for _attempt in range(3):
            purchase = (
                db.query(AllowancePurchase)
                .populate_existing()
                .filter(AllowancePurchase.id == purchase_id)
                .one()
            )
            if purchase.status != PurchaseStatus.ACTIVE.value:
                break
            seen = purchase.units_remaining
            updated = (
                db.query(AllowancePurchase)
                .filter(
                    AllowancePurchase.id == purchase_id,
                    AllowancePurchase.status == PurchaseStatus.ACTIVE.value,
                    AllowancePurchase.units_remaining == seen,
                )
                .update(
                    {
                        AllowancePurchase.status: PurchaseStatus.EXPIRED.value,
                        AllowancePurchase.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                continue

            kind = AllowanceKind(purchase.kind)
            if seen > 0:
                db.query(AccountAllowance).filter(
                    AccountAllowance.account_id == purchase.account_id,
                    AccountAllowance.kind == kind.value,
                    AccountAllowance.purchased_remaining >= seen,
                ).update(
                    {
                        AccountAllowance.purchased_remaining: AccountAllowance.purchased_remaining - seen,
                        AccountAllowance.updated_at: now,
                    },
                    synchronize_session=False,
                )
            _record_entry(
                db,
                account_id=purchase.account_id,
                kind=kind,
                entry_type=LedgerEntryType.EXPIRE,
                source=ConsumptionSource.PURCHASE,
                delta_units=-seen,
                purchase_id=purchase.id,
                reference_type="expiry",
            )
            expired += 1
            break

    if expired:
        logger.info("Expired %s allowance purchases", expired)
    return expired
