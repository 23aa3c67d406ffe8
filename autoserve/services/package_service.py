"""Credit package catalogue and purchase initiation."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from autoserve.core.outcomes import FailureKind, Outcome, not_found
from autoserve.db.enums import AllowanceKind, UserRole
from autoserve.db.models import AllowancePackage, Payment, User
from autoserve.services import payment_service, subscription_service
from autoserve.services.payment_service import (
    DiagnosisPurchaseTarget,
    LeadPurchaseTarget,
    SubscriptionTarget,
)

# Which allowance kind each role may buy
_ROLE_KIND = {
    UserRole.REQUESTER.value: AllowanceKind.DIAGNOSIS,
    UserRole.PROVIDER.value: AllowanceKind.LEAD,
}


def list_packages(db: Session, kind: AllowanceKind | str) -> list[AllowancePackage]:
    kind = AllowanceKind(kind)
    return (
        db.query(AllowancePackage)
        .filter(AllowancePackage.kind == kind.value, AllowancePackage.is_active.is_(True))
        .order_by(AllowancePackage.sort_order.asc(), AllowancePackage.price.asc())
        .all()
    )


def get_package(db: Session, package_id: UUID) -> AllowancePackage | None:
    return (
        db.query(AllowancePackage)
        .filter(AllowancePackage.id == package_id, AllowancePackage.is_active.is_(True))
        .first()
    )


def purchase_package(db: Session, account: User, package_id: UUID) -> Outcome[Payment]:
    """Start buying a package: records a pending payment for it."""
    package = get_package(db, package_id)
    if package is None:
        return not_found("Package", package_id)

    kind = AllowanceKind(package.kind)
    if _ROLE_KIND.get(account.role) != kind:
        return Outcome.fail(
            FailureKind.INVALID_TRANSITION,
            f"{kind.value.capitalize()} packages are not available to this account",
            package_id=str(package_id),
        )

    if kind == AllowanceKind.DIAGNOSIS:
        target = DiagnosisPurchaseTarget(package_id=package.id, units=package.units)
    else:
        target = LeadPurchaseTarget(package_id=package.id, units=package.units)

    payment = payment_service.create_payment(
        db, account.id, target, amount=package.price, currency=package.currency
    )
    db.commit()
    db.refresh(payment)
    return Outcome.success(payment)


def subscribe_to_plan(db: Session, account: User, plan_id: UUID) -> Outcome[Payment]:
    """Start a plan subscription: pending subscription plus its payment."""
    if account.role != UserRole.PROVIDER.value:
        return Outcome.fail(
            FailureKind.INVALID_TRANSITION,
            "Subscriptions are only available to providers",
            plan_id=str(plan_id),
        )
    plan = subscription_service.get_plan(db, plan_id)
    if plan is None:
        return not_found("Plan", plan_id)

    subscription = subscription_service.create_pending_subscription(db, account.id, plan)
    payment = payment_service.create_payment(
        db,
        account.id,
        SubscriptionTarget(subscription_id=subscription.id),
        amount=plan.price,
        currency=plan.currency,
    )
    db.commit()
    db.refresh(payment)
    return Outcome.success(payment)
