"""Packages router - credit packages, subscription plans and checkout."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from autoserve.core.deps import failure_to_http, get_current_user, get_db, require_role
from autoserve.db.enums import AllowanceKind, UserRole
from autoserve.schemas.package import AllowancePackageRead, SubscriptionPlanRead
from autoserve.schemas.payment import PaymentRead
from autoserve.services import package_service, subscription_service

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def _package_to_read(package) -> AllowancePackageRead:
    return AllowancePackageRead(
        id=package.id,
        kind=package.kind,
        name=package.name,
        slug=package.slug,
        description=package.description,
        units=package.units,
        price=package.price,
        currency=package.currency,
        validity_days=package.validity_days,
    )


def _plan_to_read(plan) -> SubscriptionPlanRead:
    return SubscriptionPlanRead(
        id=plan.id,
        name=plan.name,
        slug=plan.slug,
        description=plan.description,
        price=plan.price,
        currency=plan.currency,
        billing_period=plan.billing_period,
        leads_per_period=plan.leads_per_period,
        priority_listing=plan.priority_listing,
    )


def payment_to_read(payment) -> PaymentRead:
    """Convert Payment model to read schema."""
    return PaymentRead(
        id=payment.id,
        payment_reference=payment.payment_reference,
        provider=payment.provider,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        target_kind=payment.target_kind,
        target_id=payment.target_id,
        units=payment.units,
        completed_at=payment.completed_at,
        created_at=payment.created_at,
    )


# =============================================================================
# Catalogue
# =============================================================================

@router.get("", response_model=list[AllowancePackageRead])
def list_packages(
    kind: AllowanceKind = Query(...),
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active credit packages of one kind, in display order."""
    return [_package_to_read(p) for p in package_service.list_packages(db, kind)]


@router.get("/plans", response_model=list[SubscriptionPlanRead])
def list_plans(
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active provider subscription plans."""
    return [_plan_to_read(p) for p in subscription_service.list_plans(db)]


# =============================================================================
# Checkout
# =============================================================================

@router.post("/{package_id}/purchase", response_model=PaymentRead, status_code=201)
def purchase_package(
    package_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start a package purchase.

    Returns the pending payment; credits are granted when the payment
    processor confirms it through the webhook.
    """
    outcome = package_service.purchase_package(db, user, package_id)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return payment_to_read(outcome.value)


@router.post("/plans/{plan_id}/subscribe", response_model=PaymentRead, status_code=201)
def subscribe_to_plan(
    plan_id: UUID,
    user=Depends(require_role(UserRole.PROVIDER.value)),
    db: Session = Depends(get_db),
):
    """Start a subscription; it activates once the payment settles."""
    outcome = package_service.subscribe_to_plan(db, user, plan_id)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return payment_to_read(outcome.value)


@router.post("/subscription/cancel", status_code=204)
def cancel_subscription(
    user=Depends(require_role(UserRole.PROVIDER.value)),
    db: Session = Depends(get_db),
):
    """Cancel the provider's active subscription."""
    outcome = subscription_service.cancel_subscription(db, user.id)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return None
