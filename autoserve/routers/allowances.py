"""Allowances router - credit balances and purchased credit blocks."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from autoserve.core.deps import get_current_user, get_db
from autoserve.db.enums import AllowanceKind, PurchaseStatus
from autoserve.schemas.allowance import AllowanceBalanceRead, AllowancePurchaseRead
from autoserve.services import allowance_service

router = APIRouter()


def _balance_to_read(balance) -> AllowanceBalanceRead:
    return AllowanceBalanceRead(
        kind=balance.kind.value,
        complimentary_remaining=balance.complimentary_remaining,
        purchased_remaining=balance.purchased_remaining,
        total_consumed=balance.total_consumed,
        subscription_unlimited=balance.subscription_unlimited,
        subscription_remaining=balance.subscription_remaining,
        has_remaining=balance.has_remaining,
    )


def _purchase_to_read(purchase) -> AllowancePurchaseRead:
    return AllowancePurchaseRead(
        id=purchase.id,
        kind=purchase.kind,
        package_id=purchase.package_id,
        purchase_reference=purchase.purchase_reference,
        units_purchased=purchase.units_purchased,
        units_remaining=purchase.units_remaining,
        status=purchase.status,
        expires_at=purchase.expires_at,
        amount_paid=purchase.amount_paid,
        currency=purchase.currency,
        created_at=purchase.created_at,
    )


@router.get("/{kind}", response_model=AllowanceBalanceRead)
def get_allowance_balance(
    kind: AllowanceKind,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current balance of one credit kind for the calling account."""
    balance = allowance_service.get_balance(db, user.id, kind)
    return _balance_to_read(balance)


@router.get("/{kind}/purchases", response_model=list[AllowancePurchaseRead])
def list_allowance_purchases(
    kind: AllowanceKind,
    status: PurchaseStatus | None = Query(None),
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Purchased credit blocks, newest first."""
    purchases = allowance_service.list_purchases(db, user.id, kind, status=status)
    return [_purchase_to_read(p) for p in purchases]
