"""Payments for credit packages and subscriptions.

Settlement happens with an external processor; this module records the
pending payment and handles the confirmation callback. A payment's target
is a tagged union decoded from ``(target_kind, target_id, units)``.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Union
from uuid import UUID

from sqlalchemy.orm import Session

from autoserve.core.outcomes import Outcome, invalid_transition, not_found
from autoserve.core.structured_logging import build_log_context
from autoserve.db.enums import AllowanceKind, PaymentStatus, PaymentTargetKind
from autoserve.db.models import AllowancePackage, Payment
from autoserve.db.types import utcnow
from autoserve.services import allowance_service, subscription_service

logger = logging.getLogger(__name__)

PAYMENT_REFERENCE_PREFIX = "PAY-"
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class DiagnosisPurchaseTarget:
    package_id: UUID
    units: int


@dataclass(frozen=True)
class LeadPurchaseTarget:
    package_id: UUID
    units: int


@dataclass(frozen=True)
class SubscriptionTarget:
    subscription_id: UUID


PaymentTarget = Union[DiagnosisPurchaseTarget, LeadPurchaseTarget, SubscriptionTarget]


def generate_payment_reference() -> str:
    return PAYMENT_REFERENCE_PREFIX + "".join(
        secrets.choice(_REFERENCE_ALPHABET) for _ in range(16)
    )


def _encode_target(target: PaymentTarget) -> tuple[PaymentTargetKind, UUID, int | None]:
    if isinstance(target, DiagnosisPurchaseTarget):
        return PaymentTargetKind.DIAGNOSIS_PURCHASE, target.package_id, target.units
    if isinstance(target, LeadPurchaseTarget):
        return PaymentTargetKind.LEAD_PURCHASE, target.package_id, target.units
    if isinstance(target, SubscriptionTarget):
        return PaymentTargetKind.SUBSCRIPTION, target.subscription_id, None
    raise TypeError(f"Unsupported payment target: {target!r}")


def decode_target(payment: Payment) -> PaymentTarget:
    kind = PaymentTargetKind(payment.target_kind)
    if kind == PaymentTargetKind.DIAGNOSIS_PURCHASE:
        return DiagnosisPurchaseTarget(package_id=payment.target_id, units=payment.units or 0)
    if kind == PaymentTargetKind.LEAD_PURCHASE:
        return LeadPurchaseTarget(package_id=payment.target_id, units=payment.units or 0)
    return SubscriptionTarget(subscription_id=payment.target_id)


def create_payment(
    db: Session,
    account_id: UUID,
    target: PaymentTarget,
    amount: Decimal,
    currency: str = "GHS",
    provider: str = "paystack",
) -> Payment:
    """Record a pending payment. Does not commit."""
    target_kind, target_id, units = _encode_target(target)
    payment = Payment(
        payment_reference=generate_payment_reference(),
        account_id=account_id,
        provider=provider,
        amount=amount,
        currency=currency,
        status=PaymentStatus.PENDING.value,
        target_kind=target_kind.value,
        target_id=target_id,
        units=units,
    )
    db.add(payment)
    db.flush()
    return payment


def get_payment_by_reference(db: Session, payment_reference: str) -> Payment | None:
    return db.query(Payment).filter(Payment.payment_reference == payment_reference).first()


def _grant_for_package(
    db: Session, payment: Payment, kind: AllowanceKind, package_id: UUID, units: int, now: datetime
) -> Outcome:
    package = db.get(AllowancePackage, package_id)
    units = units or (package.units if package else 0)
    if not units:
        return not_found("AllowancePackage", package_id)
    expires_at = None
    if package is not None and package.validity_days:
        expires_at = now + timedelta(days=package.validity_days)
    return allowance_service.grant(
        db,
        payment.account_id,
        kind,
        units,
        purchase_reference=payment.payment_reference,
        package_id=package.id if package else None,
        expires_at=expires_at,
        amount_paid=payment.amount,
        currency=payment.currency,
    )


def _fulfil(db: Session, payment: Payment, now: datetime) -> Outcome:
    target = decode_target(payment)
    if isinstance(target, DiagnosisPurchaseTarget):
        return _grant_for_package(db, payment, AllowanceKind.DIAGNOSIS, target.package_id, target.units, now)
    if isinstance(target, LeadPurchaseTarget):
        return _grant_for_package(db, payment, AllowanceKind.LEAD, target.package_id, target.units, now)
    if isinstance(target, SubscriptionTarget):
        return Outcome.success(
            subscription_service.activate_subscription(db, target.subscription_id, now=now)
        )
    raise TypeError(f"Unsupported payment target: {target!r}")


def confirm_payment(
    db: Session,
    payment_reference: str,
    provider_reference: str | None = None,
    now: datetime | None = None,
) -> Outcome[Payment]:
    """
    Settlement callback: mark the payment completed and deliver what it bought.

    Idempotent: repeated or concurrent callbacks for the same reference
    deliver exactly once.
    """
    now = now or utcnow()
    payment = get_payment_by_reference(db, payment_reference)
    if payment is None:
        return not_found("Payment", payment_reference)
    if payment.status == PaymentStatus.COMPLETED.value:
        return Outcome.success(payment)
    if payment.status != PaymentStatus.PENDING.value:
        return invalid_transition("payment", payment.status, "confirm")

    updated = (
        db.query(Payment)
        .filter(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
        .update(
            {
                Payment.status: PaymentStatus.COMPLETED.value,
                Payment.provider_reference: provider_reference,
                Payment.completed_at: now,
                Payment.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.refresh(payment)
    if updated != 1:
        if payment.status == PaymentStatus.COMPLETED.value:
            return Outcome.success(payment)
        return invalid_transition("payment", payment.status, "confirm")

    try:
        fulfilled = _fulfil(db, payment, now)
        if not fulfilled.ok:
            account_id = payment.account_id
            # Leaves the payment pending so a corrected callback can retry.
            db.rollback()
            logger.error(
                "Payment %s could not be fulfilled: %s",
                payment_reference,
                fulfilled.failure.message,
                extra=build_log_context(account_id=account_id),
            )
            return Outcome.from_failure(fulfilled.failure)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Payment fulfilment failed",
            extra=build_log_context(account_id=payment.account_id),
        )
        raise

    logger.info(
        "Payment %s completed", payment.payment_reference,
        extra=build_log_context(account_id=payment.account_id),
    )
    return Outcome.success(payment)


def fail_payment(
    db: Session, payment_reference: str, reason: str | None = None
) -> Outcome[Payment]:
    payment = get_payment_by_reference(db, payment_reference)
    if payment is None:
        return not_found("Payment", payment_reference)
    if payment.status == PaymentStatus.FAILED.value:
        return Outcome.success(payment)

    updated = (
        db.query(Payment)
        .filter(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
        .update(
            {
                Payment.status: PaymentStatus.FAILED.value,
                Payment.failure_reason: reason,
                Payment.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        current = db.query(Payment.status).filter(Payment.id == payment.id).scalar()
        return invalid_transition("payment", current or payment.status, "fail")
    db.commit()
    db.refresh(payment)
    return Outcome.success(payment)
