"""Provider subscriptions to lead plans."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from autoserve.core.outcomes import Outcome, not_found
from autoserve.core.structured_logging import build_log_context
from autoserve.db.enums import BILLING_PERIOD_DAYS, BillingPeriod, SubscriptionStatus
from autoserve.db.models import ProviderProfile, ProviderSubscription, SubscriptionPlan
from autoserve.db.types import utcnow
from autoserve.services.allowance_service import period_key_for

logger = logging.getLogger(__name__)


def _set_priority_listing(db: Session, provider_id: UUID, enabled: bool) -> None:
    db.query(ProviderProfile).filter(ProviderProfile.user_id == provider_id).update(
        {ProviderProfile.is_priority_listed: enabled},
        synchronize_session=False,
    )


def get_plan(db: Session, plan_id: UUID) -> SubscriptionPlan | None:
    return (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.id == plan_id, SubscriptionPlan.is_active.is_(True))
        .first()
    )


def list_plans(db: Session) -> list[SubscriptionPlan]:
    return (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )


def create_pending_subscription(
    db: Session, provider_id: UUID, plan: SubscriptionPlan
) -> ProviderSubscription:
    """Create a subscription awaiting payment. Does not commit."""
    subscription = ProviderSubscription(
        provider_id=provider_id,
        plan_id=plan.id,
        status=SubscriptionStatus.PENDING.value,
    )
    db.add(subscription)
    db.flush()
    return subscription


def get_active_subscription(
    db: Session, provider_id: UUID, now: datetime | None = None
) -> ProviderSubscription | None:
    now = now or utcnow()
    return (
        db.query(ProviderSubscription)
        .filter(
            ProviderSubscription.provider_id == provider_id,
            ProviderSubscription.status == SubscriptionStatus.ACTIVE.value,
            or_(ProviderSubscription.ends_at.is_(None), ProviderSubscription.ends_at > now),
        )
        .order_by(ProviderSubscription.created_at.desc())
        .first()
    )


def activate_subscription(
    db: Session, subscription_id: UUID, now: datetime | None = None
) -> ProviderSubscription:
    """
    Start a paid subscription's first period.

    Any other active subscription of the provider is cancelled. Plans with
    priority listing mark the provider priority-listed. Idempotent. Does
    not commit.
    """
    now = now or utcnow()
    subscription = db.get(ProviderSubscription, subscription_id)
    if subscription is None:
        raise ValueError(f"Subscription {subscription_id} not found")
    if subscription.status == SubscriptionStatus.ACTIVE.value:
        return subscription

    plan = subscription.plan
    days = BILLING_PERIOD_DAYS[BillingPeriod(plan.billing_period)]

    db.query(ProviderSubscription).filter(
        ProviderSubscription.provider_id == subscription.provider_id,
        ProviderSubscription.status == SubscriptionStatus.ACTIVE.value,
        ProviderSubscription.id != subscription.id,
    ).update(
        {
            ProviderSubscription.status: SubscriptionStatus.CANCELLED.value,
            ProviderSubscription.cancelled_at: now,
        },
        synchronize_session=False,
    )

    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.starts_at = now
    subscription.ends_at = now + timedelta(days=days)
    subscription.period_key = period_key_for(now)
    subscription.period_units_used = 0
    db.flush()

    _set_priority_listing(db, subscription.provider_id, plan.priority_listing)
    logger.info(
        "Subscription activated",
        extra=build_log_context(provider_id=subscription.provider_id),
    )
    return subscription


def cancel_subscription(
    db: Session, provider_id: UUID, now: datetime | None = None
) -> Outcome[ProviderSubscription]:
    now = now or utcnow()
    subscription = get_active_subscription(db, provider_id, now)
    if subscription is None:
        return not_found("Active subscription", provider_id)

    subscription.status = SubscriptionStatus.CANCELLED.value
    subscription.cancelled_at = now
    _set_priority_listing(db, provider_id, False)
    db.commit()
    db.refresh(subscription)
    return Outcome.success(subscription)


def expire_subscriptions(db: Session, now: datetime | None = None) -> int:
    """Expire active subscriptions past their end date. Does not commit."""
    now = now or utcnow()
    due = (
        db.query(ProviderSubscription)
        .filter(
            ProviderSubscription.status == SubscriptionStatus.ACTIVE.value,
            ProviderSubscription.ends_at.isnot(None),
            ProviderSubscription.ends_at <= now,
        )
        .all()
    )
    for subscription in due:
        subscription.status = SubscriptionStatus.EXPIRED.value
        _set_priority_listing(db, subscription.provider_id, False)
    db.flush()
    if due:
        logger.info("Expired %s subscriptions", len(due))
    return len(due)
