"""
Tests for package purchases, subscriptions and payment callbacks.

Coverage:
- Purchase initiation per role
- Confirmation grants credits exactly once (repeated and concurrent callbacks)
- Failed payments grant nothing
- Subscription activation, priority listing, cancellation and expiry
"""

import threading
import uuid
from datetime import timedelta

from autoserve.core.outcomes import FailureKind
from autoserve.db.enums import (
    AllowanceKind,
    PaymentStatus,
    PaymentTargetKind,
    PurchaseStatus,
    SubscriptionStatus,
)
from autoserve.db.models import AllowancePurchase, ProviderProfile, ProviderSubscription
from autoserve.db.types import utcnow
from autoserve.services import (
    allowance_service,
    package_service,
    payment_service,
    subscription_service,
)
from autoserve.services.payment_service import LeadPurchaseTarget, SubscriptionTarget


def _priority_listed(db, provider_id):
    return (
        db.query(ProviderProfile.is_priority_listed)
        .filter(ProviderProfile.user_id == provider_id)
        .scalar()
    )


# =============================================================================
# Purchase initiation
# =============================================================================

class TestPurchasePackage:
    def test_provider_buys_lead_package(self, db, provider, lead_package):
        payment = package_service.purchase_package(db, provider, lead_package.id).unwrap()

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.payment_reference.startswith("PAY-")
        assert payment.amount == lead_package.price
        assert payment.target_kind == PaymentTargetKind.LEAD_PURCHASE.value
        assert payment_service.decode_target(payment) == LeadPurchaseTarget(lead_package.id, 10)

    def test_requester_cannot_buy_lead_package(self, db, requester, lead_package):
        outcome = package_service.purchase_package(db, requester, lead_package.id)

        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION

    def test_inactive_package_not_found(self, db, requester, diagnosis_package):
        diagnosis_package.is_active = False
        db.flush()

        outcome = package_service.purchase_package(db, requester, diagnosis_package.id)

        assert outcome.failure.kind == FailureKind.NOT_FOUND

    def test_list_packages_by_kind(self, db, lead_package, diagnosis_package):
        assert [p.id for p in package_service.list_packages(db, "lead")] == [lead_package.id]
        assert [p.id for p in package_service.list_packages(db, AllowanceKind.DIAGNOSIS)] == [diagnosis_package.id]


# =============================================================================
# Confirmation
# =============================================================================

class TestConfirmPayment:
    def test_confirm_grants_package_units_with_expiry(self, db, make_provider, lead_package):
        provider = make_provider(provision=False)
        payment = package_service.purchase_package(db, provider, lead_package.id).unwrap()

        confirmed = payment_service.confirm_payment(
            db, payment.payment_reference, provider_reference="psk_123"
        ).unwrap()

        assert confirmed.status == PaymentStatus.COMPLETED.value
        assert confirmed.provider_reference == "psk_123"
        purchase = (
            db.query(AllowancePurchase)
            .filter(AllowancePurchase.purchase_reference == payment.payment_reference)
            .one()
        )
        assert purchase.units_purchased == 10
        assert purchase.status == PurchaseStatus.ACTIVE.value
        assert purchase.expires_at is not None
        assert allowance_service.get_balance(db, provider.id, "lead").purchased_remaining == 10

    def test_package_without_validity_never_expires(self, db, requester, diagnosis_package):
        payment = package_service.purchase_package(db, requester, diagnosis_package.id).unwrap()

        payment_service.confirm_payment(db, payment.payment_reference).unwrap()

        purchase = allowance_service.list_purchases(db, requester.id, "diagnosis")[0]
        assert purchase.expires_at is None

    def test_repeated_callback_grants_once(self, db, requester, diagnosis_package):
        payment = package_service.purchase_package(db, requester, diagnosis_package.id).unwrap()

        payment_service.confirm_payment(db, payment.payment_reference).unwrap()
        again = payment_service.confirm_payment(db, payment.payment_reference)

        assert again.ok
        balance = allowance_service.get_balance(db, requester.id, AllowanceKind.DIAGNOSIS)
        assert balance.purchased_remaining == 5

    def test_concurrent_callbacks_grant_once(self, db, session_factory, requester, diagnosis_package):
        payment = package_service.purchase_package(db, requester, diagnosis_package.id).unwrap()
        reference = payment.payment_reference
        requester_id = requester.id
        db.commit()

        barrier = threading.Barrier(3)
        results = []

        def worker():
            session = session_factory()
            try:
                barrier.wait()
                results.append(payment_service.confirm_payment(session, reference).ok)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [True, True, True]
        db.expire_all()
        assert allowance_service.get_balance(db, requester_id, "diagnosis").purchased_remaining == 5
        assert len(allowance_service.list_purchases(db, requester_id, "diagnosis")) == 1

    def test_unknown_reference(self, db):
        assert payment_service.confirm_payment(db, "PAY-NOPE").failure.kind == FailureKind.NOT_FOUND

    def test_vanished_package_without_units_stays_pending(self, db, make_provider):
        provider = make_provider(provision=False)
        provider_id = provider.id
        missing_package_id = uuid.uuid4()
        payment = payment_service.create_payment(
            db, provider_id, LeadPurchaseTarget(package_id=missing_package_id, units=0), amount=50
        )
        reference = payment.payment_reference
        db.commit()

        outcome = payment_service.confirm_payment(db, reference)

        assert outcome.failure.kind == FailureKind.NOT_FOUND
        assert outcome.failure.details["id"] == str(missing_package_id)
        db.expire_all()
        assert payment_service.get_payment_by_reference(db, reference).status == PaymentStatus.PENDING.value
        assert allowance_service.list_purchases(db, provider_id, "lead") == []

    def test_failed_payment_cannot_be_confirmed(self, db, requester, diagnosis_package):
        payment = package_service.purchase_package(db, requester, diagnosis_package.id).unwrap()

        failed = payment_service.fail_payment(db, payment.payment_reference, "Card declined").unwrap()
        assert failed.status == PaymentStatus.FAILED.value
        assert failed.failure_reason == "Card declined"

        outcome = payment_service.confirm_payment(db, payment.payment_reference)
        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION
        assert allowance_service.list_purchases(db, requester.id, "diagnosis") == []

    def test_completed_payment_cannot_fail(self, db, requester, diagnosis_package):
        payment = package_service.purchase_package(db, requester, diagnosis_package.id).unwrap()
        payment_service.confirm_payment(db, payment.payment_reference).unwrap()

        outcome = payment_service.fail_payment(db, payment.payment_reference, "late failure")

        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION


# =============================================================================
# Subscriptions
# =============================================================================

class TestSubscriptions:
    def test_subscribe_then_confirm_activates(self, db, provider, plan):
        payment = package_service.subscribe_to_plan(db, provider, plan.id).unwrap()
        assert isinstance(payment_service.decode_target(payment), SubscriptionTarget)
        assert _priority_listed(db, provider.id) is False

        payment_service.confirm_payment(db, payment.payment_reference).unwrap()

        subscription = subscription_service.get_active_subscription(db, provider.id)
        assert subscription is not None
        assert subscription.plan_id == plan.id
        assert subscription.ends_at - subscription.starts_at == timedelta(days=30)
        assert _priority_listed(db, provider.id) is True

    def test_requesters_cannot_subscribe(self, db, requester, plan):
        outcome = package_service.subscribe_to_plan(db, requester, plan.id)

        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION

    def test_new_subscription_replaces_active_one(self, db, provider, plan):
        first = subscription_service.create_pending_subscription(db, provider.id, plan)
        subscription_service.activate_subscription(db, first.id)
        second = subscription_service.create_pending_subscription(db, provider.id, plan)

        subscription_service.activate_subscription(db, second.id)

        db.expire_all()
        assert db.get(ProviderSubscription, first.id).status == SubscriptionStatus.CANCELLED.value
        assert subscription_service.get_active_subscription(db, provider.id).id == second.id

    def test_cancel_clears_priority_listing(self, db, provider, plan):
        subscription = subscription_service.create_pending_subscription(db, provider.id, plan)
        subscription_service.activate_subscription(db, subscription.id)

        cancelled = subscription_service.cancel_subscription(db, provider.id).unwrap()

        assert cancelled.status == SubscriptionStatus.CANCELLED.value
        assert _priority_listed(db, provider.id) is False
        assert subscription_service.cancel_subscription(db, provider.id).failure.kind == FailureKind.NOT_FOUND

    def test_expire_subscriptions(self, db, provider, plan):
        subscription = subscription_service.create_pending_subscription(db, provider.id, plan)
        subscription_service.activate_subscription(db, subscription.id)

        expired = subscription_service.expire_subscriptions(db, now=utcnow() + timedelta(days=31))

        assert expired == 1
        assert subscription.status == SubscriptionStatus.EXPIRED.value
        assert _priority_listed(db, provider.id) is False


def test_create_payment_records_target(db, provider):
    target = LeadPurchaseTarget(package_id=uuid.uuid4(), units=3)
    payment = payment_service.create_payment(db, provider.id, target, amount=30)

    assert payment.units == 3
    assert payment_service.decode_target(payment) == target
