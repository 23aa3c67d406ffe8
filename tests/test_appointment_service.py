"""
Tests for the appointment engine.

Coverage:
- Booking: availability, slot conflicts, cost estimates from offerings
- Slot exclusivity under concurrent bookings
- Transition table and role permissions
- Reschedule and slot release
- Listings and upcoming counts
"""

import threading
import uuid
from datetime import time, timedelta
from decimal import Decimal

import pytest

from autoserve.core.outcomes import FailureKind
from autoserve.db.enums import ActorRole, AppointmentAction, AppointmentStatus, KycStatus
from autoserve.db.models import Appointment, ServiceOffering
from autoserve.db.types import utcnow
from autoserve.services import appointment_service

NINE = time(9, 0)
NINE_THIRTY = time(9, 30)


@pytest.fixture
def day():
    return utcnow().date() + timedelta(days=7)


@pytest.fixture
def booked(db, requester, provider, day):
    return appointment_service.book(
        db, requester.id, provider.id, day, NINE, "repair"
    ).unwrap()


def _status(db, appointment_id):
    return db.query(Appointment.status).filter(Appointment.id == appointment_id).scalar()


# =============================================================================
# Booking
# =============================================================================

class TestBook:
    def test_books_pending_with_offering_estimate(self, db, requester, provider, offering, day, policy):
        appointment = appointment_service.book(
            db,
            requester.id,
            provider.id,
            day,
            NINE,
            "repair",
            offering_ids=[offering.id, offering.id],
            policy=policy,
        ).unwrap()

        assert appointment.status == AppointmentStatus.PENDING.value
        assert appointment.estimated_cost == Decimal("250.00")
        assert appointment.estimated_duration_minutes == 90
        assert [item.service_name for item in appointment.line_items] == ["Brake pad replacement"]

    def test_default_duration_without_offerings(self, booked, policy):
        assert booked.estimated_duration_minutes == policy.default_appointment_duration_minutes
        assert booked.estimated_cost == Decimal("0")

    def test_conflict_with_confirmed_slot(self, db, make_requester, provider, booked, day):
        """A confirmed 09:00 blocks another 09:00 booking but not 09:30."""
        appointment_service.confirm(db, booked.id).unwrap()
        other = make_requester("Second Driver")

        clash = appointment_service.book(db, other.id, provider.id, day, NINE, "repair")
        later = appointment_service.book(db, other.id, provider.id, day, NINE_THIRTY, "repair")

        assert clash.failure.kind == FailureKind.SLOT_CONFLICT
        assert clash.failure.details["scheduled_time"] == "09:00"
        assert later.value.status == AppointmentStatus.PENDING.value

    def test_pending_appointment_also_holds_slot(self, db, make_requester, provider, booked, day):
        outcome = appointment_service.book(db, make_requester().id, provider.id, day, NINE, "repair")

        assert outcome.failure.kind == FailureKind.SLOT_CONFLICT

    def test_unavailable_provider(self, db, requester, make_provider, day):
        offline = make_provider(is_available=False)
        unapproved = make_provider(kyc_status=KycStatus.SUBMITTED.value)

        for provider in (offline, unapproved):
            outcome = appointment_service.book(db, requester.id, provider.id, day, NINE, "repair")
            assert outcome.failure.kind == FailureKind.PROVIDER_UNAVAILABLE

    def test_unknown_offering(self, db, requester, provider, make_provider, day):
        stranger = make_provider("Stranger")
        foreign = ServiceOffering(
            provider_id=stranger.id, name="Oil change", price=Decimal("80"), duration_minutes=30
        )
        db.add(foreign)
        db.flush()

        outcome = appointment_service.book(
            db, requester.id, provider.id, day, NINE, "maintenance", offering_ids=[foreign.id]
        )

        assert outcome.failure.kind == FailureKind.NOT_FOUND

    def test_unique_index_is_final_arbiter(self, db, make_requester, provider, booked, day, monkeypatch):
        monkeypatch.setattr(appointment_service, "_slot_taken", lambda *args, **kwargs: False)

        outcome = appointment_service.book(db, make_requester().id, provider.id, day, NINE, "repair")

        assert outcome.failure.kind == FailureKind.SLOT_CONFLICT
        assert _status(db, booked.id) == AppointmentStatus.PENDING.value


def test_concurrent_bookings_for_one_slot(db, session_factory, make_requester, provider, day):
    requester_ids = [make_requester(f"Driver {i}").id for i in range(4)]
    provider_id = provider.id
    db.commit()

    barrier = threading.Barrier(len(requester_ids))
    results = []

    def worker(requester_id):
        session = session_factory()
        try:
            barrier.wait()
            outcome = appointment_service.book(
                session, requester_id, provider_id, day, NINE, "diagnostic"
            )
            session.commit()
            results.append(outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(rid,)) for rid in requester_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for r in results if r.ok) == 1
    assert all(r.failure.kind == FailureKind.SLOT_CONFLICT for r in results if not r.ok)
    db.expire_all()
    holders = (
        db.query(Appointment)
        .filter(Appointment.provider_id == provider_id, Appointment.scheduled_date == day)
        .count()
    )
    assert holders == 1


# =============================================================================
# Transitions
# =============================================================================

class TestTransitions:
    def test_full_lifecycle(self, db, booked):
        appointment_service.confirm(db, booked.id).unwrap()
        appointment_service.start(db, booked.id).unwrap()
        done = appointment_service.complete(db, booked.id, final_cost=Decimal("310.50")).unwrap()

        assert done.status == AppointmentStatus.COMPLETED.value
        assert done.confirmed_at is not None
        assert done.started_at is not None
        assert done.completed_at is not None
        assert done.final_cost == Decimal("310.50")

    def test_complete_defaults_final_cost_to_estimate(self, db, requester, provider, offering, day):
        appointment = appointment_service.book(
            db, requester.id, provider.id, day, NINE, "repair", offering_ids=[offering.id]
        ).unwrap()
        appointment_service.confirm(db, appointment.id).unwrap()
        appointment_service.start(db, appointment.id).unwrap()

        done = appointment_service.complete(db, appointment.id).unwrap()

        assert done.final_cost == Decimal("250.00")

    def test_cannot_start_pending(self, db, booked):
        outcome = appointment_service.start(db, booked.id)

        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION
        assert _status(db, booked.id) == AppointmentStatus.PENDING.value

    def test_reject_records_reason(self, db, booked):
        rejected = appointment_service.reject(db, booked.id, "Fully booked that week").unwrap()

        assert rejected.status == AppointmentStatus.REJECTED.value
        assert rejected.rejection_reason == "Fully booked that week"
        assert rejected.rejected_by == ActorRole.PROVIDER.value

    def test_confirmed_cannot_be_rejected(self, db, booked):
        appointment_service.confirm(db, booked.id).unwrap()

        assert appointment_service.reject(db, booked.id, "nope").failure.kind == FailureKind.INVALID_TRANSITION

    def test_in_progress_cannot_be_cancelled(self, db, booked):
        appointment_service.confirm(db, booked.id).unwrap()
        appointment_service.start(db, booked.id).unwrap()

        outcome = appointment_service.cancel(db, booked.id, "changed my mind", ActorRole.REQUESTER)
        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION

    def test_no_show_from_in_progress(self, db, booked):
        appointment_service.confirm(db, booked.id).unwrap()
        appointment_service.start(db, booked.id).unwrap()

        marked = appointment_service.mark_no_show(db, booked.id).unwrap()
        assert marked.status == AppointmentStatus.NO_SHOW.value
        assert marked.no_show_at is not None

    def test_terminal_states_accept_nothing(self, db, booked):
        appointment_service.cancel(db, booked.id, None, ActorRole.PROVIDER).unwrap()

        assert appointment_service.confirm(db, booked.id).failure.kind == FailureKind.INVALID_TRANSITION
        assert appointment_service.mark_no_show(db, booked.id).failure.kind == FailureKind.INVALID_TRANSITION

    def test_cancel_frees_the_slot(self, db, make_requester, provider, booked, day):
        cancelled = appointment_service.cancel(db, booked.id, "Car sold", ActorRole.REQUESTER).unwrap()
        assert cancelled.cancelled_by == ActorRole.REQUESTER.value

        rebooked = appointment_service.book(db, make_requester().id, provider.id, day, NINE, "repair")
        assert rebooked.ok

    def test_unknown_appointment(self, db):
        assert appointment_service.confirm(db, uuid.uuid4()).failure.kind == FailureKind.NOT_FOUND


def test_concurrent_confirms_one_wins(db, session_factory, booked):
    appointment_id = booked.id
    db.commit()

    barrier = threading.Barrier(2)
    results = []

    def worker():
        session = session_factory()
        try:
            barrier.wait()
            outcome = appointment_service.confirm(session, appointment_id)
            session.commit()
            results.append(outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for r in results if r.ok) == 1
    assert [r.failure.kind for r in results if not r.ok] == [FailureKind.INVALID_TRANSITION]
    db.expire_all()
    assert _status(db, appointment_id) == AppointmentStatus.CONFIRMED.value


class TestReschedule:
    def test_moves_slot_and_resets_to_pending(self, db, booked, day):
        appointment_service.confirm(db, booked.id).unwrap()
        new_day = day + timedelta(days=1)

        moved = appointment_service.reschedule(db, booked.id, new_day, NINE_THIRTY).unwrap()

        assert moved.status == AppointmentStatus.PENDING.value
        assert moved.scheduled_date == new_day
        assert moved.scheduled_time == NINE_THIRTY
        assert moved.confirmed_at is None

    def test_conflict_leaves_appointment_unchanged(self, db, make_requester, provider, booked, day):
        other = appointment_service.book(
            db, make_requester().id, provider.id, day, NINE_THIRTY, "repair"
        ).unwrap()
        appointment_service.confirm(db, booked.id).unwrap()

        outcome = appointment_service.reschedule(db, booked.id, day, NINE_THIRTY)

        assert outcome.failure.kind == FailureKind.SLOT_CONFLICT
        db.refresh(booked)
        assert booked.status == AppointmentStatus.CONFIRMED.value
        assert booked.scheduled_time == NINE
        assert _status(db, other.id) == AppointmentStatus.PENDING.value

    def test_same_slot_is_not_a_conflict_with_itself(self, db, booked, day):
        assert appointment_service.reschedule(db, booked.id, day, NINE).ok

    def test_completed_cannot_be_rescheduled(self, db, booked, day):
        for step in (appointment_service.confirm, appointment_service.start, appointment_service.complete):
            step(db, booked.id).unwrap()

        outcome = appointment_service.reschedule(db, booked.id, day, NINE_THIRTY)
        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION


# =============================================================================
# Roles
# =============================================================================

class TestActorPermissions:
    def test_requester_cannot_confirm(self, booked, requester):
        outcome = appointment_service.ensure_actor_may(booked, requester, AppointmentAction.CONFIRM)

        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION
        assert outcome.failure.details["actor_role"] == "requester"

    def test_either_party_may_cancel(self, booked, requester, provider):
        assert appointment_service.ensure_actor_may(booked, requester, "cancel").value == ActorRole.REQUESTER
        assert appointment_service.ensure_actor_may(booked, provider, "cancel").value == ActorRole.PROVIDER

    def test_only_admin_marks_no_show(self, booked, provider, admin):
        assert not appointment_service.ensure_actor_may(booked, provider, "no_show").ok
        assert appointment_service.ensure_actor_may(booked, admin, "no_show").value == ActorRole.ADMIN

    def test_outsider_sees_not_found(self, db, booked, make_requester):
        outsider = make_requester("Nosy")

        assert appointment_service.ensure_actor_may(booked, outsider, "cancel").failure.kind == FailureKind.NOT_FOUND
        assert appointment_service.get_appointment_for_actor(db, booked.id, outsider).failure.kind == FailureKind.NOT_FOUND


# =============================================================================
# Queries
# =============================================================================

def test_listing_views_and_upcoming_count(db, requester, provider, make_requester, day):
    first = appointment_service.book(db, requester.id, provider.id, day, NINE, "repair").unwrap()
    second = appointment_service.book(
        db, requester.id, provider.id, day + timedelta(days=2), NINE, "inspection"
    ).unwrap()
    appointment_service.cancel(db, second.id, None, ActorRole.REQUESTER).unwrap()

    upcoming, total = appointment_service.list_appointments(db, requester.id, ActorRole.REQUESTER, "upcoming")
    assert total == 1
    assert upcoming[0].id == first.id

    past, _ = appointment_service.list_appointments(db, requester.id, ActorRole.REQUESTER, "past")
    assert [a.id for a in past] == [second.id]

    cancelled, _ = appointment_service.list_appointments(db, provider.id, ActorRole.PROVIDER, "cancelled")
    assert [a.id for a in cancelled] == [second.id]

    assert appointment_service.upcoming_count(db, requester.id, ActorRole.REQUESTER) == 1
    assert appointment_service.upcoming_count(db, provider.id, ActorRole.PROVIDER) == 1
    assert appointment_service.upcoming_count(db, make_requester().id, ActorRole.REQUESTER) == 0


def test_provider_schedule_is_in_date_order(db, make_requester, provider, day):
    later = appointment_service.book(
        db, make_requester().id, provider.id, day + timedelta(days=1), NINE, "repair"
    ).unwrap()
    earlier = appointment_service.book(db, make_requester().id, provider.id, day, NINE_THIRTY, "repair").unwrap()

    items, _ = appointment_service.list_appointments(db, provider.id, ActorRole.PROVIDER)

    assert [a.id for a in items] == [earlier.id, later.id]
