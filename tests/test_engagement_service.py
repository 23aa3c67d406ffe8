"""
Tests for the engagement orchestrator.

Coverage:
- Diagnosis submission: credit, engine success/failure, lead dispatch
- All-or-nothing rollback when a step fails
- No transaction held open while the diagnostic engine runs
- Events emitted only after commit
- Appointment and lead operations on behalf of an actor
"""

import threading
import time as clock
from datetime import time, timedelta
from decimal import Decimal

import pytest

from autoserve.core.outcomes import FailureKind, Outcome
from autoserve.db.enums import (
    AllowanceKind,
    AppointmentAction,
    AppointmentStatus,
    DiagnosisStatus,
    LeadStatus,
)
from autoserve.db.models import Appointment, Diagnosis, Lead, Vehicle
from autoserve.db.types import utcnow
from autoserve.services import (
    allowance_service,
    appointment_service,
    engagement_service,
    lead_service,
)
from autoserve.services.diagnostic_engine import DiagnosticEngine, DiagnosticResult
from autoserve.services.engagement_service import AppointmentChange
from autoserve.services.policy_service import EngagementPolicy

SYMPTOMS = "Grinding noise from the front wheels when braking"


def _submit(db, policy, engine, events, requester, **kwargs):
    return engagement_service.submit_diagnosis(
        db, policy, engine, events.dispatcher, requester.id, SYMPTOMS, **kwargs
    )


def _diagnosis_credits(db, account_id):
    return allowance_service.get_balance(db, account_id, AllowanceKind.DIAGNOSIS)


# =============================================================================
# Diagnosis submission
# =============================================================================

class TestSubmitDiagnosis:
    def test_completes_and_dispatches_leads(
        self, db, policy, diagnostic_engine, events, requester, make_provider, region
    ):
        providers = [make_provider(f"Garage {i}", region=region) for i in range(2)]

        submission = _submit(
            db, policy, diagnostic_engine, events, requester, region_id=region.id
        ).unwrap()

        diagnosis = submission.diagnosis
        assert diagnosis.status == DiagnosisStatus.COMPLETED.value
        assert diagnosis.is_free is True
        assert diagnosis.urgency == "high"
        assert diagnosis.result["summary"] == "Worn brake pads"
        assert {lead.provider_id for lead in submission.leads} == {p.id for p in providers}
        assert submission.skipped_provider_ids == []
        assert _diagnosis_credits(db, requester.id).complimentary_remaining == policy.complimentary_diagnoses - 1

        assert events.types() == ["diagnosis_completed", "lead_created", "lead_created"]
        assert diagnostic_engine.calls[0][1] == SYMPTOMS

    def test_out_of_credit_changes_nothing(self, db, policy, diagnostic_engine, events, make_requester):
        requester = make_requester(provision=False)
        db.commit()

        outcome = _submit(db, policy, diagnostic_engine, events, requester)

        assert outcome.failure.kind == FailureKind.OUT_OF_CREDIT
        assert diagnostic_engine.calls == []
        assert db.query(Diagnosis).count() == 0
        assert events.events == []

    def test_engine_failure_still_consumes_credit(self, db, policy, diagnostic_engine, events, requester):
        diagnostic_engine.failure = "Diagnostic engine unreachable"

        submission = _submit(db, policy, diagnostic_engine, events, requester).unwrap()

        assert submission.diagnosis.status == DiagnosisStatus.FAILED.value
        assert submission.diagnosis.error_message == "Diagnostic engine unreachable"
        assert submission.leads == []
        assert _diagnosis_credits(db, requester.id).total_consumed == 1
        assert events.types() == ["diagnosis_failed"]

    def test_skips_providers_without_credit_when_previews_disabled(
        self, db, diagnostic_engine, events, requester, make_provider, region
    ):
        strict = EngagementPolicy(allow_limited_preview_leads=False)
        paying = make_provider("Paying", region=region)
        broke = make_provider("Broke", region=region, provision=False)

        submission = _submit(
            db, strict, diagnostic_engine, events, requester, region_id=region.id
        ).unwrap()

        assert [lead.provider_id for lead in submission.leads] == [paying.id]
        assert submission.skipped_provider_ids == [broke.id]
        assert events.types() == ["diagnosis_completed", "lead_created"]

    def test_limited_previews_dispatched_by_default(
        self, db, policy, diagnostic_engine, events, requester, make_provider, region
    ):
        make_provider("Broke", region=region, provision=False)

        submission = _submit(
            db, policy, diagnostic_engine, events, requester, region_id=region.id
        ).unwrap()

        assert submission.leads[0].is_limited_preview is True
        assert events.events[-1].payload["is_limited_preview"] is True

    def test_no_dispatch_when_disabled(self, db, diagnostic_engine, events, requester, make_provider, region):
        make_provider(region=region)
        manual = EngagementPolicy(auto_dispatch_leads=False)

        submission = _submit(db, manual, diagnostic_engine, events, requester, region_id=region.id).unwrap()

        assert submission.leads == []
        assert db.query(Lead).count() == 0

    def test_lead_failure_refunds_credit_and_leaves_nothing(
        self, db, policy, diagnostic_engine, events, requester, make_provider, region, monkeypatch
    ):
        make_provider("First", region=region)
        make_provider("Second", region=region)
        real_create = lead_service.create_lead
        calls = []

        def flaky_create(db, diagnosis_id, provider_id, policy=None):
            calls.append(provider_id)
            if len(calls) == 2:
                return Outcome.fail(FailureKind.PROVIDER_UNAVAILABLE, "Went offline")
            return real_create(db, diagnosis_id, provider_id, policy=policy)

        monkeypatch.setattr(lead_service, "create_lead", flaky_create)
        requester_id = requester.id
        db.commit()
        before = _diagnosis_credits(db, requester_id)

        outcome = _submit(db, policy, diagnostic_engine, events, requester, region_id=region.id)

        assert outcome.failure.kind == FailureKind.PROVIDER_UNAVAILABLE
        db.expire_all()
        assert db.query(Diagnosis).count() == 0
        assert db.query(Lead).count() == 0
        after = _diagnosis_credits(db, requester_id)
        assert after.complimentary_remaining == before.complimentary_remaining
        assert after.total_consumed == before.total_consumed
        entry_types = [
            e.entry_type
            for e in allowance_service.list_ledger_entries(db, requester_id, AllowanceKind.DIAGNOSIS)
            if e.reference_type == "diagnosis"
        ]
        assert sorted(entry_types) == ["consume", "refund"]
        assert events.types() == []

    def test_unknown_vehicle(self, db, policy, diagnostic_engine, events, requester, make_requester):
        other = make_requester("Other owner")
        vehicle = Vehicle(owner_id=other.id, make="Toyota", model="Corolla", year=2015)
        db.add(vehicle)
        db.commit()

        outcome = _submit(db, policy, diagnostic_engine, events, requester, vehicle_id=vehicle.id)

        assert outcome.failure.kind == FailureKind.NOT_FOUND
        assert diagnostic_engine.calls == []

    def test_vehicle_context_passed_to_engine(self, db, policy, diagnostic_engine, events, requester):
        vehicle = Vehicle(owner_id=requester.id, make="Honda", model="Civic", year=2018, mileage=82000)
        db.add(vehicle)
        db.flush()

        _submit(db, policy, diagnostic_engine, events, requester, vehicle_id=vehicle.id).unwrap()

        context = diagnostic_engine.calls[0][0]
        assert (context.make, context.model, context.mileage) == ("Honda", "Civic", 82000)

    def test_events_emitted_after_commit(
        self, db, session_factory, policy, diagnostic_engine, events, requester
    ):
        seen = []

        def check_visible(event):
            other = session_factory()
            try:
                seen.append(other.get(Diagnosis, event.subject_id) is not None)
            finally:
                other.close()

        events.dispatcher.subscribe(check_visible)

        _submit(db, policy, diagnostic_engine, events, requester).unwrap()

        assert seen == [True]

    def test_failing_handler_does_not_undo_work(self, db, policy, diagnostic_engine, events, requester):
        def explode(event):
            raise RuntimeError("mail server down")

        events.dispatcher.subscribe(explode)

        submission = _submit(db, policy, diagnostic_engine, events, requester).unwrap()

        db.expire_all()
        assert db.get(Diagnosis, submission.diagnosis.id) is not None


class BlockingEngine(DiagnosticEngine):
    """Holds each call until released, to observe what happens meanwhile."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def diagnose(self, vehicle, symptoms):
        self.entered.set()
        self.release.wait(timeout=10)
        return DiagnosticResult(summary="Seized caliper", urgency="high")


class RaisingEngine(DiagnosticEngine):
    def diagnose(self, vehicle, symptoms):
        raise RuntimeError("engine client bug")


class TestEngineCallOutsideTransaction:
    def test_other_writers_proceed_while_engine_runs(
        self, db, session_factory, policy, events, requester, make_requester, provider
    ):
        requester_id = requester.id
        other_id = make_requester("Unrelated driver").id
        provider_id = provider.id
        db.commit()

        engine = BlockingEngine()
        submitted = []

        def submit():
            session = session_factory()
            try:
                submitted.append(
                    engagement_service.submit_diagnosis(
                        session, policy, engine, events.dispatcher, requester_id, SYMPTOMS
                    )
                )
            finally:
                session.close()

        thread = threading.Thread(target=submit)
        thread.start()
        try:
            assert engine.entered.wait(timeout=5)

            session = session_factory()
            try:
                started = clock.monotonic()
                booked = appointment_service.book(
                    session, other_id, provider_id, utcnow().date() + timedelta(days=3), time(9, 0), "repair"
                )
                session.commit()
                waited = clock.monotonic() - started
            finally:
                session.close()

            processing = session_factory()
            try:
                in_flight = processing.query(Diagnosis).one()
                assert in_flight.status == DiagnosisStatus.PROCESSING.value
            finally:
                processing.close()
        finally:
            engine.release.set()
            thread.join()

        assert booked.ok
        assert waited < 1.0
        assert submitted[0].ok
        db.expire_all()
        assert db.query(Diagnosis).one().status == DiagnosisStatus.COMPLETED.value

    def test_engine_exception_marks_diagnosis_failed(self, db, policy, events, requester):
        requester_id = requester.id
        db.commit()

        with pytest.raises(RuntimeError):
            engagement_service.submit_diagnosis(
                db, policy, RaisingEngine(), events.dispatcher, requester_id, SYMPTOMS
            )

        diagnosis = db.query(Diagnosis).one()
        assert diagnosis.status == DiagnosisStatus.FAILED.value
        assert diagnosis.error_message == "Diagnostic engine error"
        assert _diagnosis_credits(db, requester_id).total_consumed == 1
        assert events.types() == ["diagnosis_failed"]


# =============================================================================
# Appointments
# =============================================================================

@pytest.fixture
def day():
    return utcnow().date() + timedelta(days=3)


class TestAppointments:
    def test_book_commits_and_notifies_provider(self, db, policy, events, requester, provider, day):
        appointment = engagement_service.book_appointment(
            db, policy, events.dispatcher, requester.id, provider.id, day, time(10, 0), "repair"
        ).unwrap()

        assert appointment.status == AppointmentStatus.PENDING.value
        assert events.types() == ["appointment_requested"]
        assert events.events[0].recipient_ids == (provider.id,)

    def test_book_conflict_emits_nothing(self, db, policy, events, requester, make_requester, provider, day):
        engagement_service.book_appointment(
            db, policy, events.dispatcher, requester.id, provider.id, day, time(10, 0), "repair"
        ).unwrap()

        outcome = engagement_service.book_appointment(
            db, policy, events.dispatcher, make_requester().id, provider.id, day, time(10, 0), "repair"
        )

        assert outcome.failure.kind == FailureKind.SLOT_CONFLICT
        assert events.types() == ["appointment_requested"]

    def test_book_rejects_foreign_vehicle(self, db, policy, events, requester, make_requester, provider, day):
        other = make_requester("Other owner")
        vehicle = Vehicle(owner_id=other.id, make="Kia", model="Rio")
        db.add(vehicle)
        db.commit()

        outcome = engagement_service.book_appointment(
            db, policy, events.dispatcher, requester.id, provider.id, day, time(10, 0), "repair",
            vehicle_id=vehicle.id,
        )

        assert outcome.failure.kind == FailureKind.NOT_FOUND
        assert db.query(Appointment).count() == 0

    def test_transition_notifies_other_party(self, db, policy, events, requester, provider, day):
        appointment = engagement_service.book_appointment(
            db, policy, events.dispatcher, requester.id, provider.id, day, time(10, 0), "repair"
        ).unwrap()

        confirmed = engagement_service.transition_appointment(
            db, events.dispatcher, appointment.id, provider, AppointmentChange(AppointmentAction.CONFIRM)
        ).unwrap()

        assert confirmed.status == AppointmentStatus.CONFIRMED.value
        assert events.events[-1].event_type.value == "appointment_confirmed"
        assert events.events[-1].recipient_ids == (requester.id,)

    def test_transition_role_violation(self, db, policy, events, requester, provider, day):
        appointment = engagement_service.book_appointment(
            db, policy, events.dispatcher, requester.id, provider.id, day, time(10, 0), "repair"
        ).unwrap()

        outcome = engagement_service.transition_appointment(
            db, events.dispatcher, appointment.id, requester, AppointmentChange(AppointmentAction.START)
        )

        assert outcome.failure.kind == FailureKind.INVALID_TRANSITION
        assert events.types() == ["appointment_requested"]

    def test_complete_and_reschedule_through_orchestrator(self, db, policy, events, requester, provider, day):
        appointment = engagement_service.book_appointment(
            db, policy, events.dispatcher, requester.id, provider.id, day, time(10, 0), "repair"
        ).unwrap()
        moved = engagement_service.transition_appointment(
            db,
            events.dispatcher,
            appointment.id,
            requester,
            AppointmentChange(AppointmentAction.RESCHEDULE, new_date=day, new_time=time(14, 0)),
        ).unwrap()
        assert moved.scheduled_time == time(14, 0)

        for action in (AppointmentAction.CONFIRM, AppointmentAction.START):
            engagement_service.transition_appointment(
                db, events.dispatcher, appointment.id, provider, AppointmentChange(action)
            ).unwrap()
        done = engagement_service.transition_appointment(
            db,
            events.dispatcher,
            appointment.id,
            provider,
            AppointmentChange(AppointmentAction.COMPLETE, final_cost=Decimal("199.99")),
        ).unwrap()

        assert done.final_cost == Decimal("199.99")
        assert events.types()[-1] == "appointment_completed"


# =============================================================================
# Leads
# =============================================================================

class TestAdvanceLead:
    @pytest.fixture
    def lead(self, db, make_diagnosis, requester, provider, policy):
        diagnosis = make_diagnosis(requester)
        return lead_service.create_lead(db, diagnosis.id, provider.id, policy).unwrap()

    def test_convert_notifies_requester(self, db, events, provider, requester, lead):
        for action in ("view", "contact", "convert"):
            engagement_service.advance_lead(db, events.dispatcher, lead.id, action, provider).unwrap()

        assert events.types() == ["lead_converted"]
        assert events.events[0].recipient_ids == (requester.id,)
        db.expire_all()
        assert db.get(Lead, lead.id).status == LeadStatus.CONVERTED.value

    def test_other_provider_cannot_touch_lead(self, db, events, make_provider, lead):
        outsider = make_provider("Outsider")

        outcome = engagement_service.advance_lead(db, events.dispatcher, lead.id, "view", outsider)

        assert outcome.failure.kind == FailureKind.NOT_FOUND

    def test_close_with_reason(self, db, events, provider, lead):
        closed = engagement_service.advance_lead(
            db, events.dispatcher, lead.id, "close", provider, reason="Duplicate request"
        ).unwrap()

        assert closed.close_reason == "Duplicate request"
        assert events.types() == ["lead_closed"]
