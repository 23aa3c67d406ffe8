"""Engagement orchestrator - composite operations with all-or-nothing visibility.

Each public operation runs its steps in the caller's session, commits once
on success and rolls back on any failure, so no partial lead, appointment
or ledger change is ever visible. Diagnosis submission commits the charge
before calling the engine and records the outcome afterwards, so no
transaction is held open across the external call. A failed lead dispatch
is undone by refunding the credit and deleting the diagnosis. Events are
emitted only after the commit; dispatch failures never undo committed work.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Callable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from autoserve.core.outcomes import FailureKind, Outcome, not_found
from autoserve.core.structured_logging import build_log_context
from autoserve.db.enums import (
    ActorRole,
    AllowanceKind,
    AppointmentAction,
    DiagnosisStatus,
    LeadAction,
)
from autoserve.db.models import Appointment, Diagnosis, Lead, User, Vehicle
from autoserve.db.types import utcnow
from autoserve.services import allowance_service, appointment_service, lead_service
from autoserve.services.diagnostic_engine import (
    DiagnosticEngine,
    DiagnosticFailure,
    VehicleContext,
)
from autoserve.services.notification_service import (
    EngagementEvent,
    EventType,
    NotificationDispatcher,
)
from autoserve.services.policy_service import EngagementPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

_APPOINTMENT_EVENTS: dict[AppointmentAction, EventType] = {
    AppointmentAction.CONFIRM: EventType.APPOINTMENT_CONFIRMED,
    AppointmentAction.REJECT: EventType.APPOINTMENT_REJECTED,
    AppointmentAction.START: EventType.APPOINTMENT_STARTED,
    AppointmentAction.COMPLETE: EventType.APPOINTMENT_COMPLETED,
    AppointmentAction.CANCEL: EventType.APPOINTMENT_CANCELLED,
    AppointmentAction.RESCHEDULE: EventType.APPOINTMENT_RESCHEDULED,
    AppointmentAction.NO_SHOW: EventType.APPOINTMENT_NO_SHOW,
}

_LEAD_EVENTS: dict[LeadAction, EventType] = {
    LeadAction.CONVERT: EventType.LEAD_CONVERTED,
    LeadAction.CLOSE: EventType.LEAD_CLOSED,
}


@dataclass
class DiagnosisSubmission:
    diagnosis: Diagnosis
    leads: list[Lead] = field(default_factory=list)
    skipped_provider_ids: list[UUID] = field(default_factory=list)


@dataclass
class AppointmentChange:
    """Arguments for one appointment transition."""

    action: AppointmentAction
    reason: str | None = None
    final_cost: Decimal | None = None
    new_date: date | None = None
    new_time: time | None = None


Work = Callable[[], tuple[Outcome[T], list[EngagementEvent]]]


def _run_in_transaction(
    db: Session, dispatcher: NotificationDispatcher, work: Work
) -> Outcome[T]:
    """Commit if the work succeeds, roll back otherwise, then emit events."""
    try:
        outcome, events = work()
    except Exception:
        db.rollback()
        raise

    if not outcome.ok:
        db.rollback()
        return outcome

    db.commit()
    dispatcher.emit_all(events)
    return outcome


# =============================================================================
# Diagnosis submission
# =============================================================================


def _record_diagnosis_failure(
    db: Session,
    dispatcher: NotificationDispatcher,
    diagnosis_id: UUID,
    requester_id: UUID,
    message: str,
) -> Outcome[Diagnosis]:
    """Mark a charged diagnosis failed in its own transaction."""

    def work() -> tuple[Outcome[Diagnosis], list[EngagementEvent]]:
        diagnosis = db.get(Diagnosis, diagnosis_id)
        if diagnosis is None:
            return not_found("Diagnosis", diagnosis_id), []
        diagnosis.status = DiagnosisStatus.FAILED.value
        diagnosis.error_message = message
        db.flush()
        logger.warning(
            "Diagnosis failed: %s", message,
            extra=build_log_context(account_id=requester_id, diagnosis_id=diagnosis_id),
        )
        event = EngagementEvent(
            EventType.DIAGNOSIS_FAILED,
            diagnosis_id,
            recipient_ids=(requester_id,),
            payload={"error": message},
        )
        return Outcome.success(diagnosis), [event]

    return _run_in_transaction(db, dispatcher, work)


def _discard_diagnosis(
    db: Session,
    dispatcher: NotificationDispatcher,
    diagnosis_id: UUID,
    requester_id: UUID,
    reason: str,
) -> Outcome[None]:
    """Undo a charged submission: refund the credit and delete the diagnosis."""

    def work() -> tuple[Outcome[None], list[EngagementEvent]]:
        refunded = allowance_service.refund(
            db, requester_id, AllowanceKind.DIAGNOSIS, "diagnosis", diagnosis_id
        )
        if not refunded.ok:
            return Outcome.from_failure(refunded.failure), []
        db.query(Diagnosis).filter(Diagnosis.id == diagnosis_id).delete(synchronize_session=False)
        logger.warning(
            "Diagnosis discarded: %s", reason,
            extra=build_log_context(account_id=requester_id, diagnosis_id=diagnosis_id),
        )
        return Outcome.success(None), []

    return _run_in_transaction(db, dispatcher, work)


def submit_diagnosis(
    db: Session,
    policy: EngagementPolicy,
    engine: DiagnosticEngine,
    dispatcher: NotificationDispatcher,
    requester_id: UUID,
    symptoms: str,
    vehicle_id: UUID | None = None,
    region_id: int | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Outcome[DiagnosisSubmission]:
    """
    Spend a diagnosis credit, run the diagnostic engine and dispatch leads.

    Runs in three steps so no transaction is open during the engine call:
    the credit is charged and the diagnosis stored as ``processing``; the
    engine runs; the result and the leads are written together. A failed
    engine run still consumes the credit. When leads are dispatched, a
    provider out of lead credits is skipped. Any other lead failure is
    returned after the diagnosis is deleted and its credit refunded.
    """

    def charge() -> tuple[Outcome[tuple[UUID, VehicleContext]], list[EngagementEvent]]:
        if not allowance_service.has_remaining(db, requester_id, AllowanceKind.DIAGNOSIS):
            logger.info("Diagnosis refused: no credits", extra=build_log_context(account_id=requester_id))
            return (
                Outcome.fail(
                    FailureKind.OUT_OF_CREDIT,
                    "No diagnosis credits remaining",
                    account_id=str(requester_id),
                    allowance_kind=AllowanceKind.DIAGNOSIS.value,
                ),
                [],
            )

        vehicle_context = VehicleContext()
        if vehicle_id is not None:
            vehicle = (
                db.query(Vehicle)
                .filter(Vehicle.id == vehicle_id, Vehicle.owner_id == requester_id)
                .first()
            )
            if vehicle is None:
                return not_found("Vehicle", vehicle_id), []
            vehicle_context = VehicleContext(
                make=vehicle.make,
                model=vehicle.model,
                year=vehicle.year,
                mileage=vehicle.mileage,
                fuel_type=vehicle.fuel_type,
            )

        diagnosis_id = uuid.uuid4()
        consumed = allowance_service.consume(
            db,
            requester_id,
            AllowanceKind.DIAGNOSIS,
            reference_type="diagnosis",
            reference_id=diagnosis_id,
        )
        if not consumed.ok:
            return Outcome.from_failure(consumed.failure), []

        db.add(
            Diagnosis(
                id=diagnosis_id,
                requester_id=requester_id,
                vehicle_id=vehicle_id,
                region_id=region_id,
                symptoms=symptoms,
                latitude=latitude,
                longitude=longitude,
                status=DiagnosisStatus.PROCESSING.value,
                is_free=consumed.value.is_complimentary,
                consumption_source=consumed.value.source.value,
            )
        )
        db.flush()
        return Outcome.success((diagnosis_id, vehicle_context)), []

    charged = _run_in_transaction(db, dispatcher, charge)
    if not charged.ok:
        return Outcome.from_failure(charged.failure)
    diagnosis_id, vehicle_context = charged.value

    # Session is idle here; ORM attributes must not be touched until the engine returns
    try:
        result = engine.diagnose(vehicle_context, symptoms)
    except Exception:
        _record_diagnosis_failure(db, dispatcher, diagnosis_id, requester_id, "Diagnostic engine error")
        raise

    if isinstance(result, DiagnosticFailure):
        recorded = _record_diagnosis_failure(db, dispatcher, diagnosis_id, requester_id, result.message)
        return Outcome.success(DiagnosisSubmission(diagnosis=recorded.unwrap()))

    def complete() -> tuple[Outcome[DiagnosisSubmission], list[EngagementEvent]]:
        diagnosis = db.get(Diagnosis, diagnosis_id)
        if diagnosis is None:
            return not_found("Diagnosis", diagnosis_id), []
        diagnosis.status = DiagnosisStatus.COMPLETED.value
        diagnosis.result = result.to_dict()
        diagnosis.urgency = result.urgency
        diagnosis.confidence_score = result.confidence_score
        diagnosis.completed_at = utcnow()
        db.flush()

        submission = DiagnosisSubmission(diagnosis=diagnosis)
        events = [
            EngagementEvent(
                EventType.DIAGNOSIS_COMPLETED,
                diagnosis.id,
                recipient_ids=(requester_id,),
                payload={"urgency": diagnosis.urgency},
            )
        ]

        if policy.auto_dispatch_leads:
            matched = lead_service.match_providers(db, diagnosis.id, policy=policy)
            if not matched.ok:
                return Outcome.from_failure(matched.failure), []

            for provider_id in matched.value:
                created = lead_service.create_lead(db, diagnosis.id, provider_id, policy=policy)
                if created.ok:
                    submission.leads.append(created.value)
                    events.append(
                        EngagementEvent(
                            EventType.LEAD_CREATED,
                            created.value.id,
                            recipient_ids=(provider_id,),
                            payload={
                                "diagnosis_id": str(diagnosis.id),
                                "is_limited_preview": created.value.is_limited_preview,
                            },
                        )
                    )
                elif created.failure.kind == FailureKind.OUT_OF_CREDIT:
                    submission.skipped_provider_ids.append(provider_id)
                else:
                    logger.info(
                        "Lead dispatch aborted: %s",
                        created.failure.kind.value,
                        extra=build_log_context(provider_id=provider_id, diagnosis_id=diagnosis.id),
                    )
                    return Outcome.from_failure(created.failure), []

        return Outcome.success(submission), events

    try:
        completed = _run_in_transaction(db, dispatcher, complete)
    except Exception:
        _discard_diagnosis(db, dispatcher, diagnosis_id, requester_id, "lead dispatch error")
        raise

    if not completed.ok:
        _discard_diagnosis(
            db, dispatcher, diagnosis_id, requester_id, completed.failure.kind.value
        ).unwrap()
    return completed


# =============================================================================
# Appointments
# =============================================================================


def book_appointment(
    db: Session,
    policy: EngagementPolicy,
    dispatcher: NotificationDispatcher,
    requester_id: UUID,
    provider_id: UUID,
    scheduled_date: date,
    scheduled_time: time,
    service_type: str,
    **options,
) -> Outcome[Appointment]:
    """Book an appointment; see appointment_service.book for ``options``."""

    def work() -> tuple[Outcome[Appointment], list[EngagementEvent]]:
        vehicle_id = options.get("vehicle_id")
        if vehicle_id is not None:
            owned = (
                db.query(Vehicle.id)
                .filter(Vehicle.id == vehicle_id, Vehicle.owner_id == requester_id)
                .first()
            )
            if owned is None:
                return not_found("Vehicle", vehicle_id), []

        booked = appointment_service.book(
            db,
            requester_id,
            provider_id,
            scheduled_date,
            scheduled_time,
            service_type,
            policy=policy,
            **options,
        )
        if not booked.ok:
            return booked, []
        appointment = booked.value
        event = EngagementEvent(
            EventType.APPOINTMENT_REQUESTED,
            appointment.id,
            recipient_ids=(provider_id,),
            payload={
                "scheduled_date": scheduled_date.isoformat(),
                "scheduled_time": scheduled_time.strftime("%H:%M"),
            },
        )
        return booked, [event]

    return _run_in_transaction(db, dispatcher, work)


def _perform(
    db: Session, appointment_id: UUID, change: AppointmentChange, role: ActorRole
) -> Outcome[Appointment]:
    action = change.action
    if action == AppointmentAction.CONFIRM:
        return appointment_service.confirm(db, appointment_id)
    if action == AppointmentAction.REJECT:
        return appointment_service.reject(db, appointment_id, change.reason or "", rejected_by=role)
    if action == AppointmentAction.START:
        return appointment_service.start(db, appointment_id)
    if action == AppointmentAction.COMPLETE:
        return appointment_service.complete(db, appointment_id, final_cost=change.final_cost)
    if action == AppointmentAction.CANCEL:
        return appointment_service.cancel(db, appointment_id, change.reason, cancelled_by=role)
    if action == AppointmentAction.NO_SHOW:
        return appointment_service.mark_no_show(db, appointment_id)
    if action == AppointmentAction.RESCHEDULE:
        if change.new_date is None or change.new_time is None:
            raise ValueError("reschedule requires new_date and new_time")
        return appointment_service.reschedule(db, appointment_id, change.new_date, change.new_time)
    raise ValueError(f"Unhandled appointment action: {action}")


def transition_appointment(
    db: Session,
    dispatcher: NotificationDispatcher,
    appointment_id: UUID,
    actor: User,
    change: AppointmentChange,
) -> Outcome[Appointment]:
    """Apply an appointment transition on behalf of one of its parties."""

    def work() -> tuple[Outcome[Appointment], list[EngagementEvent]]:
        found = appointment_service.get_appointment_for_actor(db, appointment_id, actor)
        if not found.ok:
            return found, []
        permitted = appointment_service.ensure_actor_may(found.value, actor, change.action)
        if not permitted.ok:
            return Outcome.from_failure(permitted.failure), []

        changed = _perform(db, appointment_id, change, permitted.value)
        if not changed.ok:
            return changed, []

        appointment = changed.value
        recipients = tuple(
            party
            for party in (appointment.requester_id, appointment.provider_id)
            if party != actor.id
        )
        event = EngagementEvent(
            _APPOINTMENT_EVENTS[change.action],
            appointment.id,
            recipient_ids=recipients,
            payload={"status": appointment.status, "actor_role": permitted.value.value},
        )
        return changed, [event]

    return _run_in_transaction(db, dispatcher, work)


# =============================================================================
# Leads
# =============================================================================


def advance_lead(
    db: Session,
    dispatcher: NotificationDispatcher,
    lead_id: UUID,
    action: LeadAction | str,
    actor: User,
    reason: str | None = None,
) -> Outcome[Lead]:
    """Advance one of the provider's own leads."""
    action = LeadAction(action)

    def work() -> tuple[Outcome[Lead], list[EngagementEvent]]:
        if lead_service.get_lead(db, lead_id, provider_id=actor.id) is None:
            return not_found("Lead", lead_id), []

        advanced = lead_service.advance(db, lead_id, action, actor_id=actor.id, reason=reason)
        if not advanced.ok:
            return advanced, []

        events = []
        event_type = _LEAD_EVENTS.get(action)
        if event_type is not None:
            lead = advanced.value
            events.append(
                EngagementEvent(
                    event_type,
                    lead.id,
                    recipient_ids=(lead.requester_id,),
                    payload={"provider_id": str(lead.provider_id)},
                )
            )
        return advanced, events

    return _run_in_transaction(db, dispatcher, work)
