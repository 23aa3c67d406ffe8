"""Appointment engine - booking state machine with slot exclusivity.

Handles:
- Booking with provider availability and slot conflict checks
- Cost and duration estimates from the provider's service offerings
- Guarded transitions (confirm, reject, start, complete, cancel, no-show)
- Reschedule with re-validated slot

A slot is (provider, date, time). At most one pending or confirmed
appointment may hold it; the partial unique index is the final arbiter
when two bookings race past the pre-check.
"""

from __future__ import annotations

import logging
from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autoserve.core.outcomes import FailureKind, Outcome, invalid_transition, not_found
from autoserve.core.structured_logging import build_log_context
from autoserve.db.enums import (
    APPOINTMENT_ACTION_ROLES,
    APPOINTMENT_TRANSITIONS,
    SLOT_HOLDING_STATUSES,
    TERMINAL_APPOINTMENT_STATUSES,
    ActorRole,
    AppointmentAction,
    AppointmentStatus,
    LocationType,
    ServiceType,
    UserRole,
)
from autoserve.db.models import (
    Appointment,
    AppointmentLineItem,
    ProviderProfile,
    ServiceOffering,
    User,
)
from autoserve.db.types import utcnow
from autoserve.services.policy_service import EngagementPolicy
from autoserve.utils.pagination import PaginationParams, paginate_query

logger = logging.getLogger(__name__)

_SLOT_HOLDING_VALUES = [status.value for status in SLOT_HOLDING_STATUSES]
_ACTIVE_VALUES = _SLOT_HOLDING_VALUES + [AppointmentStatus.IN_PROGRESS.value]
_TERMINAL_VALUES = [status.value for status in TERMINAL_APPOINTMENT_STATUSES]


# =============================================================================
# Helpers
# =============================================================================


def _slot_conflict(provider_id: UUID, scheduled_date: date, scheduled_time: time) -> Outcome[Any]:
    return Outcome.fail(
        FailureKind.SLOT_CONFLICT,
        "This time slot is not available",
        provider_id=str(provider_id),
        scheduled_date=scheduled_date.isoformat(),
        scheduled_time=scheduled_time.strftime("%H:%M"),
    )


def _is_slot_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return "uq_appointments_active_slot" in message or (
        "UNIQUE constraint failed" in message and "appointments.provider_id" in message
    )


def _slot_taken(
    db: Session,
    provider_id: UUID,
    scheduled_date: date,
    scheduled_time: time,
    exclude_id: UUID | None = None,
) -> bool:
    query = db.query(Appointment.id).filter(
        Appointment.provider_id == provider_id,
        Appointment.scheduled_date == scheduled_date,
        Appointment.scheduled_time == scheduled_time,
        Appointment.status.in_(_SLOT_HOLDING_VALUES),
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.first() is not None


def _load(db: Session, appointment_id: UUID) -> Appointment | None:
    return (
        db.query(Appointment)
        .populate_existing()
        .filter(Appointment.id == appointment_id)
        .first()
    )


def _apply_transition(
    db: Session,
    appointment_id: UUID,
    action: AppointmentAction,
    extra_values: dict | None = None,
) -> Outcome[Appointment]:
    """Compare-and-swap the status according to the transition table."""
    appointment = _load(db, appointment_id)
    if appointment is None:
        return not_found("Appointment", appointment_id)

    sources, target = APPOINTMENT_TRANSITIONS[action]
    current = AppointmentStatus(appointment.status)
    if current not in sources:
        return invalid_transition("appointment", current.value, action.value)

    values = {Appointment.status: target.value, Appointment.updated_at: utcnow()}
    values.update(extra_values or {})
    updated = (
        db.query(Appointment)
        .filter(Appointment.id == appointment_id, Appointment.status == current.value)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        latest = db.query(Appointment.status).filter(Appointment.id == appointment_id).scalar()
        return invalid_transition("appointment", latest or current.value, action.value)

    db.refresh(appointment)
    logger.info(
        "Appointment %s -> %s",
        current.value,
        target.value,
        extra=build_log_context(appointment_id=appointment_id),
    )
    return Outcome.success(appointment)


# =============================================================================
# Booking
# =============================================================================


def book(
    db: Session,
    requester_id: UUID,
    provider_id: UUID,
    scheduled_date: date,
    scheduled_time: time,
    service_type: ServiceType | str,
    offering_ids: Iterable[UUID] = (),
    vehicle_id: UUID | None = None,
    diagnosis_id: UUID | None = None,
    description: str | None = None,
    notes: str | None = None,
    location_type: LocationType | str = LocationType.PROVIDER_SHOP,
    address: str | None = None,
    policy: EngagementPolicy | None = None,
) -> Outcome[Appointment]:
    """
    Book a pending appointment with a provider.

    Checks, in order: provider exists, provider is available and KYC
    approved, slot is free. Estimated cost and duration are summed from
    the selected offerings. Does not commit.
    """
    policy = policy or EngagementPolicy()
    service_type = ServiceType(service_type)
    location_type = LocationType(location_type)
    offering_ids = list(dict.fromkeys(offering_ids))

    profile = db.query(ProviderProfile).filter(ProviderProfile.user_id == provider_id).first()
    if profile is None:
        return not_found("Provider", provider_id)
    if not profile.is_bookable:
        return Outcome.fail(
            FailureKind.PROVIDER_UNAVAILABLE,
            "Provider is not available for bookings",
            provider_id=str(provider_id),
        )

    if _slot_taken(db, provider_id, scheduled_date, scheduled_time):
        return _slot_conflict(provider_id, scheduled_date, scheduled_time)

    offerings: list[ServiceOffering] = []
    if offering_ids:
        offerings = (
            db.query(ServiceOffering)
            .filter(
                ServiceOffering.id.in_(offering_ids),
                ServiceOffering.provider_id == provider_id,
                ServiceOffering.is_active.is_(True),
            )
            .all()
        )
        missing = set(offering_ids) - {o.id for o in offerings}
        if missing:
            return not_found("Service offering", sorted(str(m) for m in missing)[0])

    estimated_cost = sum((o.price for o in offerings), Decimal("0"))
    estimated_duration = (
        sum(o.duration_minutes for o in offerings) or policy.default_appointment_duration_minutes
    )

    appointment = Appointment(
        requester_id=requester_id,
        provider_id=provider_id,
        diagnosis_id=diagnosis_id,
        vehicle_id=vehicle_id,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        estimated_duration_minutes=estimated_duration,
        service_type=service_type.value,
        description=description,
        notes=notes,
        location_type=location_type.value,
        address=address or profile.address,
        status=AppointmentStatus.PENDING.value,
        estimated_cost=estimated_cost,
        currency=policy.default_currency,
    )
    try:
        with db.begin_nested():
            db.add(appointment)
            db.flush()
            for offering in offerings:
                db.add(
                    AppointmentLineItem(
                        appointment_id=appointment.id,
                        offering_id=offering.id,
                        service_name=offering.name,
                        price=offering.price,
                        quantity=1,
                        duration_minutes=offering.duration_minutes,
                    )
                )
            db.flush()
    except IntegrityError as exc:
        if not _is_slot_violation(exc):
            raise
        logger.info(
            "Slot taken by a concurrent booking",
            extra=build_log_context(account_id=requester_id, provider_id=provider_id),
        )
        return _slot_conflict(provider_id, scheduled_date, scheduled_time)

    logger.info(
        "Appointment booked",
        extra=build_log_context(
            account_id=requester_id, provider_id=provider_id, appointment_id=appointment.id
        ),
    )
    return Outcome.success(appointment)


# =============================================================================
# Transitions
# =============================================================================


def confirm(db: Session, appointment_id: UUID) -> Outcome[Appointment]:
    return _apply_transition(
        db, appointment_id, AppointmentAction.CONFIRM, {Appointment.confirmed_at: utcnow()}
    )


def reject(
    db: Session,
    appointment_id: UUID,
    reason: str,
    rejected_by: ActorRole = ActorRole.PROVIDER,
) -> Outcome[Appointment]:
    return _apply_transition(
        db,
        appointment_id,
        AppointmentAction.REJECT,
        {
            Appointment.rejected_at: utcnow(),
            Appointment.rejection_reason: reason,
            Appointment.rejected_by: rejected_by.value,
        },
    )


def start(db: Session, appointment_id: UUID) -> Outcome[Appointment]:
    return _apply_transition(
        db, appointment_id, AppointmentAction.START, {Appointment.started_at: utcnow()}
    )


def complete(
    db: Session, appointment_id: UUID, final_cost: Decimal | None = None
) -> Outcome[Appointment]:
    """Complete an in-progress appointment; final cost defaults to the estimate."""
    return _apply_transition(
        db,
        appointment_id,
        AppointmentAction.COMPLETE,
        {
            Appointment.completed_at: utcnow(),
            Appointment.final_cost: final_cost if final_cost is not None else Appointment.estimated_cost,
        },
    )


def cancel(
    db: Session,
    appointment_id: UUID,
    reason: str | None,
    cancelled_by: ActorRole,
) -> Outcome[Appointment]:
    return _apply_transition(
        db,
        appointment_id,
        AppointmentAction.CANCEL,
        {
            Appointment.cancelled_at: utcnow(),
            Appointment.cancellation_reason: reason,
            Appointment.cancelled_by: ActorRole(cancelled_by).value,
        },
    )


def mark_no_show(db: Session, appointment_id: UUID) -> Outcome[Appointment]:
    return _apply_transition(
        db, appointment_id, AppointmentAction.NO_SHOW, {Appointment.no_show_at: utcnow()}
    )


def reschedule(
    db: Session,
    appointment_id: UUID,
    new_date: date,
    new_time: time,
) -> Outcome[Appointment]:
    """
    Move a pending or confirmed appointment to a new slot.

    The appointment goes back to pending for re-confirmation. On conflict
    nothing changes.
    """
    appointment = _load(db, appointment_id)
    if appointment is None:
        return not_found("Appointment", appointment_id)

    sources, target = APPOINTMENT_TRANSITIONS[AppointmentAction.RESCHEDULE]
    current = AppointmentStatus(appointment.status)
    if current not in sources:
        return invalid_transition("appointment", current.value, AppointmentAction.RESCHEDULE.value)

    provider_id = appointment.provider_id
    if _slot_taken(db, provider_id, new_date, new_time, exclude_id=appointment_id):
        return _slot_conflict(provider_id, new_date, new_time)

    try:
        with db.begin_nested():
            updated = (
                db.query(Appointment)
                .filter(Appointment.id == appointment_id, Appointment.status == current.value)
                .update(
                    {
                        Appointment.scheduled_date: new_date,
                        Appointment.scheduled_time: new_time,
                        Appointment.status: target.value,
                        Appointment.confirmed_at: None,
                        Appointment.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
    except IntegrityError as exc:
        if not _is_slot_violation(exc):
            raise
        db.refresh(appointment)
        return _slot_conflict(provider_id, new_date, new_time)

    if updated != 1:
        latest = db.query(Appointment.status).filter(Appointment.id == appointment_id).scalar()
        return invalid_transition(
            "appointment", latest or current.value, AppointmentAction.RESCHEDULE.value
        )

    db.refresh(appointment)
    logger.info("Appointment rescheduled", extra=build_log_context(appointment_id=appointment_id))
    return Outcome.success(appointment)


# =============================================================================
# Actor scoping
# =============================================================================


def actor_role(appointment: Appointment, actor: User) -> ActorRole | None:
    """The role an account plays on an appointment, if any."""
    role = appointment.role_of(actor.id)
    if role is None and actor.role == UserRole.ADMIN.value:
        return ActorRole.ADMIN
    return role


def get_appointment_for_actor(
    db: Session, appointment_id: UUID, actor: User
) -> Outcome[Appointment]:
    """Fetch an appointment the actor is a party to (admins see all)."""
    appointment = db.get(Appointment, appointment_id)
    if appointment is None or actor_role(appointment, actor) is None:
        return not_found("Appointment", appointment_id)
    return Outcome.success(appointment)


def ensure_actor_may(
    appointment: Appointment, actor: User, action: AppointmentAction | str
) -> Outcome[ActorRole]:
    """Check that the actor's role on the appointment permits the action."""
    action = AppointmentAction(action)
    role = actor_role(appointment, actor)
    if role is None:
        return not_found("Appointment", appointment.id)

    allowed = APPOINTMENT_ACTION_ROLES[action]
    if role not in allowed and actor.role == UserRole.ADMIN.value and ActorRole.ADMIN in allowed:
        role = ActorRole.ADMIN
    if role not in allowed:
        return Outcome.fail(
            FailureKind.INVALID_TRANSITION,
            f"A {role.value} cannot {action.value.replace('_', ' ')} this appointment",
            action=action.value,
            actor_role=role.value,
        )
    return Outcome.success(role)


# =============================================================================
# Queries
# =============================================================================


def _scoped_query(db: Session, account_id: UUID, as_role: ActorRole):
    if as_role == ActorRole.PROVIDER:
        return db.query(Appointment).filter(Appointment.provider_id == account_id)
    return db.query(Appointment).filter(Appointment.requester_id == account_id)


def _apply_view(query, view: str | None, today: date):
    if not view:
        return query
    if view == "upcoming":
        return query.filter(
            Appointment.scheduled_date >= today,
            Appointment.status.in_(_SLOT_HOLDING_VALUES),
        )
    if view == "past":
        return query.filter(
            or_(
                Appointment.scheduled_date < today,
                Appointment.status.in_(_TERMINAL_VALUES),
            )
        )
    if view == "active":
        return query.filter(Appointment.status.in_(_ACTIVE_VALUES))
    return query.filter(Appointment.status == AppointmentStatus(view).value)


def list_appointments(
    db: Session,
    account_id: UUID,
    as_role: ActorRole,
    view: str | None = None,
    pagination: PaginationParams | None = None,
    today: date | None = None,
) -> tuple[list[Appointment], int]:
    """
    List an account's appointments.

    ``view`` is "upcoming", "past", "active" or a status value. Requesters
    see newest first; providers see their schedule in date order.
    """
    pagination = pagination or PaginationParams()
    today = today or utcnow().date()
    query = _apply_view(_scoped_query(db, account_id, as_role), view, today)

    if as_role == ActorRole.PROVIDER:
        query = query.order_by(Appointment.scheduled_date.asc(), Appointment.scheduled_time.asc())
    else:
        query = query.order_by(Appointment.scheduled_date.desc(), Appointment.scheduled_time.desc())
    return paginate_query(query, pagination)


def upcoming_count(
    db: Session, account_id: UUID, as_role: ActorRole, today: date | None = None
) -> int:
    today = today or utcnow().date()
    return _apply_view(_scoped_query(db, account_id, as_role), "upcoming", today).count()
