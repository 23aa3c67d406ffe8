"""Appointments router - booking and the appointment lifecycle.

Both parties act on an appointment through these endpoints; which
transitions an account may trigger depends on its role on the appointment.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from autoserve.core.deps import (
    failure_to_http,
    get_current_user,
    get_db,
    get_dispatcher,
    get_policy,
)
from autoserve.db.enums import ActorRole, AppointmentAction, UserRole
from autoserve.schemas.appointment import (
    AppointmentComplete,
    AppointmentCreate,
    AppointmentLineItemRead,
    AppointmentListResponse,
    AppointmentRead,
    AppointmentReason,
    AppointmentReject,
    AppointmentReschedule,
)
from autoserve.services import appointment_service, engagement_service
from autoserve.services.engagement_service import AppointmentChange
from autoserve.utils.pagination import PaginationParams, get_pagination

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def _appointment_to_read(appt) -> AppointmentRead:
    """Convert Appointment model to read schema."""
    return AppointmentRead(
        id=appt.id,
        requester_id=appt.requester_id,
        provider_id=appt.provider_id,
        diagnosis_id=appt.diagnosis_id,
        vehicle_id=appt.vehicle_id,
        scheduled_date=appt.scheduled_date,
        scheduled_time=appt.scheduled_time,
        estimated_duration_minutes=appt.estimated_duration_minutes,
        service_type=appt.service_type,
        description=appt.description,
        location_type=appt.location_type,
        address=appt.address,
        status=appt.status,
        estimated_cost=appt.estimated_cost,
        final_cost=appt.final_cost,
        currency=appt.currency,
        confirmed_at=appt.confirmed_at,
        started_at=appt.started_at,
        completed_at=appt.completed_at,
        cancelled_at=appt.cancelled_at,
        cancellation_reason=appt.cancellation_reason,
        cancelled_by=appt.cancelled_by,
        rejected_at=appt.rejected_at,
        rejection_reason=appt.rejection_reason,
        no_show_at=appt.no_show_at,
        created_at=appt.created_at,
        line_items=[
            AppointmentLineItemRead(
                id=item.id,
                offering_id=item.offering_id,
                service_name=item.service_name,
                price=item.price,
                quantity=item.quantity,
                duration_minutes=item.duration_minutes,
            )
            for item in appt.line_items
        ],
    )


def _listing_role(user) -> ActorRole:
    if user.role == UserRole.PROVIDER.value:
        return ActorRole.PROVIDER
    return ActorRole.REQUESTER


def _transition(db: Session, dispatcher, appointment_id: UUID, user, change: AppointmentChange):
    outcome = engagement_service.transition_appointment(db, dispatcher, appointment_id, user, change)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return _appointment_to_read(outcome.value)


# =============================================================================
# Booking & Queries
# =============================================================================

@router.post("", response_model=AppointmentRead, status_code=201)
def book_appointment(
    data: AppointmentCreate,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    policy=Depends(get_policy),
    dispatcher=Depends(get_dispatcher),
):
    """
    Request an appointment in a provider's slot.

    Returns 409 when the slot is already held and 422 when the provider is
    not currently bookable.
    """
    if data.provider_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot book an appointment with yourself")

    outcome = engagement_service.book_appointment(
        db,
        policy,
        dispatcher,
        requester_id=user.id,
        provider_id=data.provider_id,
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        service_type=data.service_type,
        offering_ids=data.offering_ids,
        vehicle_id=data.vehicle_id,
        diagnosis_id=data.diagnosis_id,
        description=data.description,
        notes=data.notes,
        location_type=data.location_type,
        address=data.address,
    )
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return _appointment_to_read(outcome.value)


@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    view: str | None = Query(
        None,
        pattern="^(upcoming|past|active|pending|confirmed|in_progress|completed|cancelled|rejected|no_show)$",
    ),
    pagination: PaginationParams = Depends(get_pagination),
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's appointments, as provider or requester by account role."""
    items, total = appointment_service.list_appointments(
        db, user.id, _listing_role(user), view=view, pagination=pagination
    )
    return AppointmentListResponse(
        items=[_appointment_to_read(a) for a in items],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=pagination.pages_for(total),
    )


@router.get("/upcoming-count")
def get_upcoming_count(
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"count": appointment_service.upcoming_count(db, user.id, _listing_role(user))}


@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    appointment_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    outcome = appointment_service.get_appointment_for_actor(db, appointment_id, user)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return _appointment_to_read(outcome.value)


# =============================================================================
# Lifecycle
# =============================================================================

@router.post("/{appointment_id}/confirm", response_model=AppointmentRead)
def confirm_appointment(
    appointment_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    return _transition(db, dispatcher, appointment_id, user, AppointmentChange(AppointmentAction.CONFIRM))


@router.post("/{appointment_id}/reject", response_model=AppointmentRead)
def reject_appointment(
    appointment_id: UUID,
    data: AppointmentReject,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    change = AppointmentChange(AppointmentAction.REJECT, reason=data.reason)
    return _transition(db, dispatcher, appointment_id, user, change)


@router.post("/{appointment_id}/start", response_model=AppointmentRead)
def start_appointment(
    appointment_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    return _transition(db, dispatcher, appointment_id, user, AppointmentChange(AppointmentAction.START))


@router.post("/{appointment_id}/complete", response_model=AppointmentRead)
def complete_appointment(
    appointment_id: UUID,
    data: AppointmentComplete | None = None,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    """Complete an appointment; final cost defaults to the estimate."""
    change = AppointmentChange(
        AppointmentAction.COMPLETE, final_cost=data.final_cost if data else None
    )
    return _transition(db, dispatcher, appointment_id, user, change)


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentReason | None = None,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    change = AppointmentChange(AppointmentAction.CANCEL, reason=data.reason if data else None)
    return _transition(db, dispatcher, appointment_id, user, change)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    """Move an appointment to a new slot; it returns to pending."""
    change = AppointmentChange(
        AppointmentAction.RESCHEDULE,
        new_date=data.scheduled_date,
        new_time=data.scheduled_time,
    )
    return _transition(db, dispatcher, appointment_id, user, change)


@router.post("/{appointment_id}/no-show", response_model=AppointmentRead)
def mark_no_show(
    appointment_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    return _transition(db, dispatcher, appointment_id, user, AppointmentChange(AppointmentAction.NO_SHOW))
