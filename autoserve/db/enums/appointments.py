"""Appointment and scheduling enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: pending → confirmed → in_progress → completed
              ↘ rejected   ↘ cancelled
              ↘ cancelled
          any non-terminal → no_show
    """

    PENDING = "pending"  # Awaiting provider confirmation
    CONFIRMED = "confirmed"  # Provider accepted
    IN_PROGRESS = "in_progress"  # Service started
    COMPLETED = "completed"  # Service finished
    CANCELLED = "cancelled"  # Cancelled by either party
    REJECTED = "rejected"  # Provider declined
    NO_SHOW = "no_show"  # Marked administratively


class AppointmentAction(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    NO_SHOW = "no_show"


class ServiceType(str, Enum):
    DIAGNOSTIC = "diagnostic"
    REPAIR = "repair"
    MAINTENANCE = "maintenance"
    INSPECTION = "inspection"


class LocationType(str, Enum):
    PROVIDER_SHOP = "provider_shop"
    REQUESTER_LOCATION = "requester_location"


class ActorRole(str, Enum):
    """Which party triggered a transition."""

    REQUESTER = "requester"
    PROVIDER = "provider"
    ADMIN = "admin"


# Statuses that hold a provider's slot
SLOT_HOLDING_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})

TERMINAL_APPOINTMENT_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.REJECTED,
    AppointmentStatus.NO_SHOW,
})

NON_TERMINAL_APPOINTMENT_STATUSES = frozenset(AppointmentStatus) - TERMINAL_APPOINTMENT_STATUSES

# action -> (allowed source statuses, target status)
APPOINTMENT_TRANSITIONS: dict[AppointmentAction, tuple[frozenset[AppointmentStatus], AppointmentStatus]] = {
    AppointmentAction.CONFIRM: (frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED),
    AppointmentAction.REJECT: (frozenset({AppointmentStatus.PENDING}), AppointmentStatus.REJECTED),
    AppointmentAction.START: (frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.IN_PROGRESS),
    AppointmentAction.COMPLETE: (frozenset({AppointmentStatus.IN_PROGRESS}), AppointmentStatus.COMPLETED),
    AppointmentAction.CANCEL: (SLOT_HOLDING_STATUSES, AppointmentStatus.CANCELLED),
    AppointmentAction.RESCHEDULE: (SLOT_HOLDING_STATUSES, AppointmentStatus.PENDING),
    AppointmentAction.NO_SHOW: (NON_TERMINAL_APPOINTMENT_STATUSES, AppointmentStatus.NO_SHOW),
}

# Which roles may trigger each action
APPOINTMENT_ACTION_ROLES: dict[AppointmentAction, frozenset[ActorRole]] = {
    AppointmentAction.CONFIRM: frozenset({ActorRole.PROVIDER}),
    AppointmentAction.REJECT: frozenset({ActorRole.PROVIDER}),
    AppointmentAction.START: frozenset({ActorRole.PROVIDER}),
    AppointmentAction.COMPLETE: frozenset({ActorRole.PROVIDER}),
    AppointmentAction.CANCEL: frozenset({ActorRole.REQUESTER, ActorRole.PROVIDER}),
    AppointmentAction.RESCHEDULE: frozenset({ActorRole.REQUESTER, ActorRole.PROVIDER}),
    AppointmentAction.NO_SHOW: frozenset({ActorRole.ADMIN}),
}

DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.PENDING
