"""Engagement event dispatch.

Events are emitted only after the owning transaction commits. Delivery is
fire-and-forget: a failing handler is logged and never affects the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from autoserve.db.types import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    DIAGNOSIS_COMPLETED = "diagnosis_completed"
    DIAGNOSIS_FAILED = "diagnosis_failed"
    LEAD_CREATED = "lead_created"
    LEAD_CONVERTED = "lead_converted"
    LEAD_CLOSED = "lead_closed"
    APPOINTMENT_REQUESTED = "appointment_requested"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_REJECTED = "appointment_rejected"
    APPOINTMENT_STARTED = "appointment_started"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_NO_SHOW = "appointment_no_show"


@dataclass(frozen=True)
class EngagementEvent:
    event_type: EventType
    subject_id: UUID
    recipient_ids: tuple[UUID, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


EventHandler = Callable[[EngagementEvent], None]


class NotificationDispatcher:
    """In-process fan-out of engagement events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: EngagementEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Notification handler failed for %s", event.event_type.value,
                    extra={"subject_id": str(event.subject_id)},
                )

    def emit_all(self, events: list[EngagementEvent]) -> None:
        for event in events:
            self.emit(event)


def log_event(event: EngagementEvent) -> None:
    """Default handler: record the event in the application log."""
    logger.info(
        "Engagement event %s",
        event.event_type.value,
        extra={
            "subject_id": str(event.subject_id),
            "recipients": [str(r) for r in event.recipient_ids],
        },
    )


dispatcher = NotificationDispatcher()
dispatcher.subscribe(log_event)
