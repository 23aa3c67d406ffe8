"""Provider reviews and rating."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autoserve.core.outcomes import FailureKind, Outcome, invalid_transition, not_found
from autoserve.db.enums import AppointmentStatus, LeadStatus
from autoserve.db.models import Appointment, ProviderProfile, Review
from autoserve.services import lead_service

logger = logging.getLogger(__name__)


def _update_rating(db: Session, provider_id: UUID, rating: int) -> None:
    """Fold one rating into the provider's running mean (compare-and-swap on the count)."""
    for _attempt in range(3):
        profile = (
            db.query(ProviderProfile)
            .populate_existing()
            .filter(ProviderProfile.user_id == provider_id)
            .first()
        )
        if profile is None:
            return
        count = profile.rating_count
        current = Decimal(str(profile.rating or 0))
        new_rating = ((current * count + rating) / (count + 1)).quantize(Decimal("0.01"))
        updated = (
            db.query(ProviderProfile)
            .filter(ProviderProfile.id == profile.id, ProviderProfile.rating_count == count)
            .update(
                {
                    ProviderProfile.rating: new_rating,
                    ProviderProfile.rating_count: count + 1,
                },
                synchronize_session=False,
            )
        )
        if updated == 1:
            return
    raise RuntimeError(f"Could not update rating for provider {provider_id}")


def _already_reviewed() -> Outcome[Review]:
    return Outcome.fail(FailureKind.INVALID_TRANSITION, "This engagement has already been reviewed")


def submit_review(
    db: Session,
    requester_id: UUID,
    rating: int,
    comment: str | None = None,
    lead_id: UUID | None = None,
    appointment_id: UUID | None = None,
) -> Outcome[Review]:
    """
    Review a provider after a converted lead or a completed appointment.

    One review per lead or appointment. The provider's rating is kept as
    a running mean.
    """
    if (lead_id is None) == (appointment_id is None):
        raise ValueError("Exactly one of lead_id or appointment_id is required")
    if not 1 <= rating <= 5:
        raise ValueError("rating must be between 1 and 5")

    if lead_id is not None:
        lead = lead_service.get_lead_for_requester(db, lead_id, requester_id)
        if lead is None:
            return not_found("Lead", lead_id)
        if lead.status != LeadStatus.CONVERTED.value:
            return invalid_transition("lead", lead.status, "review")
        provider_id = lead.provider_id
        existing = db.query(Review.id).filter(Review.lead_id == lead_id).first()
    else:
        appointment = (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.requester_id == requester_id)
            .first()
        )
        if appointment is None:
            return not_found("Appointment", appointment_id)
        if appointment.status != AppointmentStatus.COMPLETED.value:
            return invalid_transition("appointment", appointment.status, "review")
        provider_id = appointment.provider_id
        existing = db.query(Review.id).filter(Review.appointment_id == appointment_id).first()

    if existing:
        return _already_reviewed()

    review = Review(
        provider_id=provider_id,
        requester_id=requester_id,
        lead_id=lead_id,
        appointment_id=appointment_id,
        rating=rating,
        comment=comment,
    )
    try:
        with db.begin_nested():
            db.add(review)
            db.flush()
    except IntegrityError:
        return _already_reviewed()

    _update_rating(db, provider_id, rating)
    db.commit()
    db.refresh(review)
    logger.info("Review submitted for provider %s", provider_id)
    return Outcome.success(review)
