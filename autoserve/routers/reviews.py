"""Reviews router."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from autoserve.core.deps import failure_to_http, get_current_user, get_db
from autoserve.schemas.review import ReviewCreate, ReviewRead
from autoserve.services import review_service

router = APIRouter()


@router.post("", response_model=ReviewRead, status_code=201)
def submit_review(
    data: ReviewCreate,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Review a provider after a converted lead or a completed appointment."""
    outcome = review_service.submit_review(
        db,
        user.id,
        rating=data.rating,
        comment=data.comment,
        lead_id=data.lead_id,
        appointment_id=data.appointment_id,
    )
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    review = outcome.value
    return ReviewRead(
        id=review.id,
        provider_id=review.provider_id,
        lead_id=review.lead_id,
        appointment_id=review.appointment_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at,
    )
