"""Diagnoses router - submit symptoms, read results, preview matching providers."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from autoserve.core.deps import (
    failure_to_http,
    get_current_user,
    get_db,
    get_diagnostic_engine,
    get_dispatcher,
    get_policy,
)
from autoserve.db.enums import UserRole
from autoserve.db.models import Diagnosis
from autoserve.schemas.diagnosis import (
    DiagnosisCreate,
    DiagnosisRead,
    DiagnosisSubmissionRead,
    MatchingProvidersRead,
)
from autoserve.services import engagement_service, lead_service

router = APIRouter()


def diagnosis_to_read(diagnosis) -> DiagnosisRead:
    """Convert Diagnosis model to read schema."""
    return DiagnosisRead(
        id=diagnosis.id,
        requester_id=diagnosis.requester_id,
        vehicle_id=diagnosis.vehicle_id,
        region_id=diagnosis.region_id,
        symptoms=diagnosis.symptoms,
        status=diagnosis.status,
        is_free=diagnosis.is_free,
        consumption_source=diagnosis.consumption_source,
        result=diagnosis.result,
        urgency=diagnosis.urgency,
        confidence_score=diagnosis.confidence_score,
        error_message=diagnosis.error_message,
        completed_at=diagnosis.completed_at,
        created_at=diagnosis.created_at,
    )


def _get_own_diagnosis(db: Session, diagnosis_id: UUID, user) -> Diagnosis:
    diagnosis = db.get(Diagnosis, diagnosis_id)
    if not diagnosis:
        raise HTTPException(status_code=404, detail="Diagnosis not found")
    if diagnosis.requester_id != user.id and user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=404, detail="Diagnosis not found")
    return diagnosis


@router.post("", response_model=DiagnosisSubmissionRead, status_code=201)
def submit_diagnosis(
    data: DiagnosisCreate,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    policy=Depends(get_policy),
    engine=Depends(get_diagnostic_engine),
    dispatcher=Depends(get_dispatcher),
):
    """
    Submit symptoms for diagnosis.

    Spends one diagnosis credit (402 when none remain). A failed engine run
    is returned with status "failed" and still counts against the balance.
    """
    outcome = engagement_service.submit_diagnosis(
        db,
        policy,
        engine,
        dispatcher,
        requester_id=user.id,
        symptoms=data.symptoms,
        vehicle_id=data.vehicle_id,
        region_id=data.region_id,
        latitude=data.latitude,
        longitude=data.longitude,
    )
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    submission = outcome.value
    return DiagnosisSubmissionRead(
        diagnosis=diagnosis_to_read(submission.diagnosis),
        lead_count=len(submission.leads),
        skipped_provider_ids=submission.skipped_provider_ids,
    )


@router.get("/{diagnosis_id}", response_model=DiagnosisRead)
def get_diagnosis(
    diagnosis_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return diagnosis_to_read(_get_own_diagnosis(db, diagnosis_id, user))


@router.get("/{diagnosis_id}/matching-providers", response_model=MatchingProvidersRead)
def get_matching_providers(
    diagnosis_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    policy=Depends(get_policy),
):
    """Ranked providers who would receive a lead for this diagnosis."""
    diagnosis = _get_own_diagnosis(db, diagnosis_id, user)
    outcome = lead_service.match_providers(db, diagnosis.id, policy=policy)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return MatchingProvidersRead(provider_ids=outcome.value)
