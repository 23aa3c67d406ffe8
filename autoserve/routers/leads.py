"""Leads router - a provider's lead inbox and lead progression."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from autoserve.core.deps import failure_to_http, get_db, get_dispatcher, require_role
from autoserve.db.enums import LeadAction, LeadStatus, UserRole
from autoserve.schemas.lead import LeadClose, LeadListResponse, LeadRead, LeadStatsRead
from autoserve.services import engagement_service, lead_service
from autoserve.utils.pagination import PaginationParams, get_pagination

router = APIRouter()

require_provider = require_role(UserRole.PROVIDER.value)


def _lead_to_read(lead) -> LeadRead:
    """Convert Lead model to read schema; limited previews omit diagnosis details."""
    read = LeadRead(
        id=lead.id,
        diagnosis_id=lead.diagnosis_id,
        provider_id=lead.provider_id,
        status=lead.status,
        is_free_lead=lead.is_free_lead,
        is_limited_preview=lead.is_limited_preview,
        viewed_at=lead.viewed_at,
        contacted_at=lead.contacted_at,
        converted_at=lead.converted_at,
        closed_at=lead.closed_at,
        close_reason=lead.close_reason,
        created_at=lead.created_at,
        urgency=lead.diagnosis.urgency,
    )
    if not lead.is_limited_preview:
        read.symptoms = lead.diagnosis.symptoms
        read.diagnosis_result = lead.diagnosis.result
    return read


@router.get("", response_model=LeadListResponse)
def list_leads(
    status: LeadStatus | None = Query(None),
    pagination: PaginationParams = Depends(get_pagination),
    user=Depends(require_provider),
    db: Session = Depends(get_db),
):
    leads, total = lead_service.list_leads_for_provider(
        db, user.id, status=status, pagination=pagination
    )
    return LeadListResponse(
        items=[_lead_to_read(lead) for lead in leads],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=pagination.pages_for(total),
    )


@router.get("/stats", response_model=LeadStatsRead)
def get_lead_stats(
    user=Depends(require_provider),
    db: Session = Depends(get_db),
):
    return LeadStatsRead(**lead_service.lead_stats(db, user.id))


@router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    lead_id: UUID,
    user=Depends(require_provider),
    db: Session = Depends(get_db),
):
    lead = lead_service.get_lead(db, lead_id, provider_id=user.id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return _lead_to_read(lead)


def _advance(db: Session, dispatcher, lead_id: UUID, action: LeadAction, user, reason=None) -> LeadRead:
    outcome = engagement_service.advance_lead(db, dispatcher, lead_id, action, user, reason=reason)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return _lead_to_read(outcome.value)


@router.post("/{lead_id}/view", response_model=LeadRead)
def view_lead(
    lead_id: UUID,
    user=Depends(require_provider),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    return _advance(db, dispatcher, lead_id, LeadAction.VIEW, user)


@router.post("/{lead_id}/contact", response_model=LeadRead)
def contact_lead(
    lead_id: UUID,
    user=Depends(require_provider),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    return _advance(db, dispatcher, lead_id, LeadAction.CONTACT, user)


@router.post("/{lead_id}/convert", response_model=LeadRead)
def convert_lead(
    lead_id: UUID,
    user=Depends(require_provider),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    return _advance(db, dispatcher, lead_id, LeadAction.CONVERT, user)


@router.post("/{lead_id}/close", response_model=LeadRead)
def close_lead(
    lead_id: UUID,
    data: LeadClose | None = None,
    user=Depends(require_provider),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    """Close a lead. Closing is terminal."""
    return _advance(db, dispatcher, lead_id, LeadAction.CLOSE, user, reason=data.reason if data else None)
