"""Lead qualification pipeline.

Turns a completed diagnosis into leads for matching providers and moves
leads through new -> viewed -> contacted -> converted, with close allowed
from any non-terminal status. Transitions are compare-and-swap updates on
the current status so a concurrent second caller sees invalid_transition.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autoserve.core.outcomes import FailureKind, Outcome, invalid_transition, not_found
from autoserve.core.structured_logging import build_log_context
from autoserve.db.enums import (
    LEAD_TRANSITIONS,
    AllowanceKind,
    KycStatus,
    LeadAction,
    LeadActivityType,
    LeadStatus,
    UserRole,
)
from autoserve.db.models import Diagnosis, Lead, LeadActivity, ProviderProfile, Region, User
from autoserve.db.types import utcnow
from autoserve.services import allowance_service
from autoserve.services.policy_service import EngagementPolicy
from autoserve.utils.geo import haversine_km
from autoserve.utils.pagination import PaginationParams, paginate_query

logger = logging.getLogger(__name__)

# Timestamp column set when a lead reaches each status
_TRANSITION_TIMESTAMPS: dict[LeadStatus, str] = {
    LeadStatus.VIEWED: "viewed_at",
    LeadStatus.CONTACTED: "contacted_at",
    LeadStatus.CONVERTED: "converted_at",
    LeadStatus.CLOSED: "closed_at",
}

_ACTIVITY_FOR_STATUS: dict[LeadStatus, LeadActivityType] = {
    LeadStatus.VIEWED: LeadActivityType.VIEWED,
    LeadStatus.CONTACTED: LeadActivityType.CONTACTED,
    LeadStatus.CONVERTED: LeadActivityType.CONVERTED,
    LeadStatus.CLOSED: LeadActivityType.CLOSED,
}


@dataclass
class MatchCriteria:
    """Optional overrides for provider matching."""

    region_id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    limit: int | None = None
    exclude_provider_ids: set[UUID] = field(default_factory=set)


# =============================================================================
# Activity log
# =============================================================================


def log_lead_activity(
    db: Session,
    lead_id: UUID,
    activity_type: LeadActivityType,
    actor_id: UUID | None = None,
    description: str | None = None,
    details: dict | None = None,
) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead_id,
        actor_id=actor_id,
        activity_type=activity_type.value,
        description=description,
        details=details,
    )
    db.add(activity)
    db.flush()  # Don't commit - let caller control transaction
    return activity


# =============================================================================
# Matching
# =============================================================================


def match_providers(
    db: Session,
    diagnosis_id: UUID,
    criteria: MatchCriteria | None = None,
    policy: EngagementPolicy | None = None,
) -> Outcome[list[UUID]]:
    """
    Rank providers eligible to receive a lead for a diagnosis.

    Eligible: active provider account, available, KYC approved, not the
    requester, and serving the region when one is given. Ordering:
    priority-listed first, then nearest (providers without coordinates
    after those with), then highest rated. Pure read.
    """
    criteria = criteria or MatchCriteria()
    policy = policy or EngagementPolicy()

    diagnosis = db.get(Diagnosis, diagnosis_id)
    if diagnosis is None:
        return not_found("Diagnosis", diagnosis_id)

    region_id = criteria.region_id if criteria.region_id is not None else diagnosis.region_id
    latitude = criteria.latitude if criteria.latitude is not None else diagnosis.latitude
    longitude = criteria.longitude if criteria.longitude is not None else diagnosis.longitude
    limit = criteria.limit or policy.max_matched_providers

    query = (
        db.query(ProviderProfile)
        .join(User, User.id == ProviderProfile.user_id)
        .filter(
            User.is_active.is_(True),
            User.role == UserRole.PROVIDER.value,
            ProviderProfile.is_available.is_(True),
            ProviderProfile.kyc_status == KycStatus.APPROVED.value,
            ProviderProfile.user_id != diagnosis.requester_id,
        )
    )
    if region_id is not None:
        query = query.filter(
            or_(
                ProviderProfile.region_id == region_id,
                ProviderProfile.service_regions.any(Region.id == region_id),
            )
        )

    already_offered = {
        row.provider_id
        for row in db.query(Lead.provider_id).filter(Lead.diagnosis_id == diagnosis_id).all()
    }
    excluded = already_offered | set(criteria.exclude_provider_ids)

    candidates = [p for p in query.all() if p.user_id not in excluded]

    def _distance(profile: ProviderProfile) -> float | None:
        if latitude is None or longitude is None:
            return None
        if profile.latitude is None or profile.longitude is None:
            return None
        return haversine_km(latitude, longitude, profile.latitude, profile.longitude)

    def _rank(profile: ProviderProfile) -> tuple:
        distance = _distance(profile)
        return (
            not profile.is_priority_listed,
            distance is None,
            distance if distance is not None else 0.0,
            -(profile.rating or Decimal("0")),
            str(profile.user_id),
        )

    ranked = sorted(candidates, key=_rank)[:limit]
    return Outcome.success([profile.user_id for profile in ranked])


# =============================================================================
# Lead creation
# =============================================================================


def create_lead(
    db: Session,
    diagnosis_id: UUID,
    provider_id: UUID,
    policy: EngagementPolicy | None = None,
) -> Outcome[Lead]:
    """
    Offer a diagnosis to one provider, spending one of their lead credits.

    With no credit left the lead is still delivered as a limited preview
    when the policy allows it; otherwise out_of_credit is returned. The
    credit and the lead are written together or not at all. Does not commit.
    """
    policy = policy or EngagementPolicy()
    log_context = build_log_context(provider_id=provider_id, diagnosis_id=diagnosis_id)

    diagnosis = db.get(Diagnosis, diagnosis_id)
    if diagnosis is None:
        return not_found("Diagnosis", diagnosis_id)
    if not diagnosis.is_completed:
        return invalid_transition("diagnosis", diagnosis.status, "create a lead for")

    profile = db.query(ProviderProfile).filter(ProviderProfile.user_id == provider_id).first()
    if profile is None:
        return not_found("Provider", provider_id)
    if not profile.is_bookable:
        return Outcome.fail(
            FailureKind.PROVIDER_UNAVAILABLE,
            "Provider is not accepting leads",
            provider_id=str(provider_id),
        )

    existing = (
        db.query(Lead)
        .filter(Lead.diagnosis_id == diagnosis_id, Lead.provider_id == provider_id)
        .first()
    )
    if existing:
        return Outcome.fail(
            FailureKind.INVALID_TRANSITION,
            "A lead already exists for this provider and diagnosis",
            lead_id=str(existing.id),
        )

    lead_id = uuid.uuid4()
    try:
        with db.begin_nested():
            consumed = allowance_service.consume(
                db,
                provider_id,
                AllowanceKind.LEAD,
                reference_type="lead",
                reference_id=lead_id,
            )
            if not consumed.ok and not policy.allow_limited_preview_leads:
                logger.info("Provider out of lead credits", extra=log_context)
                return Outcome.from_failure(consumed.failure)

            consumption = consumed.value if consumed.ok else None
            lead = Lead(
                id=lead_id,
                diagnosis_id=diagnosis.id,
                provider_id=provider_id,
                requester_id=diagnosis.requester_id,
                status=LeadStatus.NEW.value,
                is_free_lead=bool(consumption and consumption.is_complimentary),
                is_limited_preview=consumption is None,
                consumption_source=consumption.source.value if consumption else None,
            )
            db.add(lead)
            db.flush()
    except IntegrityError:
        # Concurrent create for the same pair; savepoint undid our consume
        return Outcome.fail(
            FailureKind.INVALID_TRANSITION,
            "A lead already exists for this provider and diagnosis",
        )

    db.query(ProviderProfile).filter(ProviderProfile.id == profile.id).update(
        {ProviderProfile.total_leads_received: ProviderProfile.total_leads_received + 1},
        synchronize_session=False,
    )
    log_lead_activity(
        db,
        lead.id,
        LeadActivityType.CREATED,
        description="Limited preview lead" if lead.is_limited_preview else "Lead created",
        details={"consumption_source": lead.consumption_source},
    )
    logger.info("Lead created", extra=build_log_context(provider_id=provider_id, lead_id=lead.id))
    return Outcome.success(lead)


# =============================================================================
# Transitions
# =============================================================================


def advance(
    db: Session,
    lead_id: UUID,
    action: LeadAction | str,
    actor_id: UUID | None = None,
    reason: str | None = None,
) -> Outcome[Lead]:
    """Apply a guarded lead transition. Does not commit."""
    action = LeadAction(action)
    lead = db.query(Lead).populate_existing().filter(Lead.id == lead_id).first()
    if lead is None:
        return not_found("Lead", lead_id)

    sources, target = LEAD_TRANSITIONS[action]
    current = LeadStatus(lead.status)
    if current not in sources:
        return invalid_transition("lead", current.value, action.value)

    now = utcnow()
    values: dict = {
        Lead.status: target.value,
        getattr(Lead, _TRANSITION_TIMESTAMPS[target]): now,
        Lead.updated_at: now,
    }
    if target == LeadStatus.CLOSED:
        values[Lead.close_reason] = reason

    updated = (
        db.query(Lead)
        .filter(Lead.id == lead_id, Lead.status == current.value)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        latest = db.query(Lead.status).filter(Lead.id == lead_id).scalar()
        return invalid_transition("lead", latest or current.value, action.value)

    if target == LeadStatus.CONVERTED:
        db.query(ProviderProfile).filter(ProviderProfile.user_id == lead.provider_id).update(
            {ProviderProfile.jobs_completed: ProviderProfile.jobs_completed + 1},
            synchronize_session=False,
        )

    log_lead_activity(
        db,
        lead_id,
        _ACTIVITY_FOR_STATUS[target],
        actor_id=actor_id,
        description=reason,
        details={"from": current.value, "to": target.value},
    )
    db.refresh(lead)
    return Outcome.success(lead)


# =============================================================================
# Queries
# =============================================================================


def get_lead(db: Session, lead_id: UUID, provider_id: UUID | None = None) -> Lead | None:
    """Fetch a lead, scoped to its provider when given."""
    query = db.query(Lead).filter(Lead.id == lead_id)
    if provider_id is not None:
        query = query.filter(Lead.provider_id == provider_id)
    return query.first()


def get_lead_for_requester(db: Session, lead_id: UUID, requester_id: UUID) -> Lead | None:
    return db.query(Lead).filter(Lead.id == lead_id, Lead.requester_id == requester_id).first()


def list_leads_for_provider(
    db: Session,
    provider_id: UUID,
    status: LeadStatus | None = None,
    pagination: PaginationParams | None = None,
) -> tuple[list[Lead], int]:
    pagination = pagination or PaginationParams()
    query = db.query(Lead).filter(Lead.provider_id == provider_id)
    if status:
        query = query.filter(Lead.status == status.value)
    query = query.order_by(Lead.created_at.desc(), Lead.id.desc())
    return paginate_query(query, pagination)


def lead_stats(db: Session, provider_id: UUID, now: datetime | None = None) -> dict:
    """Counts by status, this month's leads and conversion rate."""
    now = now or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    rows = (
        db.query(Lead.status, func.count(Lead.id))
        .filter(Lead.provider_id == provider_id)
        .group_by(Lead.status)
        .all()
    )
    by_status = {status.value: 0 for status in LeadStatus}
    for status, count in rows:
        by_status[status] = count
    total = sum(by_status.values())

    this_month = (
        db.query(func.count(Lead.id))
        .filter(Lead.provider_id == provider_id, Lead.created_at >= month_start)
        .scalar()
    ) or 0

    converted = by_status[LeadStatus.CONVERTED.value]
    return {
        "total": total,
        "by_status": by_status,
        "this_month": this_month,
        "conversion_rate": round(converted / total * 100, 1) if total else 0.0,
    }
