"""Leads and lead activity log."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoserve.db.base import Base
from autoserve.db.enums import ConsumptionSource, LeadActivityType, LeadStatus
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow

if TYPE_CHECKING:
    from autoserve.db.models.diagnoses import Diagnosis


class Lead(Base):
    """
    A completed diagnosis offered to one matching provider.

    Status only moves through lead_service.advance.
    `is_limited_preview` marks a lead delivered without a credit.
    """

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("diagnosis_id", "provider_id", name="uq_leads_diagnosis_provider"),
        enum_check("status", LeadStatus, "ck_leads_status"),
        enum_check("consumption_source", ConsumptionSource, "ck_leads_consumption_source"),
        Index("idx_leads_provider_status", "provider_id", "status", "created_at"),
        Index("idx_leads_requester", "requester_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    diagnosis_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("diagnoses.id", ondelete="CASCADE"), nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(String(20), default=LeadStatus.NEW.value, nullable=False)
    is_free_lead: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_limited_preview: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumption_source: Mapped[str | None] = mapped_column(String(20), nullable=True)

    viewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    contacted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    close_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    diagnosis: Mapped["Diagnosis"] = relationship()
    activities: Mapped[list["LeadActivity"]] = relationship(
        back_populates="lead", order_by="LeadActivity.created_at"
    )


class LeadActivity(Base):
    """Append-only lead history entry."""

    __tablename__ = "lead_activities"
    __table_args__ = (
        enum_check("activity_type", LeadActivityType, "ck_lead_activities_type"),
        Index("idx_lead_activities_lead", "lead_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    activity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)

    lead: Mapped["Lead"] = relationship(back_populates="activities")
