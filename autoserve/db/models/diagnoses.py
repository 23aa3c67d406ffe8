"""Diagnosis requests."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from autoserve.db.base import Base
from autoserve.db.enums import ConsumptionSource, DiagnosisStatus, UrgencyLevel
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow


class Diagnosis(Base):
    """
    A requester's diagnostic request and its result.

    A failed diagnosis keeps the credit it consumed.
    """

    __tablename__ = "diagnoses"
    __table_args__ = (
        enum_check("status", DiagnosisStatus, "ck_diagnoses_status"),
        enum_check("consumption_source", ConsumptionSource, "ck_diagnoses_consumption_source"),
        Index("idx_diagnoses_requester", "requester_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    vehicle_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True
    )
    region_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("regions.id", ondelete="SET NULL"), nullable=True
    )

    symptoms: Mapped[str] = mapped_column(Text, nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=DiagnosisStatus.PROCESSING.value, nullable=False
    )
    is_free: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumption_source: Mapped[str] = mapped_column(String(20), nullable=False)

    # Result
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    urgency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    @property
    def is_completed(self) -> bool:
        return self.status == DiagnosisStatus.COMPLETED.value

    @property
    def is_urgent(self) -> bool:
        return self.urgency in (UrgencyLevel.HIGH.value, UrgencyLevel.CRITICAL.value)
