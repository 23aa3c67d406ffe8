"""Provider service offerings, appointments and line items."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoserve.db.base import Base
from autoserve.db.enums import ActorRole, AppointmentStatus, LocationType, ServiceType
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow

_SLOT_HOLDING_PREDICATE = "status IN ('pending', 'confirmed')"


class ServiceOffering(Base):
    """A priced service a provider offers (e.g. "Brake pad replacement")."""

    __tablename__ = "service_offerings"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_service_offerings_price"),
        CheckConstraint("duration_minutes > 0", name="ck_service_offerings_duration"),
        Index("idx_service_offerings_provider", "provider_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)


class Appointment(Base):
    """
    Booked service appointment between a requester and a provider.

    Slot exclusivity: at most one pending/confirmed appointment per
    (provider, date, time), enforced by a partial unique index.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        enum_check("status", AppointmentStatus, "ck_appointments_status"),
        enum_check("service_type", ServiceType, "ck_appointments_service_type"),
        enum_check("location_type", LocationType, "ck_appointments_location_type"),
        Index(
            "uq_appointments_active_slot",
            "provider_id",
            "scheduled_date",
            "scheduled_time",
            unique=True,
            postgresql_where=text(_SLOT_HOLDING_PREDICATE),
            sqlite_where=text(_SLOT_HOLDING_PREDICATE),
        ),
        Index("idx_appointments_provider_date", "provider_id", "scheduled_date"),
        Index("idx_appointments_requester_date", "requester_id", "scheduled_date"),
        Index("idx_appointments_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    diagnosis_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("diagnoses.id", ondelete="SET NULL"), nullable=True
    )
    vehicle_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True
    )

    # Scheduling
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    estimated_duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)

    # Service
    service_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_type: Mapped[str] = mapped_column(
        String(30), default=LocationType.PROVIDER_SHOP.value, nullable=False
    )
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.PENDING.value, nullable=False
    )

    # Pricing
    estimated_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    final_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="GHS", nullable=False)

    # Lifecycle
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    no_show_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    line_items: Mapped[list["AppointmentLineItem"]] = relationship(
        back_populates="appointment", cascade="all, delete-orphan"
    )

    @property
    def holds_slot(self) -> bool:
        return self.status in (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

    def role_of(self, account_id: uuid.UUID) -> ActorRole | None:
        if account_id == self.provider_id:
            return ActorRole.PROVIDER
        if account_id == self.requester_id:
            return ActorRole.REQUESTER
        return None


class AppointmentLineItem(Base):
    """Priced service line on an appointment (snapshot of the offering)."""

    __tablename__ = "appointment_line_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_appointment_line_items_quantity"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    offering_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("service_offerings.id", ondelete="SET NULL"), nullable=True
    )
    service_name: Mapped[str] = mapped_column(String(150), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="line_items")
