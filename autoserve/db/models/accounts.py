"""Accounts, provider profiles, regions and vehicles."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoserve.db.base import Base
from autoserve.db.enums import KycStatus, UserRole
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow

if TYPE_CHECKING:
    from autoserve.db.models.allowances import AccountAllowance


provider_service_regions = Table(
    "provider_service_regions",
    Base.metadata,
    Column(
        "provider_profile_id",
        Uuid,
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("region_id", Integer, ForeignKey("regions.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """
    An account on either side of the marketplace.

    Requesters (drivers) consume diagnosis credits; providers (mechanics)
    consume lead credits and own a ProviderProfile.
    """

    __tablename__ = "users"
    __table_args__ = (enum_check("role", UserRole, "ck_users_role"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    provider_profile: Mapped["ProviderProfile | None"] = relationship(
        back_populates="user", uselist=False
    )
    allowances: Mapped[list["AccountAllowance"]] = relationship(back_populates="account")
    vehicles: Mapped[list["Vehicle"]] = relationship(back_populates="owner")


class Region(Base):
    __tablename__ = "regions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)


class ProviderProfile(Base):
    """
    Provider business profile.

    `kyc_status` and `is_available` are owned by the identity/KYC subsystem;
    the engagement core only reads them as booking and matching preconditions.
    """

    __tablename__ = "provider_profiles"
    __table_args__ = (
        enum_check("kyc_status", KycStatus, "ck_provider_profiles_kyc_status"),
        Index("idx_provider_profiles_matchable", "is_available", "kyc_status"),
        Index("idx_provider_profiles_region", "region_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    region_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("regions.id", ondelete="SET NULL"), nullable=True
    )
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    kyc_status: Mapped[str] = mapped_column(
        String(20), default=KycStatus.PENDING.value, nullable=False
    )
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_priority_listed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0"), nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    jobs_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_leads_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="provider_profile")
    region: Mapped["Region | None"] = relationship()
    service_regions: Mapped[list["Region"]] = relationship(secondary=provider_service_regions)

    @property
    def is_kyc_approved(self) -> bool:
        return self.kyc_status == KycStatus.APPROVED.value

    @property
    def is_bookable(self) -> bool:
        return self.is_available and self.is_kyc_approved


class Vehicle(Base):
    """Requester-owned vehicle. At most one per owner is primary."""

    __tablename__ = "vehicles"
    __table_args__ = (Index("idx_vehicles_owner", "owner_id", "is_primary"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mileage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fuel_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)

    owner: Mapped["User"] = relationship(back_populates="vehicles")

    @property
    def display_name(self) -> str:
        parts = [str(self.year) if self.year else None, self.make, self.model]
        return " ".join(p for p in parts if p)
