"""Payment records."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from autoserve.db.base import Base
from autoserve.db.enums import PaymentStatus, PaymentTargetKind
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow


class Payment(Base):
    """
    A payment for a credit package or subscription.

    The target is stored as (`target_kind`, `target_id`, `units`) and
    decoded into a PaymentTarget by the payment service.
    Settlement happens outside this system; only the callback is handled.
    """

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("payment_reference", name="uq_payments_reference"),
        enum_check("status", PaymentStatus, "ck_payments_status"),
        enum_check("target_kind", PaymentTargetKind, "ck_payments_target_kind"),
        Index("idx_payments_account", "account_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_reference: Mapped[str] = mapped_column(String(40), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    provider: Mapped[str] = mapped_column(String(30), default="paystack", nullable=False)
    provider_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GHS", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )

    # Tagged target
    target_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    units: Mapped[int | None] = mapped_column(Integer, nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
