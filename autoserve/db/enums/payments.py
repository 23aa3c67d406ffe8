"""Payment enums."""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentTargetKind(str, Enum):
    """Storage tag for the PaymentTarget union."""

    DIAGNOSIS_PURCHASE = "diagnosis_purchase"
    LEAD_PURCHASE = "lead_purchase"
    SUBSCRIPTION = "subscription"
