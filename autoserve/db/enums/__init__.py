"""Enum definitions for application constants."""

from autoserve.db.enums.accounts import KycStatus, UserRole
from autoserve.db.enums.allowances import (
    BILLING_PERIOD_DAYS,
    AllowanceKind,
    BillingPeriod,
    ConsumptionSource,
    LedgerEntryType,
    PurchaseStatus,
    SubscriptionStatus,
)
from autoserve.db.enums.appointments import (
    APPOINTMENT_ACTION_ROLES,
    APPOINTMENT_TRANSITIONS,
    DEFAULT_APPOINTMENT_STATUS,
    NON_TERMINAL_APPOINTMENT_STATUSES,
    SLOT_HOLDING_STATUSES,
    TERMINAL_APPOINTMENT_STATUSES,
    ActorRole,
    AppointmentAction,
    AppointmentStatus,
    LocationType,
    ServiceType,
)
from autoserve.db.enums.diagnoses import DiagnosisStatus, UrgencyLevel
from autoserve.db.enums.leads import (
    LEAD_TRANSITIONS,
    TERMINAL_LEAD_STATUSES,
    LeadAction,
    LeadActivityType,
    LeadStatus,
)
from autoserve.db.enums.payments import PaymentStatus, PaymentTargetKind
from autoserve.db.enums.settings import SettingValueType

__all__ = [
    "ActorRole",
    "AllowanceKind",
    "APPOINTMENT_ACTION_ROLES",
    "APPOINTMENT_TRANSITIONS",
    "AppointmentAction",
    "AppointmentStatus",
    "BILLING_PERIOD_DAYS",
    "BillingPeriod",
    "ConsumptionSource",
    "DEFAULT_APPOINTMENT_STATUS",
    "DiagnosisStatus",
    "KycStatus",
    "LEAD_TRANSITIONS",
    "LeadAction",
    "LeadActivityType",
    "LeadStatus",
    "LedgerEntryType",
    "LocationType",
    "NON_TERMINAL_APPOINTMENT_STATUSES",
    "PaymentStatus",
    "PaymentTargetKind",
    "PurchaseStatus",
    "SLOT_HOLDING_STATUSES",
    "ServiceType",
    "SettingValueType",
    "SubscriptionStatus",
    "TERMINAL_APPOINTMENT_STATUSES",
    "TERMINAL_LEAD_STATUSES",
    "UrgencyLevel",
    "UserRole",
]
