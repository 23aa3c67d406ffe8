"""SQLAlchemy ORM models."""

from autoserve.db.models.accounts import (
    ProviderProfile,
    Region,
    User,
    Vehicle,
    provider_service_regions,
)
from autoserve.db.models.allowances import (
    AccountAllowance,
    AllowanceLedgerEntry,
    AllowancePackage,
    AllowancePurchase,
    ProviderSubscription,
    SubscriptionPlan,
)
from autoserve.db.models.appointments import Appointment, AppointmentLineItem, ServiceOffering
from autoserve.db.models.diagnoses import Diagnosis
from autoserve.db.models.leads import Lead, LeadActivity
from autoserve.db.models.payments import Payment
from autoserve.db.models.reviews import Review
from autoserve.db.models.settings import AppSetting

__all__ = [
    "AccountAllowance",
    "AllowanceLedgerEntry",
    "AllowancePackage",
    "AllowancePurchase",
    "AppSetting",
    "Appointment",
    "AppointmentLineItem",
    "Diagnosis",
    "Lead",
    "LeadActivity",
    "Payment",
    "ProviderProfile",
    "ProviderSubscription",
    "Region",
    "Review",
    "ServiceOffering",
    "SubscriptionPlan",
    "User",
    "Vehicle",
    "provider_service_regions",
]
