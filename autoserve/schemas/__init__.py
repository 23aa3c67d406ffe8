"""Pydantic schemas for API request/response models."""

from autoserve.schemas.allowance import AllowanceBalanceRead, AllowancePurchaseRead
from autoserve.schemas.appointment import (
    AppointmentComplete,
    AppointmentCreate,
    AppointmentLineItemRead,
    AppointmentListResponse,
    AppointmentRead,
    AppointmentReason,
    AppointmentReject,
    AppointmentReschedule,
)
from autoserve.schemas.diagnosis import (
    DiagnosisCreate,
    DiagnosisRead,
    DiagnosisSubmissionRead,
    MatchingProvidersRead,
)
from autoserve.schemas.lead import LeadClose, LeadListResponse, LeadRead, LeadStatsRead
from autoserve.schemas.package import AllowancePackageRead, SubscriptionPlanRead
from autoserve.schemas.payment import PaymentRead, PaymentWebhook
from autoserve.schemas.review import ReviewCreate, ReviewRead
from autoserve.schemas.vehicle import VehicleCreate, VehicleRead

__all__ = [
    "AllowanceBalanceRead",
    "AllowancePackageRead",
    "AllowancePurchaseRead",
    "AppointmentComplete",
    "AppointmentCreate",
    "AppointmentLineItemRead",
    "AppointmentListResponse",
    "AppointmentRead",
    "AppointmentReason",
    "AppointmentReject",
    "AppointmentReschedule",
    "DiagnosisCreate",
    "DiagnosisRead",
    "DiagnosisSubmissionRead",
    "LeadClose",
    "LeadListResponse",
    "LeadRead",
    "LeadStatsRead",
    "MatchingProvidersRead",
    "PaymentRead",
    "PaymentWebhook",
    "ReviewCreate",
    "ReviewRead",
    "SubscriptionPlanRead",
    "VehicleCreate",
    "VehicleRead",
]
