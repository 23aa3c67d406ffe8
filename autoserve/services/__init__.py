"""Service layer modules."""

# Import service modules (not individual functions) for cleaner access
from autoserve.services import policy_service
from autoserve.services import allowance_service
from autoserve.services import lead_service
from autoserve.services import appointment_service
from autoserve.services import subscription_service
from autoserve.services import payment_service
from autoserve.services import package_service
from autoserve.services import vehicle_service
from autoserve.services import review_service
from autoserve.services import notification_service
from autoserve.services import diagnostic_engine
from autoserve.services import engagement_service

__all__ = [
    "allowance_service",
    "appointment_service",
    "diagnostic_engine",
    "engagement_service",
    "lead_service",
    "notification_service",
    "package_service",
    "payment_service",
    "policy_service",
    "review_service",
    "subscription_service",
    "vehicle_service",
]
