"""Account and provider profile enums."""

from enum import Enum


class UserRole(str, Enum):
    """Account role. Requesters are drivers; providers are mechanics/workshops."""

    REQUESTER = "requester"
    PROVIDER = "provider"
    ADMIN = "admin"


class KycStatus(str, Enum):
    """Provider identity verification status (owned by the KYC subsystem)."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
