"""Structured logging helpers (PII-safe) and root logger setup."""

import logging
from typing import Any
from uuid import UUID

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the process."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level.upper())
        return
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    account_id: UUID | str | None = None,
    provider_id: UUID | str | None = None,
    lead_id: UUID | str | None = None,
    appointment_id: UUID | str | None = None,
    diagnosis_id: UUID | str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only)."""
    context: dict[str, Any] = {}
    if account_id:
        context["account_id"] = str(account_id)
    if provider_id:
        context["provider_id"] = str(provider_id)
    if lead_id:
        context["lead_id"] = str(lead_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if diagnosis_id:
        context["diagnosis_id"] = str(diagnosis_id)
    if request_id:
        context["request_id"] = request_id
    return context
