"""Diagnostic engine client.

The engine analyses a vehicle context and free-text symptoms and returns a
structured assessment. It is an external collaborator reached over HTTP.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from autoserve.core.config import settings
from autoserve.db.enums import UrgencyLevel

logger = logging.getLogger(__name__)


@dataclass
class VehicleContext:
    make: str | None = None
    model: str | None = None
    year: int | None = None
    mileage: int | None = None
    fuel_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "mileage": self.mileage,
            "fuel_type": self.fuel_type,
        }


@dataclass
class DiagnosticResult:
    """Successful engine assessment."""

    summary: str
    urgency: str
    confidence_score: float | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary, **self.details}


@dataclass
class DiagnosticFailure:
    message: str


class DiagnosticEngine(ABC):
    """Abstract diagnostic engine."""

    @abstractmethod
    def diagnose(
        self, vehicle: VehicleContext, symptoms: str
    ) -> DiagnosticResult | DiagnosticFailure:
        """Analyse symptoms for a vehicle."""
        pass


def _normalize_urgency(value: Any) -> str:
    try:
        return UrgencyLevel(str(value).lower()).value
    except ValueError:
        return UrgencyLevel.MEDIUM.value


class HttpDiagnosticEngine(DiagnosticEngine):
    """Engine reached over HTTP with a JSON request/response."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def diagnose(
        self, vehicle: VehicleContext, symptoms: str
    ) -> DiagnosticResult | DiagnosticFailure:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/diagnose",
                    headers=headers,
                    json={"vehicle": vehicle.to_dict(), "symptoms": symptoms},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Diagnostic engine returned %s", e.response.status_code)
            return DiagnosticFailure(f"Diagnostic engine error ({e.response.status_code})")
        except httpx.HTTPError as e:
            logger.warning("Diagnostic engine request failed: %s", type(e).__name__)
            return DiagnosticFailure("Diagnostic engine unreachable")
        except ValueError:
            return DiagnosticFailure("Diagnostic engine returned invalid JSON")

        if not isinstance(data, dict) or not data.get("summary"):
            return DiagnosticFailure("Diagnostic engine returned an incomplete result")

        confidence = data.get("confidence_score")
        if confidence is not None:
            try:
                confidence = float(confidence)
            except (TypeError, ValueError):
                logger.warning("Diagnostic engine returned a non-numeric confidence score")
                return DiagnosticFailure("Diagnostic engine returned an incomplete result")

        return DiagnosticResult(
            summary=str(data["summary"]),
            urgency=_normalize_urgency(data.get("urgency")),
            confidence_score=confidence,
            details={k: v for k, v in data.items() if k not in ("summary", "urgency", "confidence_score")},
        )


class UnconfiguredDiagnosticEngine(DiagnosticEngine):
    """Placeholder used when no engine URL is configured."""

    def diagnose(
        self, vehicle: VehicleContext, symptoms: str
    ) -> DiagnosticResult | DiagnosticFailure:
        return DiagnosticFailure("Diagnostic engine is not configured")


def get_diagnostic_engine() -> DiagnosticEngine:
    """Build the engine from settings."""
    if not settings.DIAGNOSTIC_ENGINE_URL:
        return UnconfiguredDiagnosticEngine()
    return HttpDiagnosticEngine(
        settings.DIAGNOSTIC_ENGINE_URL,
        api_key=settings.DIAGNOSTIC_ENGINE_API_KEY,
        timeout=settings.DIAGNOSTIC_ENGINE_TIMEOUT_SECONDS,
    )
