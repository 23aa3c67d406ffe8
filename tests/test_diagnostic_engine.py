"""Tests for the HTTP diagnostic engine client."""

import httpx
import pytest

from autoserve.services import diagnostic_engine
from autoserve.services.diagnostic_engine import (
    DiagnosticFailure,
    DiagnosticResult,
    HttpDiagnosticEngine,
    UnconfiguredDiagnosticEngine,
    VehicleContext,
)

ENGINE_URL = "https://engine.test/v1/"


@pytest.fixture
def captured():
    return {}


def _patch_post(monkeypatch, captured, status_code=200, json=None, content=None, error=None):
    def fake_post(self, url, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        if error is not None:
            raise error
        request = httpx.Request("POST", url)
        if content is not None:
            return httpx.Response(status_code, content=content, request=request)
        return httpx.Response(status_code, json=json, request=request)

    monkeypatch.setattr(httpx.Client, "post", fake_post)


def test_successful_diagnosis(monkeypatch, captured):
    _patch_post(monkeypatch, captured, json={
        "summary": "Failing alternator",
        "urgency": "CRITICAL",
        "confidence_score": "0.91",
        "recommended_services": ["alternator replacement"],
    })
    engine = HttpDiagnosticEngine(ENGINE_URL, api_key="secret")

    result = engine.diagnose(VehicleContext(make="Toyota", model="Camry", year=2012), "Battery light on")

    assert isinstance(result, DiagnosticResult)
    assert result.urgency == "critical"
    assert result.confidence_score == pytest.approx(0.91)
    assert result.to_dict() == {
        "summary": "Failing alternator",
        "recommended_services": ["alternator replacement"],
    }
    assert captured["url"] == "https://engine.test/v1/diagnose"
    assert captured["headers"]["Authorization"] == "Bearer secret"
    assert captured["json"]["vehicle"]["make"] == "Toyota"
    assert captured["json"]["symptoms"] == "Battery light on"


def test_unknown_urgency_defaults_to_medium(monkeypatch, captured):
    _patch_post(monkeypatch, captured, json={"summary": "Loose heat shield", "urgency": "whenever"})

    result = HttpDiagnosticEngine(ENGINE_URL).diagnose(VehicleContext(), "Rattle at idle")

    assert result.urgency == "medium"
    assert "Authorization" not in captured["headers"]


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"status_code": 503, "json": {"error": "overloaded"}}, "Diagnostic engine error (503)"),
        ({"json": {"urgency": "high"}}, "Diagnostic engine returned an incomplete result"),
        (
            {"json": {"summary": "Slipping clutch", "confidence_score": "high"}},
            "Diagnostic engine returned an incomplete result",
        ),
        ({"content": b"<html>oops</html>"}, "Diagnostic engine returned invalid JSON"),
        ({"error": httpx.ConnectTimeout("timed out")}, "Diagnostic engine unreachable"),
    ],
)
def test_failures_are_reported_not_raised(monkeypatch, captured, kwargs, message):
    _patch_post(monkeypatch, captured, **kwargs)

    result = HttpDiagnosticEngine(ENGINE_URL).diagnose(VehicleContext(), "Smoke from exhaust")

    assert isinstance(result, DiagnosticFailure)
    assert result.message == message


def test_unconfigured_engine(monkeypatch):
    monkeypatch.setattr(diagnostic_engine.settings, "DIAGNOSTIC_ENGINE_URL", "")

    engine = diagnostic_engine.get_diagnostic_engine()

    assert isinstance(engine, UnconfiguredDiagnosticEngine)
    assert isinstance(engine.diagnose(VehicleContext(), "noise"), DiagnosticFailure)


def test_configured_engine_from_settings(monkeypatch):
    monkeypatch.setattr(diagnostic_engine.settings, "DIAGNOSTIC_ENGINE_URL", "https://engine.test")
    monkeypatch.setattr(diagnostic_engine.settings, "DIAGNOSTIC_ENGINE_TIMEOUT_SECONDS", 5.0)

    engine = diagnostic_engine.get_diagnostic_engine()

    assert isinstance(engine, HttpDiagnosticEngine)
    assert engine.timeout == 5.0
