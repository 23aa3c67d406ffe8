"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database file per test (schema from the models)
- Account factories for requesters and providers
- A fake diagnostic engine and a recording event dispatcher
- HTTPX AsyncClient with dependency overrides and identity headers
"""
import os
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

# Configure before the app and settings are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["ENV"] = "test"

from autoserve.core.deps import (  # noqa: E402
    ACCOUNT_HEADER,
    get_db,
    get_diagnostic_engine,
    get_dispatcher,
    get_policy,
)
from autoserve.db.base import Base  # noqa: E402
from autoserve.db.enums import DiagnosisStatus, KycStatus, UserRole  # noqa: E402
from autoserve.db.models import (  # noqa: E402
    AllowancePackage,
    Diagnosis,
    ProviderProfile,
    Region,
    ServiceOffering,
    SubscriptionPlan,
    User,
)
from autoserve.db.session import create_db_engine  # noqa: E402
from autoserve.main import app  # noqa: E402
from autoserve.services import allowance_service  # noqa: E402
from autoserve.services.diagnostic_engine import (  # noqa: E402
    DiagnosticEngine,
    DiagnosticFailure,
    DiagnosticResult,
)
from autoserve.services.notification_service import NotificationDispatcher  # noqa: E402
from autoserve.services.policy_service import EngagementPolicy  # noqa: E402

INTERNAL_SECRET = "test-internal-secret"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def test_engine(tmp_path):
    """File-backed SQLite engine so worker threads can open their own connections."""
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    """
    Session shared by fixtures and the API client.

    SQLite transactions take the write lock at BEGIN, so concurrency tests
    must commit this session before starting worker sessions.
    """
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def policy() -> EngagementPolicy:
    return EngagementPolicy(
        complimentary_diagnoses=3,
        complimentary_leads=5,
        max_matched_providers=10,
        allow_limited_preview_leads=True,
        auto_dispatch_leads=True,
    )


class FakeDiagnosticEngine(DiagnosticEngine):
    """Returns a canned result; set ``failure`` to simulate an engine error."""

    def __init__(self):
        self.calls = []
        self.failure: str | None = None
        self.urgency = "high"

    def diagnose(self, vehicle, symptoms):
        self.calls.append((vehicle, symptoms))
        if self.failure:
            return DiagnosticFailure(self.failure)
        return DiagnosticResult(
            summary="Worn brake pads",
            urgency=self.urgency,
            confidence_score=0.87,
            details={"recommended_services": ["brake pad replacement"]},
        )


@pytest.fixture
def diagnostic_engine() -> FakeDiagnosticEngine:
    return FakeDiagnosticEngine()


@dataclass
class RecordingDispatcher:
    dispatcher: NotificationDispatcher
    events: list = field(default_factory=list)

    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


@pytest.fixture
def events() -> RecordingDispatcher:
    dispatcher = NotificationDispatcher()
    recorder = RecordingDispatcher(dispatcher=dispatcher)
    dispatcher.subscribe(recorder.events.append)
    return recorder


# =============================================================================
# Account Fixtures
# =============================================================================

@pytest.fixture
def region(db: Session) -> Region:
    region = Region(name="Greater Accra", code=f"GA-{uuid.uuid4().hex[:6]}")
    db.add(region)
    db.flush()
    return region


@pytest.fixture
def make_requester(db: Session, policy: EngagementPolicy):
    """Factory for requester accounts provisioned with complimentary credits."""

    def factory(display_name: str = "Test Driver", provision: bool = True) -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"driver-{uuid.uuid4().hex[:8]}@test.com",
            display_name=display_name,
            role=UserRole.REQUESTER.value,
        )
        db.add(user)
        db.flush()
        if provision:
            allowance_service.provision_account(db, user, policy)
        return user

    return factory


@pytest.fixture
def make_provider(db: Session, policy: EngagementPolicy):
    """Factory for provider accounts with a profile."""

    def factory(
        business_name: str = "Test Garage",
        kyc_status: str = KycStatus.APPROVED.value,
        is_available: bool = True,
        region: Region | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        rating: Decimal = Decimal("0"),
        is_priority_listed: bool = False,
        provision: bool = True,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"garage-{uuid.uuid4().hex[:8]}@test.com",
            display_name=business_name,
            role=UserRole.PROVIDER.value,
        )
        db.add(user)
        db.flush()
        profile = ProviderProfile(
            user_id=user.id,
            business_name=business_name,
            region_id=region.id if region else None,
            latitude=latitude,
            longitude=longitude,
            kyc_status=kyc_status,
            is_available=is_available,
            is_priority_listed=is_priority_listed,
            rating=rating,
        )
        if region is not None:
            profile.service_regions.append(region)
        db.add(profile)
        db.flush()
        if provision:
            allowance_service.provision_account(db, user, policy)
        return user

    return factory


@pytest.fixture
def requester(make_requester) -> User:
    return make_requester()


@pytest.fixture
def provider(make_provider) -> User:
    return make_provider()


@pytest.fixture
def admin(db: Session) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"admin-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Ops Admin",
        role=UserRole.ADMIN.value,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def make_diagnosis(db: Session):
    """Factory for diagnoses written directly, bypassing credit consumption."""

    def factory(
        requester: User,
        status: str = DiagnosisStatus.COMPLETED.value,
        region: Region | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> Diagnosis:
        diagnosis = Diagnosis(
            requester_id=requester.id,
            region_id=region.id if region else None,
            symptoms="Grinding noise when braking",
            latitude=latitude,
            longitude=longitude,
            status=status,
            consumption_source="complimentary",
            is_free=True,
            urgency="high",
            result={"summary": "Worn brake pads"},
        )
        db.add(diagnosis)
        db.flush()
        return diagnosis

    return factory


@pytest.fixture
def offering(db: Session, provider: User) -> ServiceOffering:
    offering = ServiceOffering(
        provider_id=provider.id,
        name="Brake pad replacement",
        category="brakes",
        price=Decimal("250.00"),
        duration_minutes=90,
    )
    db.add(offering)
    db.flush()
    return offering


@pytest.fixture
def lead_package(db: Session) -> AllowancePackage:
    package = AllowancePackage(
        kind="lead",
        name="Starter - 10 leads",
        slug=f"starter-leads-{uuid.uuid4().hex[:6]}",
        units=10,
        price=Decimal("100.00"),
        currency="GHS",
        validity_days=30,
    )
    db.add(package)
    db.flush()
    return package


@pytest.fixture
def diagnosis_package(db: Session) -> AllowancePackage:
    package = AllowancePackage(
        kind="diagnosis",
        name="Driver Pack - 5 diagnoses",
        slug=f"driver-pack-{uuid.uuid4().hex[:6]}",
        units=5,
        price=Decimal("25.00"),
        currency="GHS",
        validity_days=None,
    )
    db.add(package)
    db.flush()
    return package


@pytest.fixture
def plan(db: Session) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name="Pro",
        slug=f"pro-{uuid.uuid4().hex[:6]}",
        price=Decimal("300.00"),
        billing_period="monthly",
        leads_per_period=20,
        priority_listing=True,
    )
    db.add(plan)
    db.flush()
    return plan


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
def headers_for():
    """Build identity headers for an account."""

    def build(user: User) -> dict[str, str]:
        return {ACCOUNT_HEADER: str(user.id)}

    return build


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Secret": INTERNAL_SECRET}


@pytest.fixture(scope="function")
async def client(
    db: Session,
    policy: EngagementPolicy,
    diagnostic_engine: FakeDiagnosticEngine,
    events: RecordingDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient wired to the test session and collaborators."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_policy] = lambda: policy
    app.dependency_overrides[get_diagnostic_engine] = lambda: diagnostic_engine
    app.dependency_overrides[get_dispatcher] = lambda: events.dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
