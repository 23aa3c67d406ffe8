"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from autoserve.core.config import settings
from autoserve.core.deps import ACCOUNT_HEADER
from autoserve.core.structured_logging import configure_logging
from autoserve.db.session import SessionLocal, engine
from autoserve.services.policy_service import policy_store

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logger.info("Sentry initialized for error tracking")


# ============================================================================
# Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Overrides live in app_settings; a fresh database has none yet
    try:
        with SessionLocal() as db:
            policy_store.reload(db)
    except SQLAlchemyError:
        logger.warning("Could not load policy overrides; using configured defaults", exc_info=True)
    yield


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="AutoServe Engagement API",
    description="Diagnosis credits, provider leads and service appointments",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", ACCOUNT_HEADER],
)

# ============================================================================
# Routers
# ============================================================================

from autoserve.routers import (  # noqa: E402
    allowances,
    appointments,
    diagnoses,
    internal,
    leads,
    packages,
    payments,
    reviews,
    vehicles,
)

app.include_router(allowances.router, prefix="/allowances", tags=["allowances"])
app.include_router(packages.router, prefix="/packages", tags=["packages"])
app.include_router(payments.router, prefix="/payments", tags=["payments"])
app.include_router(diagnoses.router, prefix="/diagnoses", tags=["diagnoses"])
app.include_router(leads.router, prefix="/leads", tags=["leads"])
app.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
app.include_router(vehicles.router, prefix="/vehicles", tags=["vehicles"])
app.include_router(reviews.router, prefix="/reviews", tags=["reviews"])

# Internal scheduled endpoints (X-Internal-Secret)
app.include_router(internal.router, prefix="/internal/scheduled", tags=["internal"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
