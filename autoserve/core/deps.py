"""FastAPI dependencies for identity, database access and engagement collaborators."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from autoserve.core.config import settings
from autoserve.core.outcomes import Failure, FailureKind
from autoserve.db.session import SessionLocal

# Header set by the upstream auth layer
ACCOUNT_HEADER = "X-Account-Id"

# HTTP status for each business failure kind
FAILURE_STATUS_CODES: dict[FailureKind, int] = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.OUT_OF_CREDIT: 402,
    FailureKind.SLOT_CONFLICT: 409,
    FailureKind.INVALID_TRANSITION: 409,
    FailureKind.PROVIDER_UNAVAILABLE: 422,
}


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    x_account_id: str | None = Header(None, alias=ACCOUNT_HEADER),
    db: Session = Depends(get_db),
):
    """
    Resolve the calling account from the identity header.

    Raises:
        HTTPException 401: header missing, malformed, unknown or inactive account
    """
    # Import here to avoid circular imports
    from autoserve.db.models import User

    if not x_account_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        account_id = UUID(x_account_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid account id")

    user = db.get(User, account_id)
    if not user:
        raise HTTPException(status_code=401, detail="Account not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")
    return user


def require_role(*roles: str):
    """Dependency factory restricting a route to some account roles."""

    def dependency(user=Depends(get_current_user)):
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Not permitted for this account")
        return user

    return dependency


def get_policy():
    from autoserve.services.policy_service import policy_store

    return policy_store.current


def get_dispatcher():
    from autoserve.services.notification_service import dispatcher

    return dispatcher


def get_diagnostic_engine():
    from autoserve.services.diagnostic_engine import get_diagnostic_engine as build_engine

    return build_engine()


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def failure_to_http(failure: Failure) -> HTTPException:
    """Translate a business failure into an HTTP error response."""
    return HTTPException(
        status_code=FAILURE_STATUS_CODES[failure.kind],
        detail=failure.to_dict(),
    )
