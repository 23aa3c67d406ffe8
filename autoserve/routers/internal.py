"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from autoserve.core.deps import get_db, verify_internal_secret
from autoserve.services import allowance_service, subscription_service
from autoserve.services.policy_service import EngagementPolicy, policy_store

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_internal_secret)])


class ExpiryResponse(BaseModel):
    purchases_expired: int
    subscriptions_expired: int


@router.post("/expire-purchases", response_model=ExpiryResponse)
def expire_purchases(db: Session = Depends(get_db)):
    """
    Sweep lapsed credit blocks and subscriptions.

    Expired purchases stop counting toward balances; unused units are
    kept on the row for reporting.
    """
    purchases = allowance_service.expire_purchases(db)
    db.commit()
    subscriptions = subscription_service.expire_subscriptions(db)
    db.commit()
    logger.info("Expiry sweep: %d purchases, %d subscriptions", purchases, subscriptions)
    return ExpiryResponse(purchases_expired=purchases, subscriptions_expired=subscriptions)


@router.post("/reload-policy", response_model=EngagementPolicy)
def reload_policy(db: Session = Depends(get_db)):
    """Re-read policy overrides from app settings."""
    return policy_store.reload(db)
