"""Payments router - settlement callbacks from the payment processor.

Protected by X-Internal-Secret; the processor integration forwards
verified callbacks here.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from autoserve.core.deps import failure_to_http, get_db, verify_internal_secret
from autoserve.routers.packages import payment_to_read
from autoserve.schemas.payment import PaymentRead, PaymentWebhook
from autoserve.services import payment_service

router = APIRouter()


@router.post(
    "/webhook",
    response_model=PaymentRead,
    dependencies=[Depends(verify_internal_secret)],
)
def payment_webhook(
    data: PaymentWebhook,
    db: Session = Depends(get_db),
):
    """
    Settle a payment.

    Duplicate callbacks are safe: a payment is fulfilled at most once.
    """
    if data.status == "success":
        outcome = payment_service.confirm_payment(
            db, data.payment_reference, provider_reference=data.provider_reference
        )
    else:
        outcome = payment_service.fail_payment(db, data.payment_reference, reason=data.failure_reason)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return payment_to_read(outcome.value)
