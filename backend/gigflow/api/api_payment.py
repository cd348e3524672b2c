import json
import logging

from fastapi import APIRouter, Depends, Header, Request, Response, status
from sqlalchemy.orm import Session

from ..core.config import settings
from ..crud import crud_booking
from ..database import get_db
from ..models.user import User
from ..schemas.payment import ChargeIntentResponse
from ..services import booking_orchestrator, payment_ledger
from ..services.payment_gateway import PaymentGateway, get_payment_gateway, verify_signature
from ..utils.errors import AuthorizationError, BookingFlowError
from ..utils.metrics import Timer, incr
from .dependencies import get_current_actor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/payments/milestones/{milestone_id}/charge", response_model=ChargeIntentResponse)
def create_charge(
    milestone_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create (or return the existing) gateway charge intent for a milestone."""
    milestone = crud_booking.require_milestone(db, milestone_id)
    if milestone.booking.organizer_id != actor.id:
        raise AuthorizationError("Only the organizer pays booking milestones")
    milestone = payment_ledger.request_charge(db, milestone_id, gateway)
    db.commit()
    return ChargeIntentResponse(
        milestone_id=milestone.id,
        intent_id=milestone.gateway_intent_id,
        amount=milestone.amount,
        currency=milestone.currency,
    )


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_gateway_signature: str | None = Header(default=None),
):
    """Handle gateway payment confirmations.

    - Verifies the HMAC SHA512 signature of the raw body when a secret is set.
    - Non-success events are acknowledged and ignored.
    - Idempotent: a transaction id already on the ledger is a no-op.
    """
    raw = await request.body()
    if not verify_signature(raw, x_gateway_signature, settings.PAYMENT_WEBHOOK_SECRET):
        logger.warning("Payment webhook signature mismatch")
        incr("payments.webhook_signature_mismatch_total")
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    if not isinstance(payload, dict):
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    confirmation = PaymentGateway.confirm_webhook(payload)
    if not confirmation.succeeded:
        logger.info("Ignoring webhook tx=%s status=%s", confirmation.transaction_id, confirmation.status)
        return {"status": "ignored"}

    milestone = payment_ledger.find_by_intent(db, confirmation.intent_id) if confirmation.intent_id else None
    if milestone is None:
        # unknown intents are acknowledged so the gateway stops retrying
        logger.warning("Webhook for unknown intent=%s tx=%s", confirmation.intent_id, confirmation.transaction_id)
        incr("payments.webhook_unmatched_total")
        return {"status": "unmatched"}

    with Timer("payments.webhook_ms"):
        try:
            booking_orchestrator.record_payment(db, milestone.id, confirmation)
            db.commit()
        except BookingFlowError:
            db.rollback()
            raise
    incr("payments.webhook_success_total")
    return {"status": "ok", "milestone_id": milestone.id}
