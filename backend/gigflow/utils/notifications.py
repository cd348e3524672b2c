import enum
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from .. import models

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_ACCEPTED = "application_accepted"
    APPLICATION_DECLINED = "application_declined"
    APPLICATION_WITHDRAWN = "application_withdrawn"
    APPLICATION_EXPIRED = "application_expired"
    NEGOTIATION_OFFER = "negotiation_offer"
    NEGOTIATION_ACCEPTED = "negotiation_accepted"
    NEGOTIATION_DECLINED = "negotiation_declined"
    NEGOTIATION_EXPIRED = "negotiation_expired"
    CONTRACT_READY = "contract_ready"
    CONTRACT_SIGNED = "contract_signed"
    CONTRACT_EXECUTED = "contract_executed"
    CONTRACT_EXPIRED = "contract_expired"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_OVERDUE = "payment_overdue"
    PAYMENT_NEEDS_REVIEW = "payment_needs_review"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_STARTED = "booking_started"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_DISPUTED = "booking_disputed"
    OPPORTUNITY_CLOSED = "opportunity_closed"


def _json_default(o: Any):
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, enum.Enum):
        return o.value
    return str(o)


def notify(
    db: Session,
    user_id: int,
    event_type: NotificationEvent,
    payload: Optional[dict[str, Any]] = None,
) -> models.OutboxEvent:
    """Queue a fire-and-forget notification in the caller's transaction.

    Delivery happens later from the maintenance sweep; nothing here waits
    on the dispatcher.
    """
    topic = NotificationEvent(event_type).value
    payload_str = json.dumps(payload or {}, default=_json_default, separators=(",", ":"))
    event = models.OutboxEvent(user_id=user_id, topic=topic, payload_json=payload_str)
    db.add(event)
    logger.info("outbox_enqueue topic=%s user=%s bytes=%s", topic, user_id, len(payload_str))
    return event


def notify_parties(
    db: Session,
    booking: models.Booking,
    event_type: NotificationEvent,
    payload: Optional[dict[str, Any]] = None,
) -> None:
    body = {"booking_id": booking.id, **(payload or {})}
    for user_id in (booking.artist_id, booking.organizer_id):
        notify(db, user_id, event_type, body)


def alert_scheduler_failure(exc: Exception) -> None:
    """Emit an error log when a background scheduler run fails."""
    logger.exception("Scheduler run failed: %s", exc)
