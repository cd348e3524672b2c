from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..models.base import utcnow
from .metrics import incr

logger = logging.getLogger(__name__)


def deliver_pending(
    db: Session,
    client: Optional[httpx.Client] = None,
    now: Optional[datetime] = None,
    max_batch: int = 200,
) -> int:
    """Deliver undelivered outbox rows to the notification dispatcher.

    With no ``NOTIFICATION_WEBHOOK_URL`` configured, delivery is a log line.
    Rows that keep failing stop being retried after
    ``NOTIFICATION_MAX_ATTEMPTS``. Returns the number delivered.
    """
    now = now or utcnow()
    rows = (
        db.query(models.OutboxEvent)
        .filter(
            models.OutboxEvent.delivered_at.is_(None),
            models.OutboxEvent.attempt_count < settings.NOTIFICATION_MAX_ATTEMPTS,
        )
        .order_by(models.OutboxEvent.created_at.asc(), models.OutboxEvent.id.asc())
        .limit(max_batch)
        .all()
    )
    if not rows:
        return 0

    url = settings.NOTIFICATION_WEBHOOK_URL
    owns_client = client is None and bool(url)
    if owns_client:
        client = httpx.Client(timeout=5.0)
    delivered = 0
    try:
        for row in rows:
            body = {
                "id": row.id,
                "user_id": row.user_id,
                "event_type": row.topic,
                "payload": json.loads(row.payload_json),
            }
            if not url:
                logger.info("notification user=%s event=%s payload=%s", row.user_id, row.topic, row.payload_json)
            else:
                try:
                    resp = client.post(url, json=body)
                    resp.raise_for_status()
                except httpx.HTTPError as exc:
                    row.attempt_count += 1
                    row.last_error = str(exc)[:500]
                    db.commit()
                    logger.warning("outbox_delivery_failed id=%s attempt=%s err=%s", row.id, row.attempt_count, exc)
                    incr("outbox.failed_total")
                    continue
            row.delivered_at = now
            row.attempt_count += 1
            db.commit()
            delivered += 1
            incr("outbox.delivered_total")
    finally:
        if owns_client:
            client.close()
    return delivered
