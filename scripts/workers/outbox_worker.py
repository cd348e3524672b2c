#!/usr/bin/env python3
"""
Outbox worker: delivers undelivered notification outbox rows to the
notification webhook, outside the API process.

Environment:
  - SQLALCHEMY_DATABASE_URL (from app config)
  - NOTIFICATION_WEBHOOK_URL (unset: rows are logged and marked delivered)
  - OUTBOX_POLL_INTERVAL_MS (default 1000)
  - OUTBOX_MAX_BATCH (default 200)

Run with ENABLE_MAINTENANCE_LOOP=0 on the API if this worker owns delivery.
Delivery is per-row and idempotent, so running it alongside the API loop is safe.
"""
from __future__ import annotations

import logging
import os
import sys
import time

from sqlalchemy import func

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend")))

from gigflow.core.observability import setup_logging  # noqa: E402
from gigflow.database import get_db_session  # noqa: E402
from gigflow.models.outbox import OutboxEvent  # noqa: E402
from gigflow.utils.metrics import incr  # noqa: E402
from gigflow.utils.outbox import deliver_pending  # noqa: E402

logger = logging.getLogger("outbox_worker")


def run_once(max_batch: int = 200) -> int:
    with get_db_session() as db:
        delivered = deliver_pending(db, max_batch=max_batch)
    if delivered:
        incr("outbox.worker_delivered_total", delivered)
    return delivered


def log_lag() -> None:
    with get_db_session() as db:
        count, oldest = (
            db.query(func.count(OutboxEvent.id), func.min(OutboxEvent.created_at))
            .filter(OutboxEvent.delivered_at.is_(None))
            .one()
        )
    logger.info("outbox_lag count=%s oldest=%s", count, oldest)


def main() -> None:
    setup_logging()
    interval_ms = int(os.getenv("OUTBOX_POLL_INTERVAL_MS") or 1000)
    max_batch = int(os.getenv("OUTBOX_MAX_BATCH") or 200)
    last_lag_log = 0.0
    while True:
        try:
            run_once(max_batch=max_batch)
            now = time.monotonic()
            if now - last_lag_log >= 10.0:  # every ~10s
                log_lag()
                last_lag_log = now
        except Exception:  # keep the worker alive across transient failures
            logger.exception("Outbox worker iteration failed")
        time.sleep(interval_ms / 1000.0)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
