#!/usr/bin/env python3
"""
Maintenance worker: runs the periodic booking sweeps (negotiation and
contract expiry, overdue milestones, event start, completion window,
outbox delivery) outside the API process.

Environment:
  - SQLALCHEMY_DATABASE_URL (from app config)
  - MAINTENANCE_INTERVAL_SECONDS (from app config, default 300)

Run the API with ENABLE_MAINTENANCE_LOOP=0 when this worker is deployed.
Every sweep re-checks row state before transitioning, so overlapping runs
are harmless.
"""
from __future__ import annotations

import logging
import os
import sys
import time

from sqlalchemy.exc import OperationalError

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend")))

from gigflow.core.config import settings  # noqa: E402
from gigflow.core.observability import setup_logging  # noqa: E402
from gigflow.services.ops_scheduler import run_maintenance  # noqa: E402
from gigflow.utils.notifications import alert_scheduler_failure  # noqa: E402

logger = logging.getLogger("maintenance_worker")


def main() -> None:
    setup_logging()
    interval = settings.MAINTENANCE_INTERVAL_SECONDS
    logger.info("Maintenance worker started interval=%ss", interval)
    while True:
        try:
            summary = run_maintenance()
            logger.info("Maintenance summary: %s", {k: v for k, v in summary.items() if v})
        except OperationalError as exc:
            # database unreachable; try again next cycle
            alert_scheduler_failure(exc)
        except Exception as exc:  # keep the worker alive across transient failures
            alert_scheduler_failure(exc)
        time.sleep(interval)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
