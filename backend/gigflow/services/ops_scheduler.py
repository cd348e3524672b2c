from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..database import SessionLocal
from ..models.base import utcnow
from ..utils.errors import BookingFlowError
from ..utils.metrics import Timer, incr
from ..utils.outbox import deliver_pending
from . import (
    application_registry,
    booking_orchestrator,
    contract_manager,
    negotiation_engine,
    payment_ledger,
)

logger = logging.getLogger(__name__)


def _sweep(
    db: Session,
    name: str,
    rows: Iterable,
    transition: Callable[[object], bool],
) -> dict:
    """Apply ``transition`` to each row, committing one row at a time.

    The transition re-checks the row's state itself and returns False when
    someone else already moved it, so reruns and concurrent sweeps are
    harmless. A row that loses a version race is rolled back and left for
    the next run.
    """
    done = skipped = failed = 0
    for row in rows:
        row_id = getattr(row, "id", None)
        try:
            if transition(row):
                db.commit()
                done += 1
            else:
                db.rollback()
                skipped += 1
        except StaleDataError:
            db.rollback()
            skipped += 1
            logger.info("%s: row %s changed concurrently; skipped", name, row_id)
        except BookingFlowError as exc:
            db.rollback()
            failed += 1
            logger.error("%s: row %s failed: %s", name, row_id, exc.message)
    if done:
        incr(f"maintenance.{name}_total", done)
    return {name: done, f"{name}_skipped": skipped, f"{name}_failed": failed}


def handle_negotiation_expiry(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return _sweep(
        db,
        "negotiations_expired",
        negotiation_engine.overdue_negotiations(db, now),
        lambda n: negotiation_engine.expire(db, n, now=now),
    )


def handle_contract_deadlines(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return _sweep(
        db,
        "contracts_expired",
        contract_manager.overdue_contracts(db, now),
        lambda c: c.signing_deadline < now and contract_manager.expire(db, c, now=now),
    )


def handle_application_expiry(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return _sweep(
        db,
        "applications_expired",
        application_registry.stale_applications(db, now),
        lambda a: application_registry.expire_stale(db, a, now),
    )


def handle_overdue_milestones(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return _sweep(
        db,
        "milestones_overdue",
        payment_ledger.overdue_candidates(db, now),
        lambda m: payment_ledger.mark_overdue(db, m),
    )


def handle_event_start(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return _sweep(
        db,
        "bookings_started",
        booking_orchestrator.bookings_to_start(db, now),
        lambda b: booking_orchestrator.start_event(db, b, now),
    )


def handle_completion_window(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return _sweep(
        db,
        "bookings_disputed",
        booking_orchestrator.bookings_past_confirmation_window(db, now),
        lambda b: booking_orchestrator.escalate_unconfirmed(db, b, now),
    )


def handle_outbox(db: Session, now: Optional[datetime] = None) -> dict:
    return {"notifications_delivered": deliver_pending(db, now=now)}


HANDLERS = (
    handle_negotiation_expiry,
    handle_contract_deadlines,
    handle_application_expiry,
    handle_overdue_milestones,
    handle_event_start,
    handle_completion_window,
    handle_outbox,
)


def run_maintenance(db: Optional[Session] = None, now: Optional[datetime] = None) -> dict:
    """Run every periodic sweep once, in order, and return a summary.

    Without ``db`` each sweep gets its own short-lived session so no single
    connection is held for the whole cycle.
    """
    now = now or utcnow()
    summary: dict = {}
    with Timer("maintenance.run_ms"):
        for handler in HANDLERS:
            if db is not None:
                summary.update(handler(db, now=now))
            else:
                with SessionLocal() as session:
                    summary.update(handler(session, now=now))
    logger.info("Maintenance run complete %s", {k: v for k, v in summary.items() if v})
    return summary
