import json
from datetime import timedelta

import httpx

from gigflow import models
from gigflow.core.config import settings
from gigflow.models.booking import BookingStatus
from gigflow.models.negotiation import NegotiationStatus
from gigflow.schemas.negotiation import OfferTerms
from gigflow.services import application_registry
from gigflow.services.ops_scheduler import run_maintenance
from gigflow.utils.outbox import deliver_pending


def test_run_maintenance_reports_every_sweep(db, flow, now):
    summary = run_maintenance(db, now=now)

    for key in (
        "negotiations_expired",
        "contracts_expired",
        "applications_expired",
        "milestones_overdue",
        "bookings_started",
        "bookings_disputed",
        "notifications_delivered",
    ):
        assert summary[key] == 0
    assert summary["contracts_expired_failed"] == 0


def test_run_maintenance_moves_overdue_records(db, flow, now):
    artist, organizer = flow.parties()
    application = flow.apply(artist.id, flow.opportunity().id)
    application_registry.respond(
        db, application.id, organizer.id, "counter", terms=OfferTerms(fee="9000"), now=now
    )
    booking = flow.booking()
    db.commit()

    summary = run_maintenance(db, now=now + timedelta(days=3))

    assert summary["negotiations_expired"] == 1
    assert summary["contracts_expired"] == 1
    assert summary["notifications_delivered"] > 0
    db.refresh(application)
    db.refresh(booking)
    assert application.negotiation.status is NegotiationStatus.EXPIRED
    assert booking.status is BookingStatus.CANCELLED

    again = run_maintenance(db, now=now + timedelta(days=3))
    assert again["negotiations_expired"] == 0
    assert again["contracts_expired"] == 0


def _queue_one_notification(db, flow):
    artist, _ = flow.parties()
    flow.apply(artist.id, flow.opportunity().id)
    db.commit()
    return db.query(models.OutboxEvent).count()


def test_outbox_posts_to_the_dispatcher(db, flow, monkeypatch):
    queued = _queue_one_notification(db, flow)
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "https://notify.test/hook")
    topics = []

    def handler(request):
        topics.append(json.loads(request.content)["event_type"])
        return httpx.Response(202)

    delivered = deliver_pending(db, client=httpx.Client(transport=httpx.MockTransport(handler)))

    assert queued >= 1
    assert delivered == len(topics) == queued
    assert "application_submitted" in topics
    assert db.query(models.OutboxEvent).filter(models.OutboxEvent.delivered_at.is_(None)).count() == 0
    assert deliver_pending(db) == 0


def test_failed_delivery_is_retried_later(db, flow, monkeypatch):
    queued = _queue_one_notification(db, flow)
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "https://notify.test/hook")
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

    assert deliver_pending(db, client=client) == 0

    rows = db.query(models.OutboxEvent).all()
    assert len(rows) == queued
    assert all(r.delivered_at is None and r.attempt_count == 1 for r in rows)
    assert "500" in rows[0].last_error
