from datetime import timedelta
from decimal import Decimal

import pytest

from gigflow import models
from gigflow.crud import crud_application
from gigflow.models.application import ApplicationStatus
from gigflow.models.opportunity import OpportunityStatus
from gigflow.models.party import Party
from gigflow.schemas.negotiation import OfferTerms
from gigflow.services import application_registry, opportunities
from gigflow.services.ops_scheduler import handle_application_expiry
from gigflow.utils.errors import (
    AuthorizationError,
    ConflictError,
    DeadlineExceededError,
    LimitExceededError,
    StateError,
)


def test_submit_takes_a_pending_slot(db, flow):
    artist, organizer = flow.parties()
    opportunity = flow.opportunity()

    application = flow.apply(artist.id, opportunity.id, fee="10000")
    db.flush()

    assert application.status is ApplicationStatus.PENDING
    assert application.proposed_fee == Decimal("10000.00")
    assert application.currency == "USD"
    assert crud_application.pending_count(db, artist.id) == 1
    outbox = db.query(models.OutboxEvent).filter(models.OutboxEvent.user_id == organizer.id).all()
    assert [e.topic for e in outbox] == ["application_submitted"]


def test_sixth_application_over_tier_limit_is_rejected(db, flow):
    artist, _ = flow.parties()
    opportunity_ids = [flow.opportunity(days_out=30 + i).id for i in range(6)]
    for opportunity_id in opportunity_ids[:5]:
        flow.apply(artist.id, opportunity_id)

    with pytest.raises(LimitExceededError):
        flow.apply(artist.id, opportunity_ids[5])

    assert crud_application.get_for_artist_and_opportunity(db, artist.id, opportunity_ids[5]) is None
    assert db.query(models.Application).count() == 5
    assert crud_application.pending_count(db, artist.id) == 5


def test_reserve_is_a_conditional_update(db, flow):
    artist, _ = flow.parties()
    crud_application.reserve_pending_slot(db, artist.id, 1)

    with pytest.raises(LimitExceededError):
        crud_application.reserve_pending_slot(db, artist.id, 1)
    assert crud_application.pending_count(db, artist.id) == 1


def test_withdraw_frees_the_slot(db, flow):
    artist, _ = flow.parties()
    application = flow.apply(artist.id, flow.opportunity().id)

    application_registry.withdraw(db, application.id, artist.id, now=flow.now)

    assert application.status is ApplicationStatus.WITHDRAWN
    assert crud_application.pending_count(db, artist.id) == 0
    with pytest.raises(StateError):
        application_registry.withdraw(db, application.id, artist.id, now=flow.now)


def test_duplicate_application_conflicts(db, flow):
    artist, _ = flow.parties()
    opportunity = flow.opportunity()
    flow.apply(artist.id, opportunity.id)

    with pytest.raises(ConflictError):
        flow.apply(artist.id, opportunity.id)
    assert crud_application.pending_count(db, artist.id) == 1


@pytest.mark.parametrize("party,verified", [(Party.ORGANIZER, True), (Party.ARTIST, False)])
def test_only_verified_artists_apply(db, flow, party, verified):
    flow.parties()
    applicant = flow.user(20, party, verified=verified)

    with pytest.raises(AuthorizationError):
        flow.apply(applicant.id, flow.opportunity().id)


def test_application_after_deadline_is_rejected(db, flow, now):
    artist, _ = flow.parties()
    opportunity = flow.opportunity()

    with pytest.raises(DeadlineExceededError):
        application_registry.submit(
            db, artist.id, opportunity.id, Decimal("900"), now=opportunity.application_deadline
        )


def test_accept_books_and_declines_the_rest(db, flow):
    artist, organizer = flow.parties()
    rival = flow.user(3, Party.ARTIST)
    opportunity = flow.opportunity()
    chosen = flow.apply(artist.id, opportunity.id)
    other = flow.apply(rival.id, opportunity.id)

    application_registry.respond(db, chosen.id, organizer.id, "accept", now=flow.now)

    assert chosen.status is ApplicationStatus.ACCEPTED
    assert other.status is ApplicationStatus.DECLINED
    assert opportunity.status is OpportunityStatus.FILLED
    assert chosen.booking.agreed_fee == Decimal("10000.00")
    assert crud_application.pending_count(db, artist.id) == 0
    assert crud_application.pending_count(db, rival.id) == 0


def test_artist_already_booked_that_date(db, flow):
    booking = flow.booking()
    second = flow.opportunity(days_out=60)

    with pytest.raises(ConflictError):
        flow.apply(booking.artist_id, second.id)


def test_only_owner_responds(db, flow):
    artist, _ = flow.parties()
    stranger = flow.user(4, Party.ORGANIZER)
    application = flow.apply(artist.id, flow.opportunity().id)

    with pytest.raises(AuthorizationError):
        application_registry.respond(db, application.id, stranger.id, "decline", now=flow.now)


def test_second_counter_conflicts(db, flow):
    artist, organizer = flow.parties()
    application = flow.apply(artist.id, flow.opportunity().id)
    terms = OfferTerms(fee=Decimal("9000"))
    application_registry.respond(db, application.id, organizer.id, "counter", terms=terms, now=flow.now)

    with pytest.raises(ConflictError):
        application_registry.respond(db, application.id, organizer.id, "counter", terms=terms, now=flow.now)


def test_view_and_shortlist(db, flow):
    artist, organizer = flow.parties()
    application = flow.apply(artist.id, flow.opportunity().id)

    application_registry.mark_viewed(db, application.id, organizer.id)
    assert application.status is ApplicationStatus.VIEWED
    application_registry.respond(db, application.id, organizer.id, "shortlist", now=flow.now)
    assert application.status is ApplicationStatus.SHORTLISTED
    assert crud_application.pending_count(db, artist.id) == 1


def test_close_opportunity_declines_open_applications(db, flow):
    artist, organizer = flow.parties()
    opportunity = flow.opportunity()
    application = flow.apply(artist.id, opportunity.id)

    opportunities.close_opportunity(db, opportunity.id, organizer.id, now=flow.now)

    assert opportunity.status is OpportunityStatus.CLOSED
    assert application.status is ApplicationStatus.DECLINED
    assert crud_application.pending_count(db, artist.id) == 0


def test_stale_applications_expire_after_the_event(db, flow, now):
    artist, _ = flow.parties()
    opportunity = flow.opportunity(days_out=5)
    application = flow.apply(artist.id, opportunity.id)
    db.commit()

    summary = handle_application_expiry(db, now=now + timedelta(days=6))
    again = handle_application_expiry(db, now=now + timedelta(days=6))

    assert summary["applications_expired"] == 1
    assert again["applications_expired"] == 0
    db.refresh(application)
    assert application.status is ApplicationStatus.EXPIRED
    assert crud_application.pending_count(db, artist.id) == 0
