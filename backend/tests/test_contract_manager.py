from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from gigflow import models
from gigflow.models.booking import BookingStatus
from gigflow.models.cancellation import CancellationReason
from gigflow.models.contract import ContractStatus
from gigflow.models.opportunity import OpportunityStatus
from gigflow.models.party import Party
from gigflow.models.payment import MilestoneKind, MilestoneStatus
from gigflow.models.trust import TrustReason
from gigflow.schemas.contract import SignatureCreate
from gigflow.services import contract_manager
from gigflow.services.ops_scheduler import handle_contract_deadlines
from gigflow.utils.errors import AuthorizationError, DeadlineExceededError, StateError


def test_booking_gets_a_contract_awaiting_the_artist(db, flow):
    booking = flow.booking()
    contract = booking.contract

    assert booking.status is BookingStatus.CONTRACT_SENT
    assert contract.status is ContractStatus.PENDING_ARTIST
    assert contract.signing_deadline == flow.now + timedelta(hours=48)
    assert contract.document_url.startswith("file://")
    assert Decimal(contract.terms["deposit_percentage"]) == Decimal("30")
    assert Decimal(contract.terms["deposit_amount"]) == Decimal("3000.00")
    assert Decimal(contract.terms["commission_percentage_preview"]) == Decimal("12")
    assert contract.terms["clauses"][:2] == ["performance_obligation", "payment_schedule"]
    assert [band["key"] for band in contract.terms["cancellation_policy"]][0] == "artist_over_90"


def test_rendered_document_is_written(db, flow, tmp_path):
    booking = flow.booking()

    stored = list((tmp_path / "contracts").glob(f"booking-{booking.id}-contract-*.txt"))
    assert len(stored) == 1
    text = stored[0].read_text(encoding="utf-8")
    assert "PERFORMANCE CONTRACT" in text
    assert "10000.00 USD" in text


def test_low_trust_parties_get_extra_clauses(db, flow):
    flow.user(1, Party.ARTIST, score=20)
    flow.user(2, Party.ORGANIZER, score=40)

    booking = flow.booking()

    clauses = booking.contract.terms["clauses"]
    assert "performance_bond" in clauses
    assert "deposit_before_announcement" in clauses
    # high-risk organizer pays a larger deposit
    assert Decimal(booking.contract.terms["deposit_percentage"]) == Decimal("40")


def test_generate_is_idempotent_while_live(db, flow):
    booking = flow.booking()

    again = contract_manager.generate(db, booking, now=flow.now)

    assert again.id == booking.contract.id
    assert len(booking.contracts) == 1


def test_organizer_cannot_sign_first(db, flow):
    booking = flow.booking()

    with pytest.raises(StateError):
        flow.sign(booking, booking.organizer_id)


def test_outsider_cannot_sign(db, flow):
    booking = flow.booking()
    outsider = flow.user(9, Party.ARTIST)

    with pytest.raises(AuthorizationError):
        flow.sign(booking, outsider.id)


def test_both_signatures_execute_and_start_payments(db, flow):
    booking = flow.booking()

    flow.sign(booking, booking.artist_id)
    assert booking.contract.status is ContractStatus.PENDING_ORGANIZER
    with pytest.raises(StateError):
        flow.sign(booking, booking.artist_id)
    flow.sign(booking, booking.organizer_id)

    contract = booking.contract
    assert contract.status is ContractStatus.FULLY_EXECUTED
    assert contract.executed_at == flow.now
    assert [s.side.value for s in contract.signatures] == ["artist", "organizer"]
    assert {(s.ip_address, s.user_agent) for s in contract.signatures} == {("10.0.0.1", "pytest")}
    assert booking.status is BookingStatus.AWAITING_DEPOSIT
    assert booking.commission_percentage == Decimal("12")
    amounts = {m.kind: m.amount for m in booking.milestones}
    assert amounts == {
        MilestoneKind.DEPOSIT: Decimal("3000.00"),
        MilestoneKind.BALANCE: Decimal("7000.00"),
        MilestoneKind.COMMISSION: Decimal("1200.00"),
    }
    assert all(m.status is MilestoneStatus.PENDING for m in booking.milestones)


def test_terms_are_frozen(db, flow):
    booking = flow.booking()

    with pytest.raises(ValueError):
        booking.contract.terms = {"agreed_fee": "1.00"}


def test_signing_after_deadline_expires_and_cancels(db, flow):
    booking = flow.booking()
    late = flow.now + timedelta(hours=49)

    with pytest.raises(DeadlineExceededError):
        flow.sign(booking, booking.artist_id, at=late)

    db.refresh(booking)
    assert booking.contract.status is ContractStatus.EXPIRED
    assert booking.status is BookingStatus.CANCELLED
    assert booking.cancellation.reason is CancellationReason.CONTRACT_EXPIRED
    assert booking.cancellation.total_paid == Decimal("0.00")
    assert booking.opportunity.status is OpportunityStatus.ACTIVE


def test_deadline_sweep_runs_once(db, flow):
    booking = flow.booking()
    db.commit()
    late = flow.now + timedelta(hours=49)

    first = handle_contract_deadlines(db, now=late)
    second = handle_contract_deadlines(db, now=late)

    assert first["contracts_expired"] == 1
    assert second["contracts_expired"] == 0
    db.refresh(booking)
    assert booking.status is BookingStatus.CANCELLED


def test_void_cancels_without_penalty(db, flow):
    booking = flow.booking()
    flow.sign(booking, booking.artist_id)

    contract = contract_manager.void(db, booking.contract.id, booking.organizer_id, reason="venue closed", now=flow.now)

    assert contract.status is ContractStatus.VOIDED
    assert contract.void_reason == "venue closed"
    assert booking.status is BookingStatus.CANCELLED
    assert booking.cancellation.reason is CancellationReason.CONTRACT_VOIDED
    db.flush()
    penalties = (
        db.query(models.TrustScoreEvent)
        .filter(models.TrustScoreEvent.reason_code == TrustReason.CANCELLATION)
        .count()
    )
    assert penalties == 0


def test_executed_contract_cannot_be_voided(db, flow):
    booking = flow.executed_booking()

    with pytest.raises(StateError):
        contract_manager.void(db, booking.contract.id, booking.organizer_id, now=flow.now)


@pytest.mark.parametrize("missing", ["ip_address", "user_agent"])
def test_signature_requires_audit_fields(missing):
    data = {"signature_data": "signed", "ip_address": "10.0.0.1", "user_agent": "pytest"}
    data.pop(missing)

    with pytest.raises(PydanticValidationError):
        SignatureCreate(**data)
