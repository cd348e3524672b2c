"""Contract generation and the two-party signature flow.

draft -> pending_artist -> pending_organizer -> fully_executed, with
expired and voided as side exits. The artist always signs first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import models
from ..core import policy
from ..core.config import settings
from ..crud import crud_booking, crud_user
from ..models.base import utcnow
from ..models.booking import BookingStatus
from ..models.cancellation import CancellationReason
from ..models.contract import AWAITING_SIGNATURE_STATUSES, ContractStatus
from ..models.party import Capability, Side
from ..schemas.contract import ContractTerms, PaymentScheduleItem, SignatureCreate
from ..utils.errors import AuthorizationError, DeadlineExceededError, StateError
from ..utils.notifications import NotificationEvent, notify, notify_parties
from . import payment_ledger, trust_engine
from .cancellation import cancellation_service
from .document_store import get_document_store

logger = logging.getLogger(__name__)


def build_terms(db: Session, booking: models.Booking, now: datetime) -> ContractTerms:
    """Derive the terms snapshot from the booking and both trust tiers."""
    artist_tier = trust_engine.get_score(db, booking.artist_id, now=now).tier
    organizer_tier = trust_engine.get_score(db, booking.organizer_id, now=now).tier
    # the organizer pays, so the organizer's tier sets the deposit
    deposit_pct = policy.policy_for(organizer_tier).deposit_percentage
    fee = payment_ledger.to_cents(booking.agreed_fee)
    deposit = payment_ledger.percentage_of(fee, deposit_pct)
    opportunity = booking.opportunity
    return ContractTerms(
        booking_id=booking.id,
        artist_id=booking.artist_id,
        organizer_id=booking.organizer_id,
        venue_id=booking.venue_id,
        agreed_fee=fee,
        currency=booking.currency,
        commission_percentage_preview=policy.policy_for(artist_tier).commission_percentage,
        deposit_percentage=deposit_pct,
        deposit_amount=deposit,
        balance_amount=fee - deposit,
        payment_schedule=[
            PaymentScheduleItem(
                kind="deposit",
                amount=deposit,
                due=f"within {settings.DEPOSIT_DUE_DAYS} days of execution",
            ),
            PaymentScheduleItem(
                kind="balance",
                amount=fee - deposit,
                due=f"{settings.BALANCE_DUE_DAYS_BEFORE_EVENT} day(s) before the event",
            ),
        ],
        event_date=booking.event_date,
        start_time=opportunity.start_time,
        end_time=opportunity.end_time,
        slot=booking.slot,
        artist_tier=artist_tier,
        organizer_tier=organizer_tier,
        clauses=list(policy.clauses_for(artist_tier, organizer_tier)),
        cancellation_policy=policy.cancellation_policy_snapshot(),
        signing_deadline=now + timedelta(hours=settings.CONTRACT_SIGNING_HOURS),
    )


def render_contract(terms: ContractTerms, artist_name: str, organizer_name: str) -> str:
    """Plain-text performance contract for the document store."""
    lines = [
        "PERFORMANCE CONTRACT",
        f"Booking #{terms.booking_id}",
        "",
        "PARTIES",
        f"  Artist:    {artist_name} (#{terms.artist_id}, tier {terms.artist_tier.value})",
        f"  Organizer: {organizer_name} (#{terms.organizer_id}, tier {terms.organizer_tier.value})",
    ]
    if terms.venue_id is not None:
        lines.append(f"  Venue:     #{terms.venue_id}")
    lines += [
        "",
        "EVENT",
        f"  Date: {terms.event_date.isoformat()}",
        f"  Set:  {terms.slot.value}, {terms.start_time.strftime('%H:%M')} to {terms.end_time.strftime('%H:%M')}",
        "",
        "FINANCIAL TERMS",
        f"  Agreed fee: {terms.agreed_fee} {terms.currency}",
        f"  Deposit:    {terms.deposit_amount} {terms.currency} ({terms.deposit_percentage}%)",
        f"  Balance:    {terms.balance_amount} {terms.currency}",
        f"  Platform commission (indicative): {terms.commission_percentage_preview}%",
    ]
    for item in terms.payment_schedule:
        lines.append(f"  - {item.kind}: {item.amount} {terms.currency}, due {item.due}")
    lines += ["", "CLAUSES"]
    lines += [f"  - {clause.replace('_', ' ')}" for clause in terms.clauses]
    lines += ["", "CANCELLATION (percent of amount paid: refund / artist / platform)"]
    for band in terms.cancellation_policy:
        if band.min_days is None and band.max_days is None:
            window = "any time"
        elif band.min_days is None:
            window = f"{band.max_days} days or fewer"
        elif band.max_days is None:
            window = f"{band.min_days} days or more"
        else:
            window = f"{band.min_days} to {band.max_days} days"
        lines.append(
            f"  - {band.initiator}, {window}: {band.organizer_refund_pct} / "
            f"{band.artist_compensation_pct} / {band.platform_retain_pct}"
        )
    lines += ["", f"Sign before {terms.signing_deadline.isoformat()} UTC. The artist signs first.", ""]
    return "\n".join(lines)


def generate(
    db: Session,
    booking: models.Booking,
    now: Optional[datetime] = None,
    document_store=None,
) -> models.Contract:
    """Generate and send the booking's contract; returns a live one if present."""
    live = booking.contract
    if live is not None and live.status not in (ContractStatus.VOIDED, ContractStatus.EXPIRED):
        return live
    now = now or utcnow()
    terms = build_terms(db, booking, now)
    contract = models.Contract(
        status=ContractStatus.DRAFT,
        terms=terms.model_dump(mode="json"),
        signing_deadline=terms.signing_deadline,
    )
    booking.contracts.append(contract)
    db.flush()

    store = document_store or get_document_store()
    rendered = render_contract(terms, booking.artist.display_name, booking.organizer.display_name)
    contract.document_url = store.store_contract_document(booking.id, rendered)
    contract.status = ContractStatus.PENDING_ARTIST
    booking.status = BookingStatus.CONTRACT_SENT
    notify(db, booking.artist_id, NotificationEvent.CONTRACT_READY, {"booking_id": booking.id, "contract_id": contract.id})
    db.flush()
    logger.info(
        "Contract generated booking=%s contract=%s deposit_pct=%s deadline=%s",
        booking.id,
        contract.id,
        terms.deposit_percentage,
        contract.signing_deadline,
    )
    return contract


def expire(db: Session, contract: models.Contract, now: Optional[datetime] = None) -> bool:
    """Expire an unsigned contract and cancel its booking without penalty.

    Returns False when the contract is no longer awaiting signatures.
    """
    if contract.status not in AWAITING_SIGNATURE_STATUSES:
        return False
    now = now or utcnow()
    contract.status = ContractStatus.EXPIRED
    notify_parties(db, contract.booking, NotificationEvent.CONTRACT_EXPIRED, {"contract_id": contract.id})
    cancellation_service.cancel(db, contract.booking_id, None, CancellationReason.CONTRACT_EXPIRED, now=now)
    logger.info("Contract expired contract=%s booking=%s", contract.id, contract.booking_id)
    return True


def _resolve_signer(db: Session, booking: models.Booking, actor_id: int) -> Side:
    side = booking.side_of(actor_id)
    actor = crud_user.user.require_user(db, actor_id)
    if side is None or not actor.party.can(Capability.SIGN):
        raise AuthorizationError("Only the booking's parties can sign its contract")
    return side


def sign(
    db: Session,
    contract_id: int,
    actor_id: int,
    signature: SignatureCreate,
    now: Optional[datetime] = None,
) -> models.Contract:
    now = now or utcnow()
    contract = crud_booking.require_contract(db, contract_id)
    booking = crud_booking.require_booking(db, contract.booking_id, lock=True)
    side = _resolve_signer(db, booking, actor_id)

    if contract.status in AWAITING_SIGNATURE_STATUSES and now > contract.signing_deadline:
        expire(db, contract, now=now)
        db.commit()
        raise DeadlineExceededError(
            "Signing deadline has passed; the contract expired",
            {"signing_deadline": contract.signing_deadline.isoformat()},
        )
    if contract.awaiting is not side:
        raise StateError(
            "Contract is not awaiting this party's signature",
            {"status": contract.status.value, "side": side.value},
        )

    contract.signatures.append(
        models.ContractSignature(
            side=side,
            user_id=actor_id,
            method=signature.method,
            signature_data=signature.signature_data,
            ip_address=signature.ip_address,
            user_agent=signature.user_agent,
            signed_at=now,
        )
    )
    trust_engine.touch(db, actor_id, now=now)
    if side is Side.ARTIST:
        contract.artist_signed_at = now
        contract.status = ContractStatus.PENDING_ORGANIZER
        notify(db, booking.organizer_id, NotificationEvent.CONTRACT_SIGNED, {"booking_id": booking.id, "contract_id": contract.id})
    else:
        contract.organizer_signed_at = now
        contract.status = ContractStatus.FULLY_EXECUTED
        contract.executed_at = now
        # commission is locked here and never recalculated
        booking.commission_percentage = trust_engine.current_policy(db, booking.artist_id, now=now).commission_percentage
        booking.status = BookingStatus.AWAITING_DEPOSIT
        payment_ledger.initialize(db, booking, now=now)
        notify_parties(db, booking, NotificationEvent.CONTRACT_EXECUTED, {"contract_id": contract.id})
    db.flush()
    logger.info("Contract signed contract=%s side=%s status=%s", contract.id, side.value, contract.status.value)
    return contract


def void(
    db: Session,
    contract_id: int,
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Contract:
    """Void a contract that is not yet fully executed; the booking is cancelled."""
    now = now or utcnow()
    contract = crud_booking.require_contract(db, contract_id)
    booking = crud_booking.require_booking(db, contract.booking_id, lock=True)
    if actor_id is not None and booking.side_of(actor_id) is None:
        raise AuthorizationError("Only the booking's parties can void its contract")
    if contract.status not in AWAITING_SIGNATURE_STATUSES:
        raise StateError("Only a contract awaiting signatures can be voided", {"status": contract.status.value})
    contract.status = ContractStatus.VOIDED
    contract.voided_at = now
    contract.void_reason = reason
    cancellation_service.cancel(db, booking.id, None, CancellationReason.CONTRACT_VOIDED, note=reason, now=now)
    db.flush()
    return contract


def overdue_contracts(db: Session, now: datetime) -> List[models.Contract]:
    return (
        db.query(models.Contract)
        .filter(
            models.Contract.status.in_(list(AWAITING_SIGNATURE_STATUSES)),
            models.Contract.signing_deadline < now,
        )
        .order_by(models.Contract.id.asc())
        .all()
    )
