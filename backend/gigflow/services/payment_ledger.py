"""Escrowed payment milestones for a booking.

Per escrowed milestone the confirmed (recorded) amount is always split
across three buckets::

    held + released + returned == recorded

and the same holds summed over the booking. The check runs after every
mutation; a violation raises EscrowIntegrityError and is never corrected
here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..crud import crud_booking
from ..models.base import utcnow
from ..models.payment import (
    PAYABLE_MILESTONE_STATUSES,
    EscrowStatus,
    MilestoneKind,
    MilestoneStatus,
    Payee,
    PaymentRecordKind,
)
from ..models.types import CENTS
from ..utils.errors import (
    EscrowIntegrityError,
    GatewayUnavailableError,
    StateError,
    ValidationError,
)
from ..utils.metrics import incr
from ..utils.notifications import NotificationEvent, notify_parties

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class GatewayConfirmation:
    """A payment confirmation as reported by the gateway webhook."""

    transaction_id: str
    intent_id: Optional[str]
    status: str
    amount: Decimal
    currency: str

    @property
    def succeeded(self) -> bool:
        return self.status.lower() in ("success", "succeeded", "paid")


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, pct: Decimal) -> Decimal:
    return to_cents(Decimal(amount) * Decimal(pct) / Decimal(100))


def escrowed(booking: models.Booking) -> List[models.PaymentMilestone]:
    return [m for m in booking.milestones if m.is_escrowed]


def commission_milestone(booking: models.Booking) -> Optional[models.PaymentMilestone]:
    for m in booking.milestones:
        if m.kind is MilestoneKind.COMMISSION:
            return m
    return None


def deposit_milestone(booking: models.Booking) -> Optional[models.PaymentMilestone]:
    for m in booking.milestones:
        if m.kind is MilestoneKind.DEPOSIT:
            return m
    return None


def total_held(booking: models.Booking) -> Decimal:
    return sum((m.held_amount for m in escrowed(booking)), ZERO)


def check_invariant(booking: models.Booking) -> None:
    """Raise EscrowIntegrityError if the booking's escrow does not reconcile."""
    recorded = held = released = returned = ZERO
    for m in escrowed(booking):
        for bucket in (m.held_amount, m.released_amount, m.returned_amount):
            if bucket < 0:
                _integrity_failure(booking, f"milestone {m.id} has a negative bucket")
        if m.held_amount + m.released_amount + m.returned_amount != m.recorded_amount:
            _integrity_failure(
                booking,
                f"milestone {m.id} buckets {m.held_amount}+{m.released_amount}+{m.returned_amount}"
                f" != recorded {m.recorded_amount}",
            )
        if m.recorded_amount > m.amount:
            _integrity_failure(booking, f"milestone {m.id} recorded more than its amount")
        recorded += m.recorded_amount
        held += m.held_amount
        released += m.released_amount
        returned += m.returned_amount
    if held + released + returned != recorded:
        _integrity_failure(booking, f"held {held} + released {released} + returned {returned} != recorded {recorded}")


def _integrity_failure(booking: models.Booking, detail: str) -> None:
    logger.error("Escrow integrity violation booking=%s: %s", booking.id, detail)
    incr("payments.escrow_integrity_total")
    raise EscrowIntegrityError(
        "Escrow ledger does not reconcile; manual reconciliation required",
        {"booking_id": str(booking.id), "detail": detail},
    )


def _due_dates(booking: models.Booking, now: datetime) -> tuple[datetime, datetime]:
    deposit_due = min(now + timedelta(days=settings.DEPOSIT_DUE_DAYS), booking.event_start_at)
    balance_due = booking.event_start_at - timedelta(days=settings.BALANCE_DUE_DAYS_BEFORE_EVENT)
    return deposit_due, max(balance_due, deposit_due)


def initialize(db: Session, booking: models.Booking, now: Optional[datetime] = None) -> List[models.PaymentMilestone]:
    """Create deposit, balance and commission milestones for an executed contract.

    Returns the existing milestones if the booking already has them.
    """
    if booking.milestones:
        return list(booking.milestones)
    contract = booking.contract
    if contract is None or booking.commission_percentage is None:
        raise StateError("Payment schedule needs a fully executed contract")
    now = now or utcnow()
    fee = to_cents(booking.agreed_fee)
    deposit_pct = Decimal(str(contract.terms["deposit_percentage"]))
    deposit = percentage_of(fee, deposit_pct)
    balance = fee - deposit
    if deposit + balance != fee or balance < 0:
        _integrity_failure(booking, f"deposit {deposit} + balance {balance} != fee {fee}")
    deposit_due, balance_due = _due_dates(booking, now)
    commission = percentage_of(fee, booking.commission_percentage)

    milestones = [
        models.PaymentMilestone(kind=MilestoneKind.DEPOSIT, amount=deposit, due_at=deposit_due),
        models.PaymentMilestone(kind=MilestoneKind.BALANCE, amount=balance, due_at=balance_due),
        models.PaymentMilestone(kind=MilestoneKind.COMMISSION, amount=commission, due_at=None),
    ]
    for m in milestones:
        m.currency = booking.currency
        m.status = MilestoneStatus.PENDING
        m.escrow_status = EscrowStatus.NONE
        m.recorded_amount = ZERO
        m.held_amount = ZERO
        m.released_amount = ZERO
        m.returned_amount = ZERO
        booking.milestones.append(m)
    db.flush()
    logger.info(
        "Payment schedule created booking=%s deposit=%s balance=%s commission=%s %s",
        booking.id,
        deposit,
        balance,
        commission,
        booking.currency,
    )
    return milestones


def _lock_milestone(db: Session, milestone_id: int) -> models.PaymentMilestone:
    milestone = crud_booking.require_milestone(db, milestone_id)
    crud_booking.require_booking(db, milestone.booking_id, lock=True)
    return milestone


def _record(
    db: Session,
    milestone: models.PaymentMilestone,
    kind: PaymentRecordKind,
    amount: Decimal,
    payee: Payee,
    reason: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> models.PaymentRecord:
    record = models.PaymentRecord(
        booking_id=milestone.booking_id,
        kind=kind,
        amount=amount,
        currency=milestone.currency,
        payee=payee,
        reason=reason,
        gateway_transaction_id=transaction_id,
    )
    milestone.records.append(record)
    return record


def _refresh_escrow_status(milestone: models.PaymentMilestone) -> None:
    if milestone.held_amount > 0:
        milestone.escrow_status = EscrowStatus.HELD
    elif milestone.returned_amount > 0:
        milestone.escrow_status = EscrowStatus.RETURNED
    elif milestone.released_amount > 0:
        milestone.escrow_status = EscrowStatus.RELEASED


def record_payment(
    db: Session,
    milestone_id: int,
    confirmation: GatewayConfirmation,
    now: Optional[datetime] = None,
) -> models.PaymentMilestone:
    """Apply a gateway confirmation: the milestone's money moves into escrow.

    Replaying a confirmation already applied (same transaction id) is a
    no-op that returns the milestone unchanged.
    """
    now = now or utcnow()
    seen = (
        db.query(models.GatewayTransaction)
        .filter(models.GatewayTransaction.transaction_id == confirmation.transaction_id)
        .first()
    )
    milestone = _lock_milestone(db, milestone_id)
    booking = milestone.booking
    if seen is not None:
        if seen.milestone_id != milestone.id:
            _integrity_failure(
                booking,
                f"transaction {confirmation.transaction_id} already applied to milestone {seen.milestone_id}",
            )
        logger.info(
            "Duplicate gateway confirmation ignored milestone=%s tx=%s",
            milestone.id,
            confirmation.transaction_id,
        )
        incr("payments.confirmation.duplicate_total")
        return milestone

    if not milestone.is_escrowed:
        raise StateError("Commission is settled by the platform, not charged through the gateway")
    if milestone.status not in PAYABLE_MILESTONE_STATUSES:
        _integrity_failure(
            booking,
            f"second confirmation {confirmation.transaction_id} for milestone {milestone.id} in {milestone.status.value}",
        )
    amount = to_cents(confirmation.amount)
    if amount != milestone.amount or confirmation.currency.upper() != milestone.currency:
        _integrity_failure(
            booking,
            f"confirmation {amount} {confirmation.currency} does not match milestone"
            f" {milestone.amount} {milestone.currency}",
        )

    milestone.recorded_amount = amount
    milestone.held_amount = amount
    milestone.escrow_status = EscrowStatus.HELD
    milestone.status = MilestoneStatus.PAID
    milestone.paid_at = now
    milestone.needs_manual_review = False
    _record(
        db,
        milestone,
        PaymentRecordKind.CHARGE,
        amount,
        Payee.PLATFORM,
        transaction_id=confirmation.transaction_id,
    )
    db.add(
        models.GatewayTransaction(
            transaction_id=confirmation.transaction_id,
            intent_id=confirmation.intent_id,
            milestone_id=milestone.id,
            amount=amount,
            currency=milestone.currency,
            status=confirmation.status,
        )
    )
    check_invariant(booking)
    db.flush()
    notify_parties(
        db,
        booking,
        NotificationEvent.PAYMENT_RECEIVED,
        {"milestone_id": milestone.id, "kind": milestone.kind, "amount": amount},
    )
    incr("payments.confirmation.applied_total", tags={"kind": milestone.kind.value})
    logger.info("Payment held milestone=%s amount=%s tx=%s", milestone.id, amount, confirmation.transaction_id)
    return milestone


def release(
    db: Session,
    milestone: models.PaymentMilestone,
    amount: Optional[Decimal] = None,
    payee: Payee = Payee.ARTIST,
    reason: Optional[str] = None,
) -> models.PaymentMilestone:
    """Pay held escrow out; the whole held amount unless ``amount`` is given."""
    if milestone.escrow_status is not EscrowStatus.HELD:
        raise StateError(
            "Only held escrow can be released",
            {"escrow_status": milestone.escrow_status.value},
        )
    amount = milestone.held_amount if amount is None else to_cents(amount)
    if amount <= 0:
        raise ValidationError("Release amount must be positive", {"amount": str(amount)})
    if amount > milestone.held_amount:
        _integrity_failure(milestone.booking, f"release {amount} exceeds held {milestone.held_amount}")
    milestone.held_amount -= amount
    milestone.released_amount += amount
    _record(db, milestone, PaymentRecordKind.RELEASE, amount, payee, reason=reason)
    _refresh_escrow_status(milestone)
    check_invariant(milestone.booking)
    db.flush()
    logger.info("Escrow released milestone=%s amount=%s payee=%s", milestone.id, amount, payee.value)
    return milestone


def refund(
    db: Session,
    milestone: models.PaymentMilestone,
    amount: Decimal,
    reason: str,
) -> models.PaymentMilestone:
    """Return held escrow to the organizer with an offsetting negative record."""
    amount = to_cents(amount)
    if amount <= 0:
        raise ValidationError("Refund amount must be positive", {"amount": str(amount)})
    if amount > milestone.amount:
        _integrity_failure(milestone.booking, f"refund {amount} exceeds milestone amount {milestone.amount}")
    if milestone.escrow_status is not EscrowStatus.HELD:
        raise StateError(
            "Only held escrow can be refunded",
            {"escrow_status": milestone.escrow_status.value},
        )
    if amount > milestone.held_amount:
        _integrity_failure(milestone.booking, f"refund {amount} exceeds held {milestone.held_amount}")
    milestone.held_amount -= amount
    milestone.returned_amount += amount
    _record(db, milestone, PaymentRecordKind.REFUND, -amount, Payee.ORGANIZER, reason=reason)
    _refresh_escrow_status(milestone)
    check_invariant(milestone.booking)
    db.flush()
    logger.info("Escrow refunded milestone=%s amount=%s reason=%s", milestone.id, amount, reason)
    return milestone


def release_for_completion(db: Session, booking: models.Booking, now: Optional[datetime] = None) -> None:
    """Pay every held milestone to the artist and settle the commission."""
    now = now or utcnow()
    for m in escrowed(booking):
        if m.escrow_status is EscrowStatus.HELD:
            release(db, m, reason="booking completed")
            m.status = MilestoneStatus.SETTLED
            m.settled_at = now
    commission = commission_milestone(booking)
    if commission is not None and commission.status is not MilestoneStatus.SETTLED:
        _record(db, commission, PaymentRecordKind.COMMISSION, commission.amount, Payee.PLATFORM, reason="booking completed")
        commission.status = MilestoneStatus.SETTLED
        commission.settled_at = now
    check_invariant(booking)
    db.flush()


def waive_unpaid(db: Session, booking: models.Booking, now: Optional[datetime] = None) -> None:
    """Close out milestones that will never be paid (and the commission)."""
    for m in booking.milestones:
        if m.status in PAYABLE_MILESTONE_STATUSES or (
            m.kind is MilestoneKind.COMMISSION and m.status is not MilestoneStatus.SETTLED
        ):
            m.status = MilestoneStatus.WAIVED
            m.settled_at = now or utcnow()
    db.flush()


def request_charge(db: Session, milestone_id: int, gateway) -> models.PaymentMilestone:
    """Ask the gateway for a charge intent for a payable milestone.

    The idempotency key is derived from the milestone id, so retries (ours
    or the caller's) never create a second charge. When the gateway stays
    unavailable the milestone is flagged for manual review, that flag is
    committed, and GatewayUnavailableError propagates.
    """
    milestone = _lock_milestone(db, milestone_id)
    if not milestone.is_escrowed or milestone.status not in PAYABLE_MILESTONE_STATUSES:
        raise StateError("Milestone is not payable", {"status": milestone.status.value})
    if milestone.gateway_intent_id:
        return milestone
    try:
        intent_id = gateway.create_charge_intent(
            milestone.amount,
            milestone.currency,
            idempotency_key=f"milestone-{milestone.id}",
            metadata={"booking_id": milestone.booking_id, "milestone_id": milestone.id},
        )
    except GatewayUnavailableError:
        milestone.needs_manual_review = True
        notify_parties(
            db,
            milestone.booking,
            NotificationEvent.PAYMENT_NEEDS_REVIEW,
            {"milestone_id": milestone.id},
        )
        db.commit()
        logger.error("Charge intent failed after retries milestone=%s; flagged for manual review", milestone.id)
        raise
    milestone.gateway_intent_id = intent_id
    db.flush()
    return milestone


def find_by_intent(db: Session, intent_id: str) -> Optional[models.PaymentMilestone]:
    return (
        db.query(models.PaymentMilestone)
        .filter(models.PaymentMilestone.gateway_intent_id == intent_id)
        .first()
    )


def overdue_candidates(db: Session, now: datetime) -> List[models.PaymentMilestone]:
    return (
        db.query(models.PaymentMilestone)
        .filter(
            models.PaymentMilestone.status == MilestoneStatus.PENDING,
            models.PaymentMilestone.kind != MilestoneKind.COMMISSION,
            models.PaymentMilestone.due_at.isnot(None),
            models.PaymentMilestone.due_at < now,
        )
        .order_by(models.PaymentMilestone.id.asc())
        .all()
    )


def mark_overdue(db: Session, milestone: models.PaymentMilestone) -> bool:
    """Flip a still-pending milestone to overdue. Returns False if it moved on."""
    if milestone.status is not MilestoneStatus.PENDING:
        return False
    milestone.status = MilestoneStatus.OVERDUE
    notify_parties(
        db,
        milestone.booking,
        NotificationEvent.PAYMENT_OVERDUE,
        {"milestone_id": milestone.id, "kind": milestone.kind, "due_at": milestone.due_at},
    )
    db.flush()
    return True
