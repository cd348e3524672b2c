"""Cancellation split calculation and the cancellation command.

``compute_split`` is pure: booking data, initiator and day count in, a
percentage split out. ``CancellationService.cancel`` applies that split to
the escrow ledger, charges the trust penalty and writes the
``CancellationRecord`` in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from .. import models
from ..core import policy
from ..core.policy import CancellationBand
from ..crud import crud_booking, crud_user
from ..models.base import utcnow
from ..models.booking import BookingStatus
from ..models.cancellation import CancellationReason
from ..models.contract import AWAITING_SIGNATURE_STATUSES, ContractStatus
from ..models.opportunity import OpportunityStatus
from ..models.party import Capability, Side
from ..models.payment import EscrowStatus, MilestoneStatus, Payee
from ..models.trust import TrustReason
from ..utils.errors import AuthorizationError, StateError, ValidationError
from ..utils.notifications import NotificationEvent, notify_parties
from . import payment_ledger, trust_engine
from .payment_ledger import ZERO, to_cents

logger = logging.getLogger(__name__)

PolicyTable = Union[Sequence[CancellationBand], Sequence[Mapping]]


@dataclass(frozen=True)
class CancellationSplit:
    band: str
    organizer_refund_pct: int
    artist_compensation_pct: int
    platform_retain_pct: int
    artist_penalty_pct: Decimal
    trust_delta: int


@dataclass(frozen=True)
class SplitAmounts:
    total_paid: Decimal
    refund: Decimal
    compensation: Decimal
    platform: Decimal


def _initiator(canceling_party: Union[Side, str, None], reason: CancellationReason) -> str:
    if reason is CancellationReason.FORCE_MAJEURE:
        return "force_majeure"
    if reason is CancellationReason.MUTUAL_AGREEMENT:
        return "mutual_agreement"
    if reason in (CancellationReason.CONTRACT_EXPIRED, CancellationReason.CONTRACT_VOIDED):
        return "platform"
    if canceling_party is None:
        raise ValidationError("A standard cancellation needs the cancelling side", {"canceling_party": "required"})
    return Side(canceling_party).value


def _bands(table: Optional[PolicyTable]) -> Tuple[CancellationBand, ...]:
    return tuple(b if isinstance(b, CancellationBand) else policy.band_from_dict(b) for b in table)


def compute_split(
    booking: models.Booking,
    canceling_party: Union[Side, str, None],
    days_before_event: int,
    policy_override: Optional[PolicyTable] = None,
    reason: CancellationReason = CancellationReason.STANDARD,
) -> CancellationSplit:
    """Pick the cancellation band and return its percentage split.

    The table comes from ``policy_override``, else the booking's contract
    snapshot, else the default table. Carve-out reasons bypass the day
    tiers; the platform-initiated reasons always get the zero-penalty band.
    """
    initiator = _initiator(canceling_party, CancellationReason(reason))
    if initiator == "platform":
        band = policy.ZERO_PENALTY_BAND
    else:
        table = policy_override
        contract = booking.contract
        if table is None and contract is not None:
            table = contract.terms.get("cancellation_policy")
        bands = _bands(table) if table else policy.DEFAULT_CANCELLATION_POLICY
        band = next((b for b in bands if b.matches(initiator, days_before_event)), None)
        if band is None:
            raise ValidationError(
                "No cancellation band covers this case",
                {"initiator": initiator, "days_before_event": str(days_before_event)},
            )

    if band.organizer_refund_pct + band.artist_compensation_pct + band.platform_retain_pct != 100:
        raise ValidationError("Cancellation band does not sum to 100", {"band": band.key})

    if band.artist_penalty == "deposit":
        contract = booking.contract
        penalty = Decimal(str(contract.terms["deposit_percentage"])) if contract is not None else Decimal("0")
    else:
        penalty = Decimal(band.artist_penalty)

    return CancellationSplit(
        band=band.key,
        organizer_refund_pct=band.organizer_refund_pct,
        artist_compensation_pct=band.artist_compensation_pct,
        platform_retain_pct=band.platform_retain_pct,
        artist_penalty_pct=penalty,
        trust_delta=band.trust_delta,
    )


def split_amounts(total_paid: Decimal, split: CancellationSplit) -> SplitAmounts:
    """Turn a split into cents. The platform share absorbs rounding."""
    total = to_cents(total_paid)
    refund = payment_ledger.percentage_of(total, split.organizer_refund_pct)
    compensation = min(payment_ledger.percentage_of(total, split.artist_compensation_pct), total - refund)
    return SplitAmounts(total, refund, compensation, total - refund - compensation)


def days_before_event(booking: models.Booking, now: datetime) -> int:
    return (booking.event_date - now.date()).days


class CancellationService:
    def __init__(self, policy_table: Iterable[CancellationBand] = policy.DEFAULT_CANCELLATION_POLICY):
        self.policy_table = tuple(policy_table)

    def cancel(
        self,
        db: Session,
        booking_id: int,
        actor_id: Optional[int],
        reason: CancellationReason = CancellationReason.STANDARD,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> models.CancellationRecord:
        """Cancel a booking and settle its escrow.

        Retrying returns the existing record, so a retry never refunds or
        penalizes twice. ``actor_id`` is None when the platform cancels
        (expired or voided contract).
        """
        now = now or utcnow()
        reason = CancellationReason(reason)
        booking = crud_booking.require_booking(db, booking_id, lock=True)
        if booking.cancellation is not None:
            logger.info("Cancellation already recorded booking=%s", booking.id)
            return booking.cancellation

        side = None
        if actor_id is not None:
            side = booking.side_of(actor_id)
            actor = crud_user.user.require_user(db, actor_id)
            if side is None or not actor.party.can(Capability.CANCEL):
                raise AuthorizationError("Only the booking's parties can cancel it")
            if reason in (CancellationReason.CONTRACT_EXPIRED, CancellationReason.CONTRACT_VOIDED):
                raise ValidationError("Reason is reserved for platform cancellations", {"reason": reason.value})
        elif not reason.is_carve_out:
            raise ValidationError("A standard cancellation needs an actor", {"actor_id": "required"})

        if booking.status.is_terminal:
            raise StateError("Booking can no longer be cancelled", {"status": booking.status.value})

        days = days_before_event(booking, now)
        table = None if booking.contract is not None and booking.contract.terms.get("cancellation_policy") else self.policy_table
        split = compute_split(booking, side, days, policy_override=table, reason=reason)
        amounts = split_amounts(payment_ledger.total_held(booking), split)
        self._settle_escrow(db, booking, amounts, reason, now)
        payment_ledger.waive_unpaid(db, booking, now=now)

        deltas = {}
        if reason is CancellationReason.STANDARD and split.trust_delta:
            trust_engine.apply_delta(
                db,
                actor_id,
                split.trust_delta,
                TrustReason.CANCELLATION,
                metadata={"band": split.band, "days_before_event": days},
                booking_id=booking.id,
                now=now,
            )
            deltas[str(actor_id)] = split.trust_delta

        penalty_amount = payment_ledger.percentage_of(booking.agreed_fee, split.artist_penalty_pct)
        record = models.CancellationRecord(
            booking_id=booking.id,
            cancelled_by_side=side,
            cancelled_by_user_id=actor_id,
            reason=reason,
            days_before_event=days,
            policy_tier=split.band,
            organizer_refund_pct=split.organizer_refund_pct,
            artist_compensation_pct=split.artist_compensation_pct,
            platform_retain_pct=split.platform_retain_pct,
            artist_penalty_pct=split.artist_penalty_pct,
            currency=booking.currency,
            total_paid=amounts.total_paid,
            refund_amount=amounts.refund,
            compensation_amount=amounts.compensation,
            platform_amount=amounts.platform,
            artist_penalty_amount=penalty_amount,
            trust_deltas=deltas or None,
            note=note,
        )
        db.add(record)
        booking.cancellation = record

        contract = booking.contract
        if contract is not None and contract.status in AWAITING_SIGNATURE_STATUSES:
            contract.status = ContractStatus.VOIDED
            contract.voided_at = now
            contract.void_reason = f"booking cancelled ({reason.value})"
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now

        opportunity = booking.opportunity
        if opportunity.status is OpportunityStatus.FILLED and opportunity.event_date > now.date():
            opportunity.status = OpportunityStatus.ACTIVE

        notify_parties(
            db,
            booking,
            NotificationEvent.BOOKING_CANCELLED,
            {"reason": reason, "band": split.band, "refund": amounts.refund, "compensation": amounts.compensation},
        )
        db.flush()
        logger.info(
            "Booking cancelled booking=%s band=%s paid=%s refund=%s compensation=%s platform=%s",
            booking.id,
            split.band,
            amounts.total_paid,
            amounts.refund,
            amounts.compensation,
            amounts.platform,
        )
        return record

    def _settle_escrow(
        self,
        db: Session,
        booking: models.Booking,
        amounts: SplitAmounts,
        reason: CancellationReason,
        now: datetime,
    ) -> None:
        """Drain held escrow: artist compensation, platform share, then refund."""
        remaining = {
            Payee.ARTIST: amounts.compensation,
            Payee.PLATFORM: amounts.platform,
            Payee.ORGANIZER: amounts.refund,
        }
        note = f"booking cancelled ({reason.value})"
        for milestone in payment_ledger.escrowed(booking):
            if milestone.escrow_status is not EscrowStatus.HELD:
                continue
            for payee in (Payee.ARTIST, Payee.PLATFORM, Payee.ORGANIZER):
                portion = min(remaining[payee], milestone.held_amount)
                if portion <= ZERO:
                    continue
                if payee is Payee.ORGANIZER:
                    payment_ledger.refund(db, milestone, portion, note)
                else:
                    payment_ledger.release(db, milestone, portion, payee=payee, reason=note)
                remaining[payee] -= portion
            milestone.status = (
                MilestoneStatus.REFUNDED
                if milestone.returned_amount == milestone.recorded_amount
                else MilestoneStatus.SETTLED
            )
            milestone.settled_at = now
        payment_ledger.check_invariant(booking)


cancellation_service = CancellationService()
