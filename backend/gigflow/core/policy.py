"""Declarative policy tables for trust tiers, contracts and cancellations.

Everything here is plain immutable data plus small lookup helpers. Engines
take these as default arguments so tests can inject alternatives.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from ..models.trust import TrustTier


INITIAL_SCORE = 50
# New accounts start in the grace tier regardless of the table below.
INITIAL_TIER = TrustTier.STANDARD
MIN_SCORE = 0
MAX_SCORE = 100


@dataclass(frozen=True)
class TierPolicy:
    commission_percentage: Decimal
    max_pending_applications: int
    deposit_percentage: Decimal


# Inclusive upper bounds, ascending.
SCORE_TIERS: Tuple[Tuple[int, TrustTier], ...] = (
    (30, TrustTier.CRITICAL),
    (50, TrustTier.HIGH_RISK),
    (70, TrustTier.STANDARD),
    (85, TrustTier.TRUSTED),
    (100, TrustTier.PREMIUM),
)

TIER_POLICIES: Mapping[TrustTier, TierPolicy] = MappingProxyType(
    {
        TrustTier.CRITICAL: TierPolicy(Decimal("20"), 1, Decimal("50")),
        TrustTier.HIGH_RISK: TierPolicy(Decimal("15"), 3, Decimal("40")),
        TrustTier.STANDARD: TierPolicy(Decimal("12"), 5, Decimal("30")),
        TrustTier.TRUSTED: TierPolicy(Decimal("10"), 8, Decimal("25")),
        TrustTier.PREMIUM: TierPolicy(Decimal("8"), 12, Decimal("20")),
    }
)


def tier_for_score(score: int, table: Tuple[Tuple[int, TrustTier], ...] = SCORE_TIERS) -> TrustTier:
    for upper, tier in table:
        if score <= upper:
            return tier
    return table[-1][1]


def policy_for(tier: TrustTier, table: Mapping[TrustTier, TierPolicy] = TIER_POLICIES) -> TierPolicy:
    return table[TrustTier(tier)]


# ─── Contract clauses ────────────────────────────────────────────────────────

BASE_CLAUSES: Tuple[str, ...] = (
    "performance_obligation",
    "payment_schedule",
    "cancellation_policy",
    "force_majeure",
    "dispute_resolution",
)

_LOW_TRUST = frozenset({TrustTier.CRITICAL, TrustTier.HIGH_RISK})

CLAUSES_BY_TIER: Mapping[str, Mapping[TrustTier, Tuple[str, ...]]] = MappingProxyType(
    {
        "organizer": MappingProxyType(
            {tier: ("deposit_before_announcement",) for tier in _LOW_TRUST}
            | {TrustTier.PREMIUM: ("priority_support",)}
        ),
        "artist": MappingProxyType(
            {tier: ("performance_bond",) for tier in _LOW_TRUST}
            | {TrustTier.PREMIUM: ("priority_support",)}
        ),
    }
)


def clauses_for(artist_tier: TrustTier, organizer_tier: TrustTier) -> Tuple[str, ...]:
    """Ordered, de-duplicated clause list for a contract between two tiers."""
    clauses = list(BASE_CLAUSES)
    for side, tier in (("organizer", organizer_tier), ("artist", artist_tier)):
        for clause in CLAUSES_BY_TIER[side].get(TrustTier(tier), ()):
            if clause not in clauses:
                clauses.append(clause)
    return tuple(clauses)


# ─── Trust deltas ────────────────────────────────────────────────────────────

COMPLETION_DELTA = 2
# completed-booking count -> bonus
COMPLETION_MILESTONE_BONUSES: Mapping[int, int] = MappingProxyType({1: 3, 10: 5, 25: 10})


@dataclass(frozen=True)
class CancellationBand:
    """One row of the cancellation table.

    ``min_days``/``max_days`` are inclusive; ``None`` leaves a side open.
    """

    key: str
    initiator: str
    min_days: Optional[int]
    max_days: Optional[int]
    organizer_refund_pct: int
    artist_compensation_pct: int
    platform_retain_pct: int
    # percentage of the agreed fee; "deposit" means the contract's deposit %
    artist_penalty: str = "0"
    trust_delta: int = 0

    def matches(self, initiator: str, days_before_event: int) -> bool:
        if initiator != self.initiator:
            return False
        if self.min_days is not None and days_before_event < self.min_days:
            return False
        if self.max_days is not None and days_before_event > self.max_days:
            return False
        return True

    def as_dict(self) -> dict:
        return {
            "key": self.key,
            "initiator": self.initiator,
            "min_days": self.min_days,
            "max_days": self.max_days,
            "organizer_refund_pct": self.organizer_refund_pct,
            "artist_compensation_pct": self.artist_compensation_pct,
            "platform_retain_pct": self.platform_retain_pct,
            "artist_penalty": self.artist_penalty,
            "trust_delta": self.trust_delta,
        }


# Initiators "force_majeure" and "mutual_agreement" match any day count.
DEFAULT_CANCELLATION_POLICY: Tuple[CancellationBand, ...] = (
    CancellationBand("artist_over_90", "artist", 91, None, 100, 0, 0, "0", -2),
    CancellationBand("artist_30_to_90", "artist", 30, 90, 100, 0, 0, "deposit", -5),
    CancellationBand("artist_under_30", "artist", None, 29, 100, 0, 0, "90", -10),
    CancellationBand("organizer_over_30", "organizer", 31, None, 80, 20, 0, "0", -2),
    CancellationBand("organizer_15_to_30", "organizer", 15, 30, 50, 50, 0, "0", -5),
    CancellationBand("organizer_under_15", "organizer", None, 14, 0, 100, 0, "0", -10),
    CancellationBand("force_majeure", "force_majeure", None, None, 97, 0, 3),
    CancellationBand("mutual_agreement", "mutual_agreement", None, None, 95, 2, 3),
)

# Platform-initiated cancellation before any money moved.
ZERO_PENALTY_BAND = CancellationBand("no_penalty", "platform", None, None, 100, 0, 0)


def band_from_dict(data: Mapping) -> CancellationBand:
    return CancellationBand(
        key=data["key"],
        initiator=data["initiator"],
        min_days=data.get("min_days"),
        max_days=data.get("max_days"),
        organizer_refund_pct=int(data["organizer_refund_pct"]),
        artist_compensation_pct=int(data["artist_compensation_pct"]),
        platform_retain_pct=int(data["platform_retain_pct"]),
        artist_penalty=str(data.get("artist_penalty", "0")),
        trust_delta=int(data.get("trust_delta", 0)),
    )


def cancellation_policy_snapshot(
    policy: Tuple[CancellationBand, ...] = DEFAULT_CANCELLATION_POLICY,
) -> list:
    """JSON-ready copy of a cancellation table for a contract snapshot."""
    return [band.as_dict() for band in policy]
