"""Trust score bookkeeping.

Scores live in ``trust_scores`` and change only through this module. Every
change appends a ``TrustScoreEvent`` with the requested and applied delta,
so clamping at the bounds is visible in the history.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from .. import models
from ..core import policy
from ..core.config import settings
from ..core.policy import TierPolicy
from ..crud import crud_user
from ..models.base import utcnow
from ..models.trust import TrustReason, TrustTier

logger = logging.getLogger(__name__)


def _clamp(score: int) -> int:
    return max(policy.MIN_SCORE, min(policy.MAX_SCORE, score))


def _load(db: Session, user_id: int) -> Optional[models.TrustScore]:
    return (
        db.query(models.TrustScore)
        .filter(models.TrustScore.user_id == user_id)
        .with_for_update()
        .first()
    )


def initialize(db: Session, user_id: int, now: Optional[datetime] = None) -> models.TrustScore:
    """Create the user's score at the initial value, or return the existing one."""
    crud_user.user.require_user(db, user_id)
    existing = _load(db, user_id)
    if existing is not None:
        return existing
    now = now or utcnow()
    score = models.TrustScore(
        user_id=user_id,
        score=policy.INITIAL_SCORE,
        tier=policy.INITIAL_TIER,
        last_activity_at=now,
        decay_points_applied=0,
    )
    db.add(score)
    db.add(
        models.TrustScoreEvent(
            user_id=user_id,
            delta_requested=0,
            delta_applied=0,
            score_before=policy.INITIAL_SCORE,
            score_after=policy.INITIAL_SCORE,
            tier_after=policy.INITIAL_TIER,
            reason_code=TrustReason.INITIALIZED,
        )
    )
    db.flush()
    logger.info("Trust score initialized user=%s score=%s", user_id, policy.INITIAL_SCORE)
    return score


def _record(
    db: Session,
    score: models.TrustScore,
    delta: int,
    reason: TrustReason,
    metadata: Optional[dict[str, Any]],
    booking_id: Optional[int],
) -> models.TrustScoreEvent:
    before = score.score
    after = _clamp(before + delta)
    score.score = after
    score.tier = policy.tier_for_score(after)
    entry = models.TrustScoreEvent(
        user_id=score.user_id,
        delta_requested=delta,
        delta_applied=after - before,
        score_before=before,
        score_after=after,
        tier_after=score.tier,
        reason_code=reason,
        booking_id=booking_id,
        details=metadata or None,
    )
    db.add(entry)
    return entry


def _apply_decay(db: Session, score: models.TrustScore, now: datetime) -> None:
    """Take inactivity points owed since the last activity, up to the cap."""
    idle_days = (now - score.last_activity_at).days
    overdue_days = idle_days - settings.TRUST_INACTIVITY_GRACE_DAYS
    if overdue_days <= 0:
        return
    owed = min(overdue_days // settings.TRUST_DECAY_PERIOD_DAYS, settings.TRUST_DECAY_CAP)
    due_now = owed - score.decay_points_applied
    if due_now <= 0:
        return
    _record(
        db,
        score,
        -due_now,
        TrustReason.INACTIVITY_DECAY,
        {"idle_days": idle_days},
        None,
    )
    score.decay_points_applied = owed
    logger.info("Trust decay user=%s points=%s idle_days=%s", score.user_id, due_now, idle_days)


def get_score(db: Session, user_id: int, now: Optional[datetime] = None) -> models.TrustScore:
    """Current score and tier, after any inactivity decay that is due."""
    score = _load(db, user_id)
    if score is None:
        score = initialize(db, user_id, now=now)
    _apply_decay(db, score, now or utcnow())
    db.flush()
    return score


def apply_delta(
    db: Session,
    user_id: int,
    delta: int,
    reason_code: TrustReason,
    metadata: Optional[dict[str, Any]] = None,
    booking_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> models.TrustScore:
    """Shift a score by ``delta``, clamped to the score bounds.

    Counts as activity: the inactivity clock and the decay allowance reset.
    Raises NotFoundError only when the user does not exist.
    """
    now = now or utcnow()
    score = get_score(db, user_id, now=now)
    entry = _record(db, score, int(delta), TrustReason(reason_code), metadata, booking_id)
    score.last_activity_at = now
    score.decay_points_applied = 0
    db.flush()
    logger.info(
        "Trust delta user=%s reason=%s requested=%s applied=%s score=%s tier=%s",
        user_id,
        entry.reason_code.value,
        entry.delta_requested,
        entry.delta_applied,
        score.score,
        score.tier.value,
    )
    return score


def touch(db: Session, user_id: int, now: Optional[datetime] = None) -> None:
    """Mark the user active without changing the score."""
    score = get_score(db, user_id, now=now)
    score.last_activity_at = now or utcnow()
    score.decay_points_applied = 0
    db.flush()


def policy_for(tier: TrustTier) -> TierPolicy:
    return policy.policy_for(tier)


def current_policy(db: Session, user_id: int, now: Optional[datetime] = None) -> TierPolicy:
    return policy.policy_for(get_score(db, user_id, now=now).tier)


def history(db: Session, user_id: int) -> List[models.TrustScoreEvent]:
    crud_user.user.require_user(db, user_id)
    return (
        db.query(models.TrustScoreEvent)
        .filter(models.TrustScoreEvent.user_id == user_id)
        .order_by(models.TrustScoreEvent.id.asc())
        .all()
    )
