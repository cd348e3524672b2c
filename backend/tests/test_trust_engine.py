from datetime import timedelta

import pytest

from gigflow.core import policy
from gigflow.models.party import Party
from gigflow.models.trust import TrustReason, TrustTier
from gigflow.services import trust_engine
from gigflow.utils.errors import NotFoundError


def test_initialize_is_idempotent(db, flow, now):
    flow.user(10, Party.ARTIST)
    again = trust_engine.initialize(db, 10, now=now + timedelta(days=1))

    assert again.score == policy.INITIAL_SCORE
    assert again.tier is TrustTier.STANDARD
    events = trust_engine.history(db, 10)
    assert [e.reason_code for e in events] == [TrustReason.INITIALIZED]


def test_unknown_user_raises(db):
    with pytest.raises(NotFoundError):
        trust_engine.apply_delta(db, 999, 5, TrustReason.MANUAL_ADJUSTMENT)


@pytest.mark.parametrize(
    "start,delta,expected,applied",
    [
        (95, 10, 100, 5),
        (5, -10, 0, -5),
        (50, 3, 53, 3),
        (100, 1, 100, 0),
    ],
)
def test_delta_is_clamped_and_history_records_both(db, flow, now, start, delta, expected, applied):
    flow.user(11, Party.ORGANIZER, score=start)

    score = trust_engine.apply_delta(db, 11, delta, TrustReason.MANUAL_ADJUSTMENT, metadata={"by": "ops"}, now=now)

    assert score.score == expected
    last = trust_engine.history(db, 11)[-1]
    assert last.delta_requested == delta
    assert last.delta_applied == applied
    assert last.score_after == expected
    assert last.details == {"by": "ops"}


@pytest.mark.parametrize(
    "score,tier",
    [
        (0, TrustTier.CRITICAL),
        (30, TrustTier.CRITICAL),
        (31, TrustTier.HIGH_RISK),
        (50, TrustTier.HIGH_RISK),
        (51, TrustTier.STANDARD),
        (70, TrustTier.STANDARD),
        (71, TrustTier.TRUSTED),
        (85, TrustTier.TRUSTED),
        (86, TrustTier.PREMIUM),
        (100, TrustTier.PREMIUM),
    ],
)
def test_tier_boundaries(score, tier):
    assert policy.tier_for_score(score) is tier


def test_tier_follows_score_after_delta(db, flow, now):
    flow.user(12, Party.ARTIST)

    score = trust_engine.apply_delta(db, 12, 25, TrustReason.MANUAL_ADJUSTMENT, now=now)

    assert score.score == 75
    assert score.tier is TrustTier.TRUSTED
    assert trust_engine.current_policy(db, 12, now=now).max_pending_applications == 8


def test_inactivity_decay_is_lazy_and_not_repeated(db, flow, now):
    flow.user(13, Party.ARTIST, score=60)
    later = now + timedelta(days=90 + 30 * 3)

    first = trust_engine.get_score(db, 13, now=later)
    second = trust_engine.get_score(db, 13, now=later)

    assert first.score == 57
    assert second.score == 57
    decay = [e for e in trust_engine.history(db, 13) if e.reason_code is TrustReason.INACTIVITY_DECAY]
    assert len(decay) == 1


def test_inactivity_decay_is_capped(db, flow, now):
    flow.user(14, Party.ARTIST, score=60)

    trust_engine.get_score(db, 14, now=now + timedelta(days=200))
    score = trust_engine.get_score(db, 14, now=now + timedelta(days=2000))

    assert score.score == 60 - 10


def test_activity_resets_decay_clock(db, flow, now):
    flow.user(15, Party.ARTIST, score=60)
    later = now + timedelta(days=150)

    trust_engine.touch(db, 15, now=later)
    score = trust_engine.get_score(db, 15, now=later + timedelta(days=60))

    # the first 150 idle days decayed 2 points before the touch; nothing since
    assert score.score == 58


def test_better_tiers_get_better_terms():
    ordered = [TrustTier.CRITICAL, TrustTier.HIGH_RISK, TrustTier.STANDARD, TrustTier.TRUSTED, TrustTier.PREMIUM]
    policies = [trust_engine.policy_for(t) for t in ordered]

    for worse, better in zip(policies, policies[1:]):
        assert better.commission_percentage < worse.commission_percentage
        assert better.max_pending_applications > worse.max_pending_applications
        assert better.deposit_percentage < worse.deposit_percentage
