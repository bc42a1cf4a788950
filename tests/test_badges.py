"""
tests/test_badges.py — Badge Requirement Handlers & Badge Service Tests
========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from devcoach.engine.badges import (
    BadgeContext,
    BadgeDefinition,
    badge_progress,
    check_badge,
    evaluate_badges,
)
from devcoach.engine.ledger import XPSource
from devcoach.engine.metrics import AttemptSummary
from devcoach.errors import CoachError, ErrorKind
from devcoach.services.store import open_store

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


def _badge(key: str, requirement: dict, xp_reward: int = 0) -> BadgeDefinition:
    return BadgeDefinition(key=key, name=key.title(), requirement=requirement, xp_reward=xp_reward)


def _attempt(
    n: int, di: float = 20.0, pr: float = 100.0, cs: float = 80.0,
    category: str = "algorithms", passed: bool = True,
) -> AttemptSummary:
    return AttemptSummary(
        attempt_id=n,
        challenge_id=f"c{n}",
        category=category,
        completed_at=T0 + timedelta(hours=n),
        dependency_index=di,
        pass_rate=pr,
        checklist_score=cs,
        passed=passed,
    )


# ===========================================================================
# Requirement handlers
# ===========================================================================
class TestRequirementHandlers:
    def test_xp_progress(self):
        badge = _badge("xp", {"type": "xp", "value": 1000})
        progress = check_badge(badge, BadgeContext(user_id=1, xp_balance=250))
        assert not progress.matched
        assert progress.progress == 0.25

    def test_level(self):
        badge = _badge("lvl", {"type": "level", "value": 3})
        assert check_badge(badge, BadgeContext(user_id=1, level=3)).matched

    def test_challenges_in_category(self):
        badge = _badge("sec", {"type": "challenges", "count": 2, "category": "security"})
        ctx = BadgeContext(user_id=1, attempts=(
            _attempt(1, category="security"),
            _attempt(2, category="security", passed=False),
            _attempt(3, category="frontend"),
        ))
        progress = check_badge(badge, ctx)
        assert not progress.matched
        assert progress.progress == 0.5

    def test_streak(self):
        badge = _badge("s", {"type": "streak", "days": 7})
        assert check_badge(badge, BadgeContext(user_id=1, current_streak=7)).matched

    def test_metric_average_needs_min_attempts(self):
        badge = _badge("v", {
            "type": "metrics", "metric": "CS", "threshold": 80,
            "comparison": "gte", "scope": "average", "min_attempts": 3,
        })
        few = BadgeContext(user_id=1, attempts=(_attempt(1, cs=95), _attempt(2, cs=95)))
        assert not check_badge(badge, few).matched
        enough = BadgeContext(user_id=1, attempts=tuple(_attempt(n, cs=85) for n in range(3)))
        assert check_badge(badge, enough).matched

    def test_metric_last_attempt_lte(self):
        badge = _badge("ind", {"type": "metrics", "metric": "DI", "threshold": 30, "comparison": "lte"})
        ctx = BadgeContext(user_id=1, attempts=(_attempt(1, di=70), _attempt(2, di=25)))
        assert check_badge(badge, ctx).matched

    def test_low_dependency_attempts(self):
        badge = _badge("mm", {"type": "low_dependency_attempts", "count": 1, "max_di": 10, "min_pr": 100})
        assert not check_badge(badge, BadgeContext(user_id=1, attempts=(_attempt(1, di=5, pr=90),))).matched
        assert check_badge(badge, BadgeContext(user_id=1, attempts=(_attempt(1, di=5),))).matched

    def test_failed_attempts_do_not_count_as_independent(self):
        badge = _badge("it", {"type": "low_dependency_attempts", "count": 10, "max_di": 30})
        failures = tuple(_attempt(n, di=0.0, pr=0.0, cs=0.0, passed=False) for n in range(10))
        progress = check_badge(badge, BadgeContext(user_id=1, attempts=failures))
        assert not progress.matched
        assert progress.progress == 0.0

    def test_certificate(self):
        badge = _badge("cf", {"type": "certificate", "level": "foundation"})
        ctx = BadgeContext(user_id=1, certificate_levels=frozenset({"FOUNDATION"}))
        assert check_badge(badge, ctx).matched

    def test_unknown_metric_is_configuration_error(self):
        badge = _badge("bad", {"type": "metrics", "metric": "LOC", "threshold": 1})
        with pytest.raises(CoachError) as exc:
            check_badge(badge, BadgeContext(user_id=1, attempts=(_attempt(1),)))
        assert exc.value.kind is ErrorKind.CONFIGURATION


class TestEvaluateBadges:
    def test_skips_owned(self):
        catalog = [_badge("a", {"type": "xp", "value": 1}), _badge("b", {"type": "xp", "value": 1})]
        unlocked = evaluate_badges(catalog, BadgeContext(user_id=1, xp_balance=5), {"a"})
        assert [b.key for b in unlocked] == ["b"]

    def test_unknown_shape_fails_whole_catalogue(self):
        catalog = [_badge("a", {"type": "xp", "value": 1}), _badge("z", {"type": "moon-phase"})]
        with pytest.raises(CoachError) as exc:
            evaluate_badges(catalog, BadgeContext(user_id=1, xp_balance=5), set())
        assert exc.value.kind is ErrorKind.CONFIGURATION

    def test_progress_reports_owned_as_complete(self):
        catalog = [_badge("a", {"type": "xp", "value": 100})]
        (evaluation,) = badge_progress(catalog, BadgeContext(user_id=1), {"a"})
        assert evaluation.progress.matched
        assert evaluation.progress.progress == 1.0


# ===========================================================================
# BadgeService
# ===========================================================================
class TestBadgeService:
    def test_first_xp_unlocks_first_steps(self, services):
        services.ledger.post(1, 10, XPSource.BONUS).unwrap()
        unlocked = services.badges.evaluate(1).unwrap()
        assert [u.badge.key for u in unlocked] == ["first-steps"]
        assert unlocked[0].reward.amount == 10
        assert services.ledger.balance(1).unwrap().balance == 20

    def test_evaluate_twice_is_idempotent(self, services):
        services.ledger.post(1, 10, XPSource.BONUS).unwrap()
        services.badges.evaluate(1).unwrap()
        assert services.badges.evaluate(1).unwrap() == []
        assert services.ledger.balance(1).unwrap().balance == 20

    def test_rewards_cascade_until_nothing_new(self, services, sink, kinds_of):
        services.ledger.post(1, 4995, XPSource.BONUS).unwrap()
        unlocked = services.badges.evaluate(1).unwrap()
        # 4995 + 10 + 100 crosses 5000 and unlocks xp-hoarder on the next pass
        assert {u.badge.key for u in unlocked} == {"first-steps", "rising-star", "xp-hoarder"}
        assert services.ledger.balance(1).unwrap().balance == 5305
        assert kinds_of(sink).count("BADGE_UNLOCK") == 3

    def test_manual_unlock_posts_reward(self, services):
        granted = services.badges.unlock(1, "week-warrior").unwrap()
        assert granted.reward.source is XPSource.BADGE
        assert granted.reward.source_id == "week-warrior"
        assert "week-warrior" in services.badges.unlocked(1).unwrap()

    def test_duplicate_unlock_conflicts(self, services):
        services.badges.unlock(1, "week-warrior").unwrap()
        result = services.badges.unlock(1, "week-warrior")
        assert result.error.kind is ErrorKind.CONFLICT
        assert services.ledger.balance(1).unwrap().balance == 50

    def test_unknown_badge(self, services):
        result = services.badges.unlock(1, "does-not-exist")
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_resume_missing_reward(self, services, db_engine):
        with open_store(db_engine) as store:
            store.save_user_badge(1, "week-warrior", T0)
        posted = services.badges.resume_rewards(1).unwrap()
        assert [tx.amount for tx in posted] == [50]
        assert services.badges.resume_rewards(1).unwrap() == []

    def test_progress_for_new_user(self, services):
        by_key = {e.badge.key: e.progress for e in services.badges.progress(1).unwrap()}
        assert not by_key["week-warrior"].matched
        assert by_key["week-warrior"].progress == 0.0
