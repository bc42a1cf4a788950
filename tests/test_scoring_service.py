"""
tests/test_scoring_service.py — Attempt Lifecycle & Completion Tests
=====================================================================

End-to-end runs through :class:`ScoringService` against SQLite: events in,
snapshots and a completion report out, with XP, streak and badges applied
in the same transaction.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from devcoach.database.models import AttemptStatus
from devcoach.engine.events import (
    ChecklistItem,
    ChecklistMark,
    CodeEvent,
    CodeEventType,
    TestResult,
    TrapDetection,
)
from devcoach.engine.ledger import XPSource
from devcoach.engine.metrics import RiskLevel, TrendDirection
from devcoach.errors import ErrorKind

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)

DOCS = ChecklistItem("docs", "Document the public function")


@pytest.fixture
def scoring(services, challenge_factory):
    services.scoring.register_challenge(challenge_factory(checklist=(DOCS,))).unwrap()
    return services.scoring


def _start(scoring, user_id: int = 1, at: datetime = T0) -> int:
    return scoring.start_attempt(user_id, "fizzbuzz", at=at).unwrap().attempt_id


def _solve(scoring, attempt_id: int, *, passing: int = 2, ai_lines: int = 0) -> None:
    """Type 30 lines, optionally paste AI code, run the tests, tick the checklist."""
    scoring.record_event(attempt_id, CodeEvent(CodeEventType.TYPED, 60, lines_added=30)).unwrap()
    if ai_lines:
        scoring.record_event(
            attempt_id, CodeEvent(CodeEventType.PASTED, 90, lines_added=ai_lines, was_from_ai=True),
        ).unwrap()
    for n in (1, 2):
        scoring.record_event(attempt_id, TestResult(f"t{n}", n <= passing, 120)).unwrap()
    scoring.record_event(attempt_id, ChecklistMark("docs", True, 150)).unwrap()


# ===========================================================================
# Attempts & events
# ===========================================================================
class TestAttempts:
    def test_start_unknown_challenge(self, scoring):
        result = scoring.start_attempt(1, "no-such-challenge")
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_attempt_numbers_increase(self, scoring):
        _start(scoring)
        second = scoring.start_attempt(1, "fizzbuzz", at=T0).unwrap()
        assert second.attempt_number == 2
        assert second.status is AttemptStatus.IN_PROGRESS

    def test_event_for_unknown_attempt(self, scoring):
        result = scoring.record_event(999, TestResult("t1", True, 1))
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_invalid_event(self, scoring):
        attempt_id = _start(scoring)
        result = scoring.record_event(attempt_id, CodeEvent(CodeEventType.TYPED, 1, lines_added=-4))
        assert result.error.kind is ErrorKind.VALIDATION

    def test_second_detection_of_same_trap_conflicts(self, scoring):
        attempt_id = _start(scoring)
        scoring.record_event(attempt_id, TrapDetection("sql", 4, True)).unwrap()
        result = scoring.record_event(attempt_id, TrapDetection("sql", 9, False))
        assert result.error.kind is ErrorKind.CONFLICT

    def test_abandon(self, scoring):
        attempt_id = _start(scoring)
        assert scoring.abandon_attempt(attempt_id).unwrap().status is AttemptStatus.ABANDONED
        result = scoring.record_event(attempt_id, TestResult("t1", True, 1))
        assert result.error.kind is ErrorKind.CONFLICT


# ===========================================================================
# Snapshots & trends
# ===========================================================================
class TestSnapshots:
    def test_snapshot_reflects_events(self, scoring):
        attempt_id = _start(scoring)
        _solve(scoring, attempt_id, passing=1)
        snap = scoring.compute_snapshot(attempt_id, 200).unwrap()
        assert snap.dependency_index == 0.0
        assert snap.pass_rate == 50.0
        assert snap.checklist_score == 100.0
        assert [s.session_time for s in scoring.snapshots(attempt_id).unwrap()] == [200]

    def test_negative_elapsed(self, scoring):
        attempt_id = _start(scoring)
        assert scoring.compute_snapshot(attempt_id, -1).error.kind is ErrorKind.VALIDATION

    def test_stale_snapshot(self, scoring):
        attempt_id = _start(scoring)
        scoring.compute_snapshot(attempt_id, 300).unwrap()
        assert scoring.compute_snapshot(attempt_id, 200).error.kind is ErrorKind.CONFLICT

    def test_trend(self, scoring):
        attempt_id = _start(scoring)
        scoring.record_event(attempt_id, TestResult("t1", True, 10)).unwrap()
        scoring.compute_snapshot(attempt_id, 60).unwrap()
        scoring.record_event(attempt_id, TestResult("t2", True, 70)).unwrap()
        scoring.compute_snapshot(attempt_id, 120).unwrap()
        trend = scoring.trend(attempt_id, "pr").unwrap()
        assert trend.direction is TrendDirection.IMPROVING
        assert trend.change_percent == 100.0

    def test_trend_unknown_metric(self, scoring):
        attempt_id = _start(scoring)
        assert scoring.trend(attempt_id, "LOC").error.kind is ErrorKind.VALIDATION


# ===========================================================================
# Completion
# ===========================================================================
class TestCompleteAttempt:
    def test_clean_solve(self, services, scoring, sink, kinds_of):
        attempt_id = _start(scoring)
        _solve(scoring, attempt_id)
        report = scoring.complete_attempt(attempt_id, at=T0, elapsed=600).unwrap()

        assert report.passed
        assert report.score == 100.0
        assert report.streak_update.current == 1
        assert report.risk.level is RiskLevel.LOW
        assert len(report.insights) == 3

        challenge_tx = report.xp_transactions[0]
        # 100 × 1.0 × 1.5 × 1.25 × 1.5 × 1.0
        assert challenge_tx.amount == 281
        assert challenge_tx.source is XPSource.CHALLENGE
        assert challenge_tx.source_id == str(attempt_id)

        keys = {b.key for b in report.unlocked_badges}
        assert keys == {"first-steps", "first-pass", "manual-mastery"}
        assert report.xp_earned == 281 + 10 + 25 + 100
        assert services.ledger.balance(1).unwrap().balance == report.xp_earned
        assert services.ledger.verify(1).unwrap() == report.xp_earned

        assert report.user_metrics.total_attempts == 1
        assert report.user_metrics_delta["total_attempts"] == 1
        assert kinds_of(sink).count("BADGE_UNLOCK") == 3
        assert "LEVEL_UP" in kinds_of(sink)

    def test_failed_attempt_earns_nothing(self, services, scoring):
        attempt_id = _start(scoring)
        _solve(scoring, attempt_id, passing=1)
        report = scoring.complete_attempt(attempt_id, at=T0, elapsed=600).unwrap()
        assert not report.passed
        assert report.xp_transactions == []
        assert report.unlocked_badges == []
        assert report.streak_update.current == 1
        assert services.ledger.balance(1).unwrap().balance == 0

    def test_completing_twice_conflicts(self, services, scoring):
        attempt_id = _start(scoring)
        _solve(scoring, attempt_id)
        first = scoring.complete_attempt(attempt_id, at=T0).unwrap()
        again = scoring.complete_attempt(attempt_id, at=T0)
        assert again.error.kind is ErrorKind.CONFLICT
        assert services.ledger.balance(1).unwrap().balance == first.xp_earned
        assert scoring.get_attempt(attempt_id).unwrap().status is AttemptStatus.COMPLETED

    def test_ai_heavy_retry_next_day(self, scoring):
        first = _start(scoring)
        _solve(scoring, first)
        scoring.complete_attempt(first, at=T0).unwrap()

        day2 = T0 + timedelta(days=1)
        second = _start(scoring, at=day2)
        _solve(scoring, second, ai_lines=90)
        report = scoring.complete_attempt(second, at=day2).unwrap()

        # 90 untouched AI lines against 30 typed: DI = 100 × 0.75
        assert report.final_snapshot.dependency_index == 75.0
        assert report.streak_update.current == 2
        assert report.xp_transactions[0].amount < 281
        assert any(i.startswith("Dependency increased by 75.0%") for i in report.insights)
        assert report.user_metrics.average_di == 37.5

    def test_completion_before_last_activity_rolls_back(self, services, scoring):
        done = _start(scoring)
        _solve(scoring, done)
        scoring.complete_attempt(done, at=T0 + timedelta(days=1)).unwrap()
        balance = services.ledger.balance(1).unwrap().balance

        late = _start(scoring)
        _solve(scoring, late)
        result = scoring.complete_attempt(late, at=T0)
        assert result.error.kind is ErrorKind.CONFLICT
        assert scoring.get_attempt(late).unwrap().status is AttemptStatus.IN_PROGRESS
        assert services.ledger.balance(1).unwrap().balance == balance

    def test_user_metrics_default(self, scoring):
        assert scoring.user_metrics(42).unwrap().total_attempts == 0


# ===========================================================================
# Certificates through the scoring entry point
# ===========================================================================
class TestCertificateDelegation:
    def test_issue_and_verify(self, scoring):
        cert = scoring.issue_certificate(1, "FOUNDATION", 85, 90, 80, now=T0).unwrap()
        assert cert.grade == "A"
        assert scoring.verify_certificate(cert.code, now=T0).unwrap().valid

    def test_unwired_service(self, db_engine, config):
        from devcoach.services.scoring_service import ScoringService

        bare = ScoringService(db_engine, config)
        assert bare.verify_certificate("DEVC-0000-0000").error.kind is ErrorKind.CONFIGURATION
