"""
tests/test_ledger.py — XP Ledger, Level & Challenge Reward Tests
=================================================================

Pure-function tests for level derivation, transaction building, ledger
replay and the challenge XP pipeline.
"""

from __future__ import annotations

import pytest

from devcoach.engine.events import Difficulty
from devcoach.engine.ledger import (
    NegativePolicy,
    XPSource,
    XPTransaction,
    build_transaction,
    compute_level,
    replay_ledger,
)
from devcoach.engine.metrics import MetricSnapshot
from devcoach.engine.rewards import (
    calculate_challenge_xp,
    independence_multiplier,
    performance_multiplier,
    streak_multiplier,
)
from devcoach.errors import CoachError, ErrorKind, InvariantViolation


def _tx(sequence: int, before: int, amount: int, after: int | None = None) -> XPTransaction:
    return XPTransaction(
        user_id=1,
        amount=amount,
        source=XPSource.BONUS,
        balance_before=before,
        balance_after=before + amount if after is None else after,
        sequence=sequence,
    )


# ===========================================================================
# Levels
# ===========================================================================
class TestComputeLevel:
    def test_starting_level(self):
        info = compute_level(0)
        assert info.level == 1
        assert info.title == "Beginner"
        assert info.xp_to_next == 100
        assert info.progress_percent == 0.0
        assert info.next_level == 2

    def test_mid_level_progress(self):
        info = compute_level(150)
        assert info.level == 2
        assert info.title == "Apprentice"
        assert info.xp_into_level == 50
        assert info.xp_to_next == 150
        assert info.progress_percent == 25.0

    def test_exact_threshold(self):
        assert compute_level(1000).level == 5

    def test_top_level(self):
        info = compute_level(25_000)
        assert info.level == 10
        assert info.title == "Legend"
        assert info.xp_to_next == 0
        assert info.progress_percent == 100.0
        assert info.next_level is None

    def test_monotonic(self):
        levels = [compute_level(xp).level for xp in range(0, 12_000, 50)]
        assert levels == sorted(levels)


# ===========================================================================
# Transactions
# ===========================================================================
class TestBuildTransaction:
    def test_credit(self):
        tx = build_transaction(1, 40, 60, XPSource.CHALLENGE, source_id="7")
        assert tx.balance_before == 40
        assert tx.balance_after == 100
        assert tx.source is XPSource.CHALLENGE
        assert tx.source_id == "7"

    def test_string_source_accepted(self):
        assert build_transaction(1, 0, 5, "BONUS").source is XPSource.BONUS

    def test_zero_amount_rejected(self):
        with pytest.raises(CoachError) as exc:
            build_transaction(1, 10, 0, XPSource.BONUS)
        assert exc.value.kind is ErrorKind.VALIDATION

    def test_unknown_source_rejected(self):
        with pytest.raises(CoachError) as exc:
            build_transaction(1, 10, 5, "LOTTERY")
        assert exc.value.kind is ErrorKind.VALIDATION

    def test_overdraft_rejected_by_default(self):
        with pytest.raises(CoachError) as exc:
            build_transaction(1, 10, -25, XPSource.PENALTY)
        assert exc.value.kind is ErrorKind.INSUFFICIENT_BALANCE
        assert exc.value.details["balance"] == 10

    def test_overdraft_clamped(self):
        tx = build_transaction(1, 10, -25, XPSource.PENALTY, policy=NegativePolicy.CLAMP)
        assert tx.amount == -10
        assert tx.balance_after == 0

    def test_clamp_on_empty_balance_rejected(self):
        with pytest.raises(CoachError) as exc:
            build_transaction(1, 0, -5, XPSource.PENALTY, policy="clamp")
        assert exc.value.kind is ErrorKind.INSUFFICIENT_BALANCE

    def test_debit_to_exactly_zero(self):
        assert build_transaction(1, 10, -10, XPSource.PENALTY).balance_after == 0

    def test_negative_starting_balance_is_corruption(self):
        with pytest.raises(InvariantViolation):
            build_transaction(1, -1, 5, XPSource.BONUS)


class TestReplayLedger:
    def test_empty(self):
        assert replay_ledger([]) == 0

    def test_replays_in_sequence_order(self):
        rows = [_tx(2, 50, -20), _tx(1, 0, 50), _tx(3, 30, 70)]
        assert replay_ledger(rows) == 100

    def test_broken_chain(self):
        with pytest.raises(InvariantViolation):
            replay_ledger([_tx(1, 0, 50), _tx(2, 40, 10)])

    def test_row_that_does_not_add_up(self):
        with pytest.raises(InvariantViolation):
            replay_ledger([_tx(1, 0, 50, after=60)])

    def test_negative_balance(self):
        with pytest.raises(InvariantViolation):
            replay_ledger([_tx(1, 0, 10), _tx(2, 10, -20)])


# ===========================================================================
# Challenge XP
# ===========================================================================
def _snapshot(di: float, pr: float, cs: float) -> MetricSnapshot:
    return MetricSnapshot(session_time=0, dependency_index=di, pass_rate=pr, checklist_score=cs)


class TestRewardStages:
    @pytest.mark.parametrize(
        "di,pr,cs,expected",
        [(10, 100, 100, 1.5), (20, 90, 70, 1.3), (50, 70, 50, 0.85)],
    )
    def test_performance(self, di, pr, cs, expected):
        assert performance_multiplier(_snapshot(di, pr, cs)) == expected

    @pytest.mark.parametrize("di,expected", [(0, 1.5), (30, 1.25), (50, 1.0), (70, 0.75)])
    def test_independence(self, di, expected):
        assert independence_multiplier(di) == expected

    @pytest.mark.parametrize("days,expected", [(0, 1.0), (3, 1.05), (13, 1.15), (30, 1.5)])
    def test_streak(self, days, expected):
        assert streak_multiplier(days) == expected


class TestCalculateChallengeXP:
    def test_strong_first_attempt(self):
        result = calculate_challenge_xp(100, Difficulty.MEDIUM, _snapshot(10, 100, 100))
        # 100 × 1.5 × 1.5 × 1.25 × 1.5
        assert result.xp == 422
        assert result.multipliers["first_try"] == 1.25

    def test_weak_retry_on_a_streak(self):
        result = calculate_challenge_xp(
            200, Difficulty.EASY, _snapshot(50, 70, 50), attempt_number=2, streak_days=14,
        )
        # 200 × 1.0 × 0.85 × 1.0 × 1.0 × 1.3
        assert result.xp == 221
        assert result.multipliers["first_try"] == 1.0

    def test_breakdown_lists_non_neutral_multipliers(self):
        result = calculate_challenge_xp(100, Difficulty.EASY, _snapshot(60, 100, 100))
        assert result.breakdown().startswith("100 XP × ")
        assert "difficulty" not in result.breakdown()
