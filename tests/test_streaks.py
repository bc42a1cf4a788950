"""
tests/test_streaks.py — Streak State Machine & Streak Service Tests
====================================================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from devcoach.engine.streaks import (
    StreakState,
    StreakStatus,
    apply_activity,
    is_at_risk,
    is_lapsed,
    mark_risk_notified,
    next_milestone,
    reset,
)
from devcoach.errors import CoachError, ErrorKind
from devcoach.services.locks import UserLocks
from devcoach.services.store import SqlStore
from devcoach.services.streak_service import StreakService

D1 = date(2026, 3, 2)
D2 = date(2026, 3, 3)
D3 = date(2026, 3, 4)
D4 = date(2026, 3, 5)


def _at(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour, 0, tzinfo=UTC)


# ===========================================================================
# Pure state machine
# ===========================================================================
class TestApplyActivity:
    def test_first_activity(self):
        state = apply_activity(StreakState(user_id=1), D1)
        assert state.current_streak == 1
        assert state.status is StreakStatus.ACTIVE
        assert state.last_activity_date == D1

    def test_consecutive_days_extend(self):
        state = apply_activity(apply_activity(StreakState(user_id=1), D1), D2)
        assert state.current_streak == 2
        assert state.longest_streak == 2

    def test_same_day_is_idempotent(self):
        once = apply_activity(StreakState(user_id=1), D1)
        assert apply_activity(once, D1) == once

    def test_gap_restarts_at_one(self):
        state = StreakState(user_id=1, current_streak=5, longest_streak=5, last_activity_date=D1)
        after = apply_activity(state, D4)
        assert after.current_streak == 1
        assert after.longest_streak == 5

    def test_older_day_conflicts(self):
        state = StreakState(user_id=1, current_streak=1, longest_streak=1, last_activity_date=D2)
        with pytest.raises(CoachError) as exc:
            apply_activity(state, D1)
        assert exc.value.kind is ErrorKind.CONFLICT

    def test_activity_after_reset(self):
        broken = reset(StreakState(user_id=1, current_streak=3, longest_streak=3, last_activity_date=D2))
        assert broken.status is StreakStatus.BROKEN
        assert apply_activity(broken, D2).current_streak == 1


class TestRiskAndLapse:
    def test_at_risk_when_yesterday_was_last(self):
        state = StreakState(user_id=1, current_streak=4, longest_streak=4, last_activity_date=D1)
        assert is_at_risk(state, D2)
        assert not is_at_risk(mark_risk_notified(state, D2), D2)

    def test_not_at_risk_after_todays_activity(self):
        state = StreakState(user_id=1, current_streak=4, longest_streak=4, last_activity_date=D2)
        assert not is_at_risk(state, D2)

    def test_broken_streak_never_at_risk(self):
        assert not is_at_risk(StreakState(user_id=1, last_activity_date=D1), D2)

    def test_lapsed(self):
        state = StreakState(user_id=1, current_streak=4, longest_streak=4, last_activity_date=D1)
        assert not is_lapsed(state, D2)
        assert is_lapsed(state, D3)

    def test_reset_keeps_longest(self):
        state = reset(StreakState(user_id=1, current_streak=9, longest_streak=12))
        assert state.current_streak == 0
        assert state.longest_streak == 12

    def test_next_milestone(self):
        assert next_milestone(0) == 3
        assert next_milestone(7) == 14
        assert next_milestone(400) is None


# ===========================================================================
# StreakService
# ===========================================================================
class TestStreakService:
    def test_consecutive_days(self, services):
        first = services.streaks.record_activity(1, _at(D1)).unwrap()
        second = services.streaks.record_activity(1, _at(D2)).unwrap()
        assert first.current == 1
        assert second.current == 2
        assert second.extended

    def test_gap_resets_to_one(self, services):
        services.streaks.record_activity(1, _at(D1))
        services.streaks.record_activity(1, _at(D2))
        update = services.streaks.record_activity(1, _at(D4)).unwrap()
        assert update.current == 1
        assert update.longest == 2
        assert update.reset_to_one

    def test_out_of_order_activity_conflicts(self, services):
        services.streaks.record_activity(1, _at(D2))
        result = services.streaks.record_activity(1, _at(D1))
        assert not result.ok
        assert result.error.kind is ErrorKind.CONFLICT

    def test_status_of_lapsed_streak_shows_zero(self, services):
        services.streaks.record_activity(1, _at(D1))
        view = services.streaks.status(1, D4).unwrap()
        assert view.current_streak == 0
        assert view.longest_streak == 1

    def test_check_risk_sends_one_reminder(self, services, sink, kinds_of):
        services.streaks.record_activity(1, _at(D1))
        assert services.streaks.check_risk(1, D2).unwrap() is True
        assert services.streaks.check_risk(1, D2).unwrap() is False
        assert kinds_of(sink).count("STREAK_RISK") == 1

    def test_manual_reset_notifies(self, services, sink, kinds_of):
        services.streaks.record_activity(1, _at(D1))
        services.streaks.reset(1).unwrap()
        assert services.streaks.status(1, D1).unwrap().current_streak == 0
        assert "STREAK_RESET" in kinds_of(sink)

    def test_sweep_resets_and_reminds(self, services):
        services.streaks.record_activity(1, _at(D1))
        services.streaks.record_activity(2, _at(D2))
        report = services.streaks.sweep(today=D3).unwrap()
        assert report.reset == [1]
        assert report.reminded == [2]
        assert services.streaks.status(1, D3).unwrap().current_streak == 0

    def test_sweep_lists_users_through_the_configured_store(self, db_engine, config, services):
        services.streaks.record_activity(1, _at(D1))

        class CountingStore(SqlStore):
            listings = 0

            def load_streak_user_ids(self, active_only=True):
                CountingStore.listings += 1
                return super().load_streak_user_ids(active_only)

        streaks = StreakService(db_engine, config, locks=UserLocks(), store_factory=CountingStore)
        assert streaks.sweep(today=D3).unwrap().reset == [1]
        assert CountingStore.listings == 1
