"""
devcoach.services.streak_service — Streak Persistence & Sweeps
================================================================

Applies the pure streak transitions from :mod:`devcoach.engine.streaks` to
the stored row, serialised per user.  Calendar days are taken in the
configured ``timezone``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from devcoach.config import DevCoachConfig
from devcoach.engine import streaks
from devcoach.engine.streaks import StreakState, StreakStatus
from devcoach.errors import as_result
from devcoach.services.locks import UserLocks, get_default_locks
from devcoach.services.notifications import NotificationEmitter, Outbox
from devcoach.services.store import SqlStore, Store, StoreFactory, open_store

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    previous: int
    current: int
    longest: int
    extended: bool
    reset_to_one: bool


@dataclass(frozen=True, slots=True)
class StreakView:
    user_id: int
    current_streak: int
    longest_streak: int
    status: StreakStatus
    last_activity_date: date | None
    at_risk: bool
    next_milestone: int | None


@dataclass
class SweepReport:
    reset: list[int] = field(default_factory=list)
    reminded: list[int] = field(default_factory=list)


class StreakService:
    def __init__(
        self,
        engine: Engine,
        config: DevCoachConfig | None = None,
        *,
        locks: UserLocks | None = None,
        emitter: NotificationEmitter | None = None,
        store_factory: StoreFactory = SqlStore,
    ) -> None:
        self.engine = engine
        self.config = config or DevCoachConfig()
        self.locks = locks if locks is not None else get_default_locks()
        self.emitter = emitter or NotificationEmitter()
        self.store_factory = store_factory
        self.tz = ZoneInfo(self.config.timezone)

    def day_of(self, moment: datetime | None = None) -> date:
        """Calendar day of *moment* (default: now) in the configured timezone."""
        moment = moment or datetime.now(timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).date()

    # ------------------------------------------------------------------
    # In-transaction building block
    # ------------------------------------------------------------------
    def record_in(self, store: Store, user_id: int, day: date) -> StreakUpdate:
        """Count a qualifying activity on *day*; the caller holds the user's lock.

        Raises ``CoachError(CONFLICT)`` for an out-of-order day.
        """
        before = store.load_streak(user_id)
        after = streaks.apply_activity(before, day)
        if after != before:
            store.save_streak(after)

        update = StreakUpdate(
            previous=before.current_streak,
            current=after.current_streak,
            longest=after.longest_streak,
            extended=after.current_streak > before.current_streak and before.current_streak > 0,
            reset_to_one=after.current_streak == 1 and before.current_streak > 1,
        )
        if after != before:
            logger.info(
                "Streak for user %d: %d → %d", user_id, before.current_streak, after.current_streak,
            )
        return update

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    @as_result
    def record_activity(self, user_id: int, at: datetime | None = None) -> StreakUpdate:
        """Failure kinds: ``CONFLICT`` (older than last activity), ``UNAVAILABLE``."""
        day = self.day_of(at)
        with self.locks.hold(user_id):
            with open_store(self.engine, self.store_factory) as store:
                return self.record_in(store, user_id, day)

    @as_result
    def check_risk(self, user_id: int, today: date | None = None) -> bool:
        """Send the once-a-day reminder if the streak is at risk.

        Returns True when a reminder was emitted.
        """
        today = today or self.day_of()
        with self.locks.hold(user_id):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                fired = self._remind_in(store, outbox, user_id, today)
            outbox.flush()
        return fired

    @as_result
    def reset(self, user_id: int, reason: str = "manual") -> StreakState:
        """Explicit reset to ``BROKEN``.  Failure kinds: ``UNAVAILABLE``."""
        with self.locks.hold(user_id):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                state = self._reset_in(store, outbox, user_id, reason)
            outbox.flush()
        return state

    @as_result
    def sweep(self, today: date | None = None, user_ids: Iterable[int] | None = None) -> SweepReport:
        """Daily maintenance: reset lapsed streaks and remind users at risk.

        Each user is handled in its own transaction so one failure does
        not undo the others' progress.
        """
        today = today or self.day_of()
        if user_ids is None:
            with open_store(self.engine, self.store_factory) as store:
                user_ids = store.load_streak_user_ids(active_only=True)

        report = SweepReport()
        for user_id in user_ids:
            with self.locks.hold(user_id):
                outbox = Outbox(self.emitter)
                with open_store(self.engine, self.store_factory) as store:
                    state = store.load_streak(user_id)
                    if streaks.is_lapsed(state, today):
                        self._reset_in(store, outbox, user_id, "inactivity")
                        report.reset.append(user_id)
                    elif self._remind_in(store, outbox, user_id, today):
                        report.reminded.append(user_id)
                outbox.flush()

        logger.info(
            "Streak sweep for %s: %d reset, %d reminded",
            today.isoformat(), len(report.reset), len(report.reminded),
        )
        return report

    @as_result
    def status(self, user_id: int, today: date | None = None) -> StreakView:
        today = today or self.day_of()
        with open_store(self.engine, self.store_factory) as store:
            state = store.load_streak(user_id)
        current = 0 if streaks.is_lapsed(state, today) else state.current_streak
        return StreakView(
            user_id=user_id,
            current_streak=current,
            longest_streak=state.longest_streak,
            status=StreakStatus.ACTIVE if current > 0 else StreakStatus.BROKEN,
            last_activity_date=state.last_activity_date,
            at_risk=streaks.is_at_risk(state, today),
            next_milestone=streaks.next_milestone(current),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _remind_in(
        self, store: Store, outbox: NotificationEmitter, user_id: int, today: date
    ) -> bool:
        state = store.load_streak(user_id)
        if not streaks.is_at_risk(state, today):
            return False
        store.save_streak(streaks.mark_risk_notified(state, today))
        outbox.streak_at_risk(user_id, state.current_streak)
        return True

    def _reset_in(
        self, store: Store, outbox: NotificationEmitter, user_id: int, reason: str
    ) -> StreakState:
        state = store.load_streak(user_id)
        after = streaks.reset(state)
        store.save_streak(after)
        if state.current_streak > 0:
            logger.info(
                "Streak for user %d reset from %d (%s)", user_id, state.current_streak, reason,
            )
            outbox.streak_reset(user_id, state.current_streak, reason)
        return after
