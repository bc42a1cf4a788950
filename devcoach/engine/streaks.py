"""
devcoach.engine.streaks — Daily Streak State Machine
======================================================

A user's streak is either ``ACTIVE(n)`` (n > 0) or ``BROKEN`` (0).

Transitions on a qualifying activity on day D:

* last activity on D         → unchanged (already counted today)
* last activity on D − 1     → n + 1
* last activity earlier/none → 1
* D before last activity     → ``CoachError(CONFLICT)``

An explicit :func:`reset` is the only transition that lowers the count.
"at risk" is a derived predicate, not a state.

All functions are pure and return new :class:`StreakState` values.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from datetime import date, timedelta

from devcoach.constants import STREAK_MILESTONES
from devcoach.errors import CoachError, ErrorKind


class StreakStatus(enum.StrEnum):
    ACTIVE = "ACTIVE"
    BROKEN = "BROKEN"


@dataclass(frozen=True, slots=True)
class StreakState:
    user_id: int
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: date | None = None
    risk_notified_on: date | None = None

    @property
    def status(self) -> StreakStatus:
        return StreakStatus.ACTIVE if self.current_streak > 0 else StreakStatus.BROKEN


def apply_activity(state: StreakState, day: date) -> StreakState:
    """Count a qualifying activity on *day*.

    Raises
    ------
    CoachError(CONFLICT)
        *day* is earlier than the recorded last activity.
    """
    last = state.last_activity_date
    if last is not None and day < last:
        raise CoachError(
            ErrorKind.CONFLICT,
            f"Activity on {day.isoformat()} is older than last activity {last.isoformat()}",
            user_id=state.user_id,
        )
    if last == day and state.current_streak > 0:
        return state

    if last is not None and day - last == timedelta(days=1) and state.current_streak > 0:
        current = state.current_streak + 1
    else:
        current = 1

    return dataclasses.replace(
        state,
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_activity_date=day,
    )


def is_at_risk(state: StreakState, today: date) -> bool:
    """True when an active streak has no activity yet today and no alert was sent."""
    return (
        state.current_streak > 0
        and state.last_activity_date == today - timedelta(days=1)
        and state.risk_notified_on != today
    )


def mark_risk_notified(state: StreakState, today: date) -> StreakState:
    return dataclasses.replace(state, risk_notified_on=today)


def is_lapsed(state: StreakState, today: date) -> bool:
    """True when the streak can no longer be continued (missed yesterday)."""
    return (
        state.current_streak > 0
        and state.last_activity_date is not None
        and state.last_activity_date < today - timedelta(days=1)
    )


def reset(state: StreakState) -> StreakState:
    """Force the streak to ``BROKEN``; the longest run is kept."""
    return dataclasses.replace(state, current_streak=0)


def next_milestone(current_streak: int) -> int | None:
    for milestone in STREAK_MILESTONES:
        if milestone > current_streak:
            return milestone
    return None
