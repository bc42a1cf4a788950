"""
devcoach.engine.rewards — Challenge XP Pipeline
=================================================

Pure calculation of the XP a completed attempt earns.

Pipeline stages:
  base_xp → Difficulty → Performance → First try → Independence → Streak → RewardResult

Only passed attempts earn challenge XP; the caller decides "passed".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from devcoach.engine.events import Difficulty
from devcoach.engine.metrics import MetricSnapshot, attempt_score

logger = logging.getLogger(__name__)

DIFFICULTY_MULTIPLIERS: dict[Difficulty, float] = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 1.5,
    Difficulty.HARD: 2.0,
    Difficulty.EXPERT: 3.0,
}

# (minimum weighted score, multiplier), highest first
PERFORMANCE_STEPS: list[tuple[float, float]] = [
    (90.0, 1.5),
    (80.0, 1.3),
    (70.0, 1.15),
    (60.0, 1.0),
]
PERFORMANCE_FLOOR = 0.85

FIRST_TRY_MULTIPLIER = 1.25

# (DI strictly below, multiplier)
INDEPENDENCE_STEPS: list[tuple[float, float]] = [
    (30.0, 1.5),
    (50.0, 1.25),
    (70.0, 1.0),
]
INDEPENDENCE_FLOOR = 0.75

# (minimum streak days, multiplier), highest first
STREAK_STEPS: list[tuple[int, float]] = [
    (30, 1.5),
    (14, 1.3),
    (7, 1.15),
    (3, 1.05),
]


@dataclass
class RewardResult:
    """Final challenge XP calculation output."""

    xp: int = 0
    base_xp: int = 0
    multipliers: dict[str, float] = field(default_factory=dict)

    def breakdown(self) -> str:
        parts = " × ".join(f"{k} {v:g}" for k, v in self.multipliers.items() if v != 1.0)
        return f"{self.base_xp} XP" + (f" × {parts}" if parts else "")


# ---------------------------------------------------------------------------
# Individual stages
# ---------------------------------------------------------------------------
def performance_multiplier(snapshot: MetricSnapshot) -> float:
    score = attempt_score(snapshot.dependency_index, snapshot.pass_rate, snapshot.checklist_score)
    for minimum, multiplier in PERFORMANCE_STEPS:
        if score >= minimum:
            return multiplier
    return PERFORMANCE_FLOOR


def independence_multiplier(dependency_index: float) -> float:
    for ceiling, multiplier in INDEPENDENCE_STEPS:
        if dependency_index < ceiling:
            return multiplier
    return INDEPENDENCE_FLOOR


def streak_multiplier(streak_days: int) -> float:
    for minimum, multiplier in STREAK_STEPS:
        if streak_days >= minimum:
            return multiplier
    return 1.0


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------
def calculate_challenge_xp(
    base_xp: int,
    difficulty: Difficulty,
    snapshot: MetricSnapshot,
    *,
    attempt_number: int = 1,
    streak_days: int = 0,
) -> RewardResult:
    """Run the challenge XP pipeline for a passed attempt.

    Parameters
    ----------
    base_xp : The challenge's base reward.
    difficulty : Challenge difficulty tier.
    snapshot : Final DI/PR/CS reading of the attempt.
    attempt_number : 1 for the user's first attempt at this challenge.
    streak_days : The user's streak *after* today's activity was counted.
    """
    multipliers = {
        "difficulty": DIFFICULTY_MULTIPLIERS[Difficulty(difficulty)],
        "performance": performance_multiplier(snapshot),
        "first_try": FIRST_TRY_MULTIPLIER if attempt_number == 1 else 1.0,
        "independence": independence_multiplier(snapshot.dependency_index),
        "streak": streak_multiplier(streak_days),
    }
    xp = float(base_xp)
    for value in multipliers.values():
        xp *= value

    result = RewardResult(xp=round(xp), base_xp=base_xp, multipliers=multipliers)
    logger.debug("Challenge XP: %s = %d", result.breakdown(), result.xp)
    return result
