"""
devcoach.engine.badges — Badge Requirement Evaluation
=======================================================

Handler-registry implementation for badge unlock rules.  Each requirement
shape (the ``type`` key of a badge's ``requirement`` JSON) maps to a pure
handler that receives the rest of the requirement and a
:class:`BadgeContext` and reports a :class:`BadgeProgress`.

A shape with no registered handler is a deployment bug and raises
``CoachError(CONFIGURATION)``; a user who simply doesn't qualify yet gets
``matched=False``.

This module is pure calculation: no database I/O.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from devcoach.engine.metrics import AttemptSummary, UserMetricsSummary
from devcoach.errors import CoachError, ErrorKind

logger = logging.getLogger(__name__)


class Rarity(enum.StrEnum):
    COMMON = "COMMON"
    RARE = "RARE"
    EPIC = "EPIC"
    LEGENDARY = "LEGENDARY"


@dataclass(frozen=True, slots=True)
class BadgeDefinition:
    """A catalogue entry.

    ``requirement`` looks like ``{"type": "streak", "days": 7}``.
    """

    key: str
    name: str
    requirement: dict
    description: str = ""
    rarity: Rarity = Rarity.COMMON
    xp_reward: int = 0

    @property
    def shape(self) -> str:
        return str(self.requirement.get("type", ""))


# ---------------------------------------------------------------------------
# Badge Context: passed to every requirement handler
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeContext:
    """Snapshot of user state passed to requirement handlers.

    Parameters
    ----------
    user_id : The user being evaluated.
    xp_balance : Current XP balance.
    level : Level derived from the balance.
    current_streak : Consecutive active days.
    attempts : Completed attempts, oldest first.
    metrics : The user's recomputed aggregate, if any.
    certificate_levels : Certificate levels the user holds.
    """

    user_id: int
    xp_balance: int = 0
    level: int = 1
    current_streak: int = 0
    attempts: Sequence[AttemptSummary] = ()
    metrics: UserMetricsSummary | None = None
    certificate_levels: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True, slots=True)
class BadgeProgress:
    matched: bool
    progress: float = 0.0


def _ratio(value: float, target: float) -> BadgeProgress:
    if target <= 0:
        return BadgeProgress(True, 1.0)
    return BadgeProgress(value >= target, round(min(1.0, max(0.0, value / target)), 4))


def _passed(ctx: BadgeContext) -> list[AttemptSummary]:
    return [a for a in ctx.attempts if a.passed]


# ---------------------------------------------------------------------------
# Requirement handlers: pure functions (config, ctx) → BadgeProgress
# ---------------------------------------------------------------------------
def _check_xp(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """Config: {"value": 1000}"""
    return _ratio(ctx.xp_balance, config.get("value", 0))


def _check_level(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """Config: {"value": 5}"""
    return _ratio(ctx.level, config.get("value", 1))


def _check_challenges(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """N passed attempts, optionally within one category.

    Config: {"count": 10, "category": "security"}
    """
    category = config.get("category")
    passed = [a for a in _passed(ctx) if category is None or a.category == category]
    return _ratio(len(passed), config.get("count", 1))


def _check_streak(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """Config: {"days": 7}"""
    return _ratio(ctx.current_streak, config.get("days", 1))


_METRIC_FIELDS = {
    "DI": ("dependency_index", "average_di"),
    "PR": ("pass_rate", "average_pr"),
    "CS": ("checklist_score", "average_cs"),
}


def _check_metrics(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """Compare a metric of the last attempt, or the user's average, to a threshold.

    Config: {"metric": "DI", "threshold": 30, "comparison": "lte",
             "scope": "average", "min_attempts": 5}
    """
    metric = str(config.get("metric", "")).upper()
    if metric not in _METRIC_FIELDS:
        raise CoachError(ErrorKind.CONFIGURATION, f"Unknown badge metric {metric!r}")
    threshold = float(config.get("threshold", 0))
    comparison = config.get("comparison", "gte")
    scope = config.get("scope", "last")
    min_attempts = int(config.get("min_attempts", 1))

    if len(ctx.attempts) < min_attempts:
        return BadgeProgress(False, round(len(ctx.attempts) / max(min_attempts, 1) * 0.5, 4))

    attempt_field, average_field = _METRIC_FIELDS[metric]
    if scope == "average":
        if ctx.metrics is not None and ctx.metrics.total_attempts:
            value = getattr(ctx.metrics, average_field)
        else:
            values = [getattr(a, attempt_field) for a in ctx.attempts]
            value = sum(values) / len(values)
    elif scope == "last":
        latest = max(ctx.attempts, key=lambda a: a.completed_at)
        value = getattr(latest, attempt_field)
    else:
        raise CoachError(ErrorKind.CONFIGURATION, f"Unknown badge metric scope {scope!r}")

    if comparison == "gte":
        return _ratio(value, threshold)
    if comparison == "lte":
        if value <= threshold:
            return BadgeProgress(True, 1.0)
        headroom = (100 - threshold) or 1
        return BadgeProgress(False, round(max(0.0, 1 - (value - threshold) / headroom), 4))
    if comparison == "eq":
        matched = abs(value - threshold) < 1e-9
        return BadgeProgress(matched, 1.0 if matched else 0.0)
    raise CoachError(ErrorKind.CONFIGURATION, f"Unknown badge comparison {comparison!r}")


def _check_low_dependency_attempts(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """N passed attempts finished with DI at or below a ceiling.

    Config: {"count": 1, "max_di": 10, "min_pr": 100}
    """
    max_di = float(config.get("max_di", 30))
    min_pr = config.get("min_pr")
    qualifying = [
        a for a in _passed(ctx)
        if a.dependency_index <= max_di and (min_pr is None or a.pass_rate >= float(min_pr))
    ]
    return _ratio(len(qualifying), config.get("count", 1))


def _check_certificate(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """Config: {"level": "FOUNDATION"}"""
    level = str(config.get("level", "")).upper()
    held = level in ctx.certificate_levels
    return BadgeProgress(held, 1.0 if held else 0.0)


SPECIAL_RULES: dict[str, Callable[[BadgeContext], bool]] = {
    "first-xp": lambda ctx: ctx.xp_balance > 0,
    "first-pass": lambda ctx: bool(_passed(ctx)),
}


def _check_special(config: dict, ctx: BadgeContext) -> BadgeProgress:
    """Config: {"kind": "first-xp"}"""
    kind = config.get("kind", "")
    rule = SPECIAL_RULES.get(kind)
    if rule is None:
        raise CoachError(ErrorKind.CONFIGURATION, f"Unknown special badge rule {kind!r}")
    matched = rule(ctx)
    return BadgeProgress(matched, 1.0 if matched else 0.0)


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
REQUIREMENT_HANDLERS: dict[str, Callable[[dict, BadgeContext], BadgeProgress]] = {
    "xp": _check_xp,
    "level": _check_level,
    "challenges": _check_challenges,
    "streak": _check_streak,
    "metrics": _check_metrics,
    "low_dependency_attempts": _check_low_dependency_attempts,
    "certificate": _check_certificate,
    "special": _check_special,
}


def handler_for(badge: BadgeDefinition) -> Callable[[dict, BadgeContext], BadgeProgress]:
    """Look up the handler for *badge*'s requirement shape.

    Raises
    ------
    CoachError(CONFIGURATION)
        No handler is registered for the shape.
    """
    handler = REQUIREMENT_HANDLERS.get(badge.shape)
    if handler is None:
        raise CoachError(
            ErrorKind.CONFIGURATION,
            f"No evaluator registered for requirement type {badge.shape!r}",
            badge=badge.key,
        )
    return handler


def check_badge(badge: BadgeDefinition, ctx: BadgeContext) -> BadgeProgress:
    config = {k: v for k, v in badge.requirement.items() if k != "type"}
    return handler_for(badge)(config, ctx)


# ---------------------------------------------------------------------------
# Main evaluation
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeEvaluation:
    badge: BadgeDefinition
    progress: BadgeProgress


def evaluate_badges(
    catalog: Iterable[BadgeDefinition],
    ctx: BadgeContext,
    already_unlocked: set[str],
) -> list[BadgeDefinition]:
    """Return the badges in *catalog* that *ctx* newly satisfies.

    Every badge's shape is resolved before any is checked, so a broken
    catalogue fails as a whole rather than half-way through.

    Raises
    ------
    CoachError(CONFIGURATION)
    """
    badges = list(catalog)
    for badge in badges:
        handler_for(badge)

    newly_unlocked: list[BadgeDefinition] = []
    for badge in badges:
        if badge.key in already_unlocked:
            continue
        if check_badge(badge, ctx).matched:
            newly_unlocked.append(badge)
            logger.info("Badge requirement met: %s for user %d", badge.key, ctx.user_id)
    return newly_unlocked


def badge_progress(
    catalog: Iterable[BadgeDefinition],
    ctx: BadgeContext,
    already_unlocked: set[str] = frozenset(),
) -> list[BadgeEvaluation]:
    """Progress towards every badge; unlocked badges report full progress."""
    results: list[BadgeEvaluation] = []
    for badge in catalog:
        if badge.key in already_unlocked:
            results.append(BadgeEvaluation(badge, BadgeProgress(True, 1.0)))
        else:
            results.append(BadgeEvaluation(badge, check_badge(badge, ctx)))
    return results
