"""
devcoach.engine.metrics — Metric Calculator
=============================================

Turns the events of one attempt into the three trust metrics and rolls
completed attempts up into per-user aggregates.

* **DI** (Dependency Index) — how much of the code came from an AI
  assistant, penalised further when AI output was left untouched.
* **PR** (Pass Rate) — weighted share of test cases whose latest run passed.
* **CS** (Checklist Score) — weighted share of qualitative checklist items
  satisfied, including planted traps avoided or fixed.

All three are on a 0–100 scale.  The certificate layer uses CS on a 0–10
scale; :func:`cs_to_ten_scale` is the only place that conversion happens.

This module is pure calculation: no database I/O.
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from devcoach.engine.events import (
    AIInteraction,
    AttemptEvents,
    Challenge,
    ChecklistMark,
    CodeEvent,
    CodeEventType,
    TestResult,
    TrapDetection,
    as_utc,
)

logger = logging.getLogger(__name__)

# DI = 100 * ai_share * (UNTOUCHED_BASE + UNTOUCHED_WEIGHT * untouched_fraction)
UNTOUCHED_BASE = 0.6
UNTOUCHED_WEIGHT = 0.4

# A trap that was fallen into but learned from earns partial credit
LEARNED_CREDIT = 0.5
LEARNED_QUIZ_SCORE = 0.7

MANUAL_TYPES = frozenset({CodeEventType.TYPED, CodeEventType.PASTED, CodeEventType.FORMATTED})
REWORK_TYPES = frozenset({CodeEventType.TYPED, CodeEventType.DELETED})


def clamp_metric(value: float) -> float:
    """Clamp to [0, 100] and round to two decimals."""
    if value != value:  # NaN
        return 0.0
    return round(min(100.0, max(0.0, value)), 2)


def cs_to_ten_scale(cs: float) -> float:
    return round(clamp_metric(cs) / 10, 2)


# ---------------------------------------------------------------------------
# Snapshot value type
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    """A point-in-time DI/PR/CS reading for one attempt."""

    session_time: int
    dependency_index: float
    pass_rate: float
    checklist_score: float
    attempt_id: int | None = None
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "session_time": self.session_time,
            "dependency_index": self.dependency_index,
            "pass_rate": self.pass_rate,
            "checklist_score": self.checklist_score,
        }


# ---------------------------------------------------------------------------
# Dependency Index
# ---------------------------------------------------------------------------
def _unlinked_pasted_lines(
    code_events: Sequence[CodeEvent], interactions: Sequence[AIInteraction]
) -> int:
    """Generated lines of copied-and-pasted AI answers no code event claims."""
    referenced = {e.ai_interaction_id for e in code_events if e.ai_interaction_id}
    return sum(
        i.code_lines_generated
        for i in interactions
        if i.was_copied and i.paste_timestamp is not None
        and i.interaction_id not in referenced
    )


def _rework_lines(code_events: Sequence[CodeEvent], interactions: Sequence[AIInteraction]) -> int:
    """Manual edits made after the first AI-sourced code arrived."""
    ai_times = [e.session_time for e in code_events if e.was_from_ai]
    if ai_times:
        first = min(ai_times)
        return sum(
            e.lines_added + e.lines_removed
            for e in code_events
            if not e.was_from_ai and e.type in REWORK_TYPES and e.session_time > first
        )

    pastes = [as_utc(i.paste_timestamp) for i in interactions if i.paste_timestamp is not None]
    if not pastes:
        return 0
    first_paste = min(pastes)
    return sum(
        e.lines_added + e.lines_removed
        for e in code_events
        if not e.was_from_ai and e.type in REWORK_TYPES and as_utc(e.timestamp) > first_paste
    )


def calculate_dependency_index(
    code_events: Sequence[CodeEvent], interactions: Sequence[AIInteraction] = ()
) -> float:
    """Compute DI on the 0–100 scale.

    ``ai_share`` is the fraction of written lines that came from AI.  The
    share is then scaled by how much of the AI code was left untouched:
    fully reworked AI output counts at 60 %, untouched output at 100 %.
    No lines at all gives 0.
    """
    ai_lines = sum(e.lines_added for e in code_events if e.was_from_ai)
    ai_lines += _unlinked_pasted_lines(code_events, interactions)
    manual_lines = sum(
        e.lines_added for e in code_events if not e.was_from_ai and e.type in MANUAL_TYPES
    )

    if ai_lines <= 0:
        return 0.0

    rework = min(_rework_lines(code_events, interactions), ai_lines)
    untouched = (ai_lines - rework) / ai_lines
    ai_share = ai_lines / (ai_lines + manual_lines)
    di = clamp_metric(100 * ai_share * (UNTOUCHED_BASE + UNTOUCHED_WEIGHT * untouched))

    logger.debug(
        "DI: ai_lines=%d manual_lines=%d rework=%d → %.2f",
        ai_lines, manual_lines, rework, di,
    )
    if di > 80:
        logger.warning("Critical AI dependency level detected (DI=%.2f)", di)
    elif di > 60:
        logger.warning("High AI dependency level detected (DI=%.2f)", di)
    return di


# ---------------------------------------------------------------------------
# Pass Rate
# ---------------------------------------------------------------------------
def _latest_by(items: Iterable, key: str) -> dict:
    """Last item per ``key`` in session-time order (later list entries win ties)."""
    latest: dict = {}
    for item in sorted(items, key=lambda i: i.session_time):
        latest[getattr(item, key)] = item
    return latest


def calculate_pass_rate(challenge: Challenge, results: Sequence[TestResult]) -> float:
    """Weighted PR from the latest result of each test case.

    A challenge with no test cases scores 0.  Results for unknown test ids
    are ignored.
    """
    if not challenge.test_cases:
        return 0.0
    latest = _latest_by(results, "test_id")
    passed_weight = sum(
        case.weight
        for case in challenge.test_cases
        if case.test_id in latest and latest[case.test_id].passed
    )
    return clamp_metric(100 * passed_weight)


# ---------------------------------------------------------------------------
# Checklist Score
# ---------------------------------------------------------------------------
def trap_credit(detection: TrapDetection | None) -> float:
    """Credit for a trap: 1 avoided or fixed, 0.5 learned from, 0 otherwise."""
    if detection is None or not detection.fell_into_trap or detection.fixed_after_warning:
        return 1.0
    learned = detection.learned_from or (
        detection.explanation_shown
        and detection.quiz_answered
        and (detection.quiz_score or 0.0) >= LEARNED_QUIZ_SCORE
    )
    return LEARNED_CREDIT if learned else 0.0


def calculate_checklist_score(
    challenge: Challenge,
    traps: Sequence[TrapDetection],
    marks: Sequence[ChecklistMark],
) -> float:
    """Weighted CS over checklist items plus implicit items for unlisted traps.

    No items at all scores 0.
    """
    detections = {d.trap_id: d for d in sorted(traps, key=lambda d: d.detected_at)}
    latest_marks = _latest_by(marks, "item_id")

    scored: list[tuple[float, float]] = []
    covered: set[str] = set()
    for item in challenge.checklist:
        if item.trap_id is not None:
            covered.add(item.trap_id)
            scored.append((item.weight, trap_credit(detections.get(item.trap_id))))
        else:
            mark = latest_marks.get(item.item_id)
            scored.append((item.weight, 1.0 if mark is not None and mark.checked else 0.0))

    for trap_id in challenge.trap_ids:
        if trap_id not in covered:
            scored.append((1.0, trap_credit(detections.get(trap_id))))

    total = sum(weight for weight, _ in scored)
    if total <= 0:
        return 0.0
    return clamp_metric(100 * sum(w * c for w, c in scored) / total)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------
def compute_snapshot(
    events: AttemptEvents,
    challenge: Challenge,
    elapsed_session_time: int,
    *,
    attempt_id: int | None = None,
) -> MetricSnapshot:
    """Compute a DI/PR/CS reading from every event recorded so far."""
    snapshot = MetricSnapshot(
        session_time=elapsed_session_time,
        dependency_index=calculate_dependency_index(events.code_events, events.ai_interactions),
        pass_rate=calculate_pass_rate(challenge, events.test_results),
        checklist_score=calculate_checklist_score(
            challenge, events.trap_detections, events.checklist_marks,
        ),
        attempt_id=attempt_id,
    )
    logger.debug(
        "Snapshot attempt=%s t=%d: DI=%.2f PR=%.2f CS=%.2f",
        attempt_id, elapsed_session_time,
        snapshot.dependency_index, snapshot.pass_rate, snapshot.checklist_score,
    )
    return snapshot


def attempt_score(dependency_index: float, pass_rate: float, checklist_score: float) -> float:
    """Overall attempt score: independence and tests 40 % each, checklist 20 %."""
    return clamp_metric((100 - dependency_index) * 0.4 + pass_rate * 0.4 + checklist_score * 0.2)


# ---------------------------------------------------------------------------
# Risk assessment & insights
# ---------------------------------------------------------------------------
class RiskLevel(enum.StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    level: RiskLevel
    score: int
    factors: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


# (threshold, points, factor, recommendation), most severe first
_DI_RISKS = [
    (80, 40, "Extremely high AI dependency", "Try solving problems independently before using AI"),
    (60, 25, "High AI dependency", "Challenge yourself to write more code manually"),
    (40, 10, "Moderate AI dependency", "Good balance, but room for more independence"),
]
_PR_RISKS = [
    (30, 30, "Very low test pass rate", "Review your code carefully before running tests"),
    (50, 20, "Low test pass rate", "Debug more thoroughly before submissions"),
    (70, 10, "Moderate test pass rate", "Good progress, aim for first-try success"),
]
_CS_RISKS = [
    (30, 30, "Critical validation gaps", "Always validate AI outputs and follow best practices"),
    (50, 20, "Significant validation gaps", "Improve code review and security checks"),
    (70, 10, "Some validation gaps", "Focus on comprehensive testing and documentation"),
]


def assess_risk(snapshot: MetricSnapshot) -> RiskAssessment:
    """Score how risky the working pattern behind *snapshot* looks."""
    factors: list[str] = []
    recommendations: list[str] = []
    score = 0

    for threshold, points, factor, advice in _DI_RISKS:
        if snapshot.dependency_index > threshold:
            factors.append(factor)
            recommendations.append(advice)
            score += points
            break
    for rules, value in ((_PR_RISKS, snapshot.pass_rate), (_CS_RISKS, snapshot.checklist_score)):
        for threshold, points, factor, advice in rules:
            if value < threshold:
                factors.append(factor)
                recommendations.append(advice)
                score += points
                break

    if score >= 70:
        level = RiskLevel.CRITICAL
    elif score >= 50:
        level = RiskLevel.HIGH
    elif score >= 30:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    if level == RiskLevel.LOW and not recommendations:
        recommendations.append("Excellent work! Keep maintaining these standards")
    if level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        logger.warning("%s risk level detected: %s", level.value, ", ".join(factors))

    return RiskAssessment(
        level=level, score=score,
        factors=tuple(factors), recommendations=tuple(recommendations),
    )


def generate_insights(current: MetricSnapshot, previous: MetricSnapshot | None) -> list[str]:
    """Human-readable notes on how *current* compares with *previous*."""
    insights: list[str] = []
    if previous is None:
        if current.dependency_index < 30:
            insights.append("Great start! You're coding independently")
        if current.pass_rate > 80:
            insights.append("Excellent test performance from the beginning")
        if current.checklist_score > 80:
            insights.append("Outstanding attention to best practices")
        return insights

    di_change = current.dependency_index - previous.dependency_index
    pr_change = current.pass_rate - previous.pass_rate
    cs_change = current.checklist_score - previous.checklist_score

    if abs(di_change) > 10:
        if di_change < 0:
            insights.append(
                f"Dependency reduced by {abs(di_change):.1f}% - becoming more independent!"
            )
        else:
            insights.append(f"Dependency increased by {di_change:.1f}% - try coding more manually")
    if abs(pr_change) > 15:
        if pr_change > 0:
            insights.append(f"Pass rate improved by {pr_change:.1f}% - better testing!")
        else:
            insights.append(f"Pass rate dropped by {abs(pr_change):.1f}% - review more carefully")
    if abs(cs_change) > 10:
        if cs_change > 0:
            insights.append(f"Checklist score up by {cs_change:.1f} - great validation!")
        else:
            insights.append(
                f"Checklist score down by {abs(cs_change):.1f} - don't skip validations"
            )
    return insights


# ---------------------------------------------------------------------------
# In-session trend
# ---------------------------------------------------------------------------
class TrendDirection(enum.StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass(frozen=True, slots=True)
class MetricTrend:
    metric: str
    direction: TrendDirection
    change_percent: float


TREND_METRICS = {
    "DI": "dependency_index",
    "PR": "pass_rate",
    "CS": "checklist_score",
}
STABLE_BAND = 5.0


def session_trend(
    snapshots: Sequence[MetricSnapshot], metric: str, window: int = 5
) -> MetricTrend:
    """Direction of *metric* over the last *window* snapshots.

    For DI a falling value is an improvement.  Fewer than two snapshots is
    reported as stable.
    """
    attr = TREND_METRICS[metric.upper()]
    recent = list(snapshots)[-window:]
    if len(recent) < 2:
        return MetricTrend(metric.upper(), TrendDirection.STABLE, 0.0)

    first = getattr(recent[0], attr)
    last = getattr(recent[-1], attr)
    change = last - first
    change_percent = round(change / first * 100, 2) if first else round(change, 2)

    if abs(change_percent) <= STABLE_BAND:
        direction = TrendDirection.STABLE
    else:
        rising = change > 0
        better = not rising if attr == "dependency_index" else rising
        direction = TrendDirection.IMPROVING if better else TrendDirection.DECLINING
    return MetricTrend(metric.upper(), direction, change_percent)


# ---------------------------------------------------------------------------
# Per-user aggregates
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AttemptSummary:
    """Final figures of one completed attempt, as badges and aggregates see it."""

    attempt_id: int
    challenge_id: str
    category: str
    completed_at: datetime
    dependency_index: float
    pass_rate: float
    checklist_score: float
    passed: bool
    score: float = 0.0


@dataclass(frozen=True, slots=True)
class UserMetricsSummary:
    user_id: int
    total_attempts: int = 0
    average_di: float = 0.0
    average_pr: float = 0.0
    average_cs: float = 0.0
    weekly_trend: dict[str, dict[str, float]] = field(default_factory=dict)
    first_week_di: float | None = None
    current_week_di: float | None = None
    improvement: float | None = None
    category_scores: dict[str, float] = field(default_factory=dict)
    strong_areas: tuple[str, ...] = ()
    weak_areas: tuple[str, ...] = ()


def iso_week(moment: datetime) -> str:
    """ISO week key such as ``2026-W07``."""
    return moment.strftime("%G-W%V")


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def aggregate_user_metrics(
    user_id: int,
    attempts: Sequence[AttemptSummary],
    *,
    strong_threshold: float = 75.0,
    weak_threshold: float = 50.0,
) -> UserMetricsSummary:
    """Recompute a user's aggregate from all of their completed attempts.

    The current week is the most recent ISO week with a completed attempt.
    ``improvement`` is current-week DI minus first-week DI; negative means
    the user has become less AI-dependent.
    """
    if not attempts:
        return UserMetricsSummary(user_id=user_id)

    weeks: dict[str, list[AttemptSummary]] = defaultdict(list)
    categories: dict[str, list[AttemptSummary]] = defaultdict(list)
    for attempt in attempts:
        weeks[iso_week(attempt.completed_at)].append(attempt)
        categories[attempt.category].append(attempt)

    weekly_trend = {
        week: {
            "di": _mean([a.dependency_index for a in rows]),
            "pr": _mean([a.pass_rate for a in rows]),
            "cs": _mean([a.checklist_score for a in rows]),
            "attempts": len(rows),
        }
        for week, rows in sorted(weeks.items())
    }
    ordered = list(weekly_trend)
    first_week_di = weekly_trend[ordered[0]]["di"]
    current_week_di = weekly_trend[ordered[-1]]["di"]

    category_scores: dict[str, float] = {}
    for category, rows in sorted(categories.items()):
        di = _mean([a.dependency_index for a in rows])
        pr = _mean([a.pass_rate for a in rows])
        cs = _mean([a.checklist_score for a in rows])
        category_scores[category] = round(((100 - di) + pr + cs) / 3, 2)

    return UserMetricsSummary(
        user_id=user_id,
        total_attempts=len(attempts),
        average_di=_mean([a.dependency_index for a in attempts]),
        average_pr=_mean([a.pass_rate for a in attempts]),
        average_cs=_mean([a.checklist_score for a in attempts]),
        weekly_trend=weekly_trend,
        first_week_di=first_week_di,
        current_week_di=current_week_di,
        improvement=round(current_week_di - first_week_di, 2),
        category_scores=category_scores,
        strong_areas=tuple(c for c, s in category_scores.items() if s >= strong_threshold),
        weak_areas=tuple(c for c, s in category_scores.items() if s < weak_threshold),
    )


def metrics_delta(
    before: UserMetricsSummary | None, after: UserMetricsSummary
) -> dict[str, float]:
    """Change in the headline averages caused by one recomputation."""
    base = before or UserMetricsSummary(user_id=after.user_id)
    return {
        "total_attempts": after.total_attempts - base.total_attempts,
        "average_di": round(after.average_di - base.average_di, 2),
        "average_pr": round(after.average_pr - base.average_pr, 2),
        "average_cs": round(after.average_cs - base.average_cs, 2),
    }
