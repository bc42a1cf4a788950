"""
devcoach.engine.events — Attempt Event Model
==============================================

Value types for everything observed during a challenge attempt (code
edits, AI-assistant exchanges, trap outcomes, test results, checklist
ticks) plus the challenge definition the metrics are scored against.

All types are frozen; events are appended, never mutated.  The checks in
:func:`validate_event` and :func:`build_challenge` are the range and
consistency rules owned by the core — payload *schema* validation happens
before events get here.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from devcoach.errors import CoachError, ErrorKind

__all__ = [
    "AIInteraction",
    "AttemptEvents",
    "AttemptEvent",
    "Challenge",
    "ChecklistItem",
    "ChecklistMark",
    "CodeEvent",
    "CodeEventType",
    "Difficulty",
    "TestCase",
    "TestResult",
    "TrapDetection",
    "build_challenge",
    "validate_event",
]

WEIGHT_TOLERANCE = 1e-6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class CodeEventType(enum.StrEnum):
    TYPED = "TYPED"
    PASTED = "PASTED"
    DELETED = "DELETED"
    FORMATTED = "FORMATTED"
    SAVED = "SAVED"


class Difficulty(enum.StrEnum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"
    EXPERT = "EXPERT"


# ---------------------------------------------------------------------------
# Observed events
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CodeEvent:
    """One keystroke-granularity edit.

    ``session_time`` is seconds since the attempt started and orders the
    events; ``was_from_ai`` marks lines that came out of an AI response.
    """

    type: CodeEventType
    session_time: int
    lines_added: int = 0
    lines_removed: int = 0
    total_lines: int = 0
    characters_changed: int = 0
    was_from_ai: bool = False
    ai_interaction_id: str | None = None
    file_name: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class AIInteraction:
    """One exchange with an AI assistant."""

    interaction_id: str
    provider: str = "OPENAI"
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    response_length: int = 0
    code_lines_generated: int = 0
    was_copied: bool = False
    copy_timestamp: datetime | None = None
    paste_timestamp: datetime | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class TrapDetection:
    """Outcome of one planted trap; recorded once per trap per attempt."""

    trap_id: str
    reaction_time: int
    fell_into_trap: bool
    fixed_after_warning: bool = False
    learned_from: bool = False
    explanation_shown: bool = False
    quiz_answered: bool = False
    quiz_score: float | None = None
    detected_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class TestResult:
    """Outcome of one test case in one test run."""

    __test__ = False  # keep pytest from collecting this class

    test_id: str
    passed: bool
    session_time: int = 0


@dataclass(frozen=True, slots=True)
class ChecklistMark:
    """The user ticking (or unticking) a qualitative checklist item."""

    item_id: str
    checked: bool
    session_time: int = 0


AttemptEvent = CodeEvent | AIInteraction | TrapDetection | TestResult | ChecklistMark


@dataclass(frozen=True, slots=True)
class AttemptEvents:
    """Every event recorded for one attempt, grouped by kind."""

    code_events: tuple[CodeEvent, ...] = ()
    ai_interactions: tuple[AIInteraction, ...] = ()
    trap_detections: tuple[TrapDetection, ...] = ()
    test_results: tuple[TestResult, ...] = ()
    checklist_marks: tuple[ChecklistMark, ...] = ()

    @classmethod
    def from_events(cls, events: list[AttemptEvent]) -> AttemptEvents:
        return cls(
            code_events=tuple(e for e in events if isinstance(e, CodeEvent)),
            ai_interactions=tuple(e for e in events if isinstance(e, AIInteraction)),
            trap_detections=tuple(e for e in events if isinstance(e, TrapDetection)),
            test_results=tuple(e for e in events if isinstance(e, TestResult)),
            checklist_marks=tuple(e for e in events if isinstance(e, ChecklistMark)),
        )


# ---------------------------------------------------------------------------
# Challenge definition
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TestCase:
    __test__ = False

    test_id: str
    weight: float


@dataclass(frozen=True, slots=True)
class ChecklistItem:
    """A qualitative requirement; ``trap_id`` links it to a planted trap."""

    item_id: str
    label: str
    weight: float = 1.0
    category: str = "validation"
    trap_id: str | None = None


@dataclass(frozen=True, slots=True)
class Challenge:
    challenge_id: str
    title: str
    category: str
    difficulty: Difficulty
    base_xp: int = 100
    estimated_minutes: int = 30
    test_cases: tuple[TestCase, ...] = ()
    checklist: tuple[ChecklistItem, ...] = ()
    trap_ids: tuple[str, ...] = ()


def build_challenge(
    challenge_id: str,
    title: str,
    category: str,
    difficulty: Difficulty | str,
    *,
    base_xp: int = 100,
    estimated_minutes: int = 30,
    test_cases: list[TestCase] | tuple[TestCase, ...] = (),
    checklist: list[ChecklistItem] | tuple[ChecklistItem, ...] = (),
    trap_ids: list[str] | tuple[str, ...] = (),
) -> Challenge:
    """Build a :class:`Challenge`, enforcing authoring-time integrity.

    Test-case weights must each be in (0, 1] and sum to 1.0; a weight-sum
    violation is a data error of the challenge, so it is raised here and
    never when a score is computed.

    Raises
    ------
    CoachError(VALIDATION)
        Bad weights, duplicate ids, unknown difficulty or negative XP.
    """
    try:
        level = Difficulty(difficulty)
    except ValueError:
        raise CoachError(
            ErrorKind.VALIDATION, f"Unknown difficulty {difficulty!r}",
            challenge_id=challenge_id,
        ) from None

    if base_xp < 0:
        raise CoachError(ErrorKind.VALIDATION, "base_xp must be >= 0", challenge_id=challenge_id)

    test_ids = [t.test_id for t in test_cases]
    if len(set(test_ids)) != len(test_ids):
        raise CoachError(ErrorKind.VALIDATION, "Duplicate test case ids", challenge_id=challenge_id)
    for case in test_cases:
        if not 0.0 < case.weight <= 1.0 or math.isnan(case.weight):
            raise CoachError(
                ErrorKind.VALIDATION,
                f"Test case {case.test_id!r} weight must be in (0, 1]",
                challenge_id=challenge_id,
            )
    if test_cases:
        total = sum(t.weight for t in test_cases)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise CoachError(
                ErrorKind.VALIDATION,
                f"Test case weights must sum to 1.0 (got {total:.6f})",
                challenge_id=challenge_id,
            )

    item_ids = [i.item_id for i in checklist]
    if len(set(item_ids)) != len(item_ids):
        raise CoachError(ErrorKind.VALIDATION, "Duplicate checklist item ids", challenge_id=challenge_id)
    for item in checklist:
        if not math.isfinite(item.weight) or item.weight <= 0:
            raise CoachError(
                ErrorKind.VALIDATION,
                f"Checklist item {item.item_id!r} weight must be > 0",
                challenge_id=challenge_id,
            )

    if len(set(trap_ids)) != len(trap_ids):
        raise CoachError(ErrorKind.VALIDATION, "Duplicate trap ids", challenge_id=challenge_id)

    return Challenge(
        challenge_id=challenge_id,
        title=title,
        category=category,
        difficulty=level,
        base_xp=base_xp,
        estimated_minutes=estimated_minutes,
        test_cases=tuple(test_cases),
        checklist=tuple(checklist),
        trap_ids=tuple(trap_ids),
    )


# ---------------------------------------------------------------------------
# Event range / consistency checks
# ---------------------------------------------------------------------------
def _non_negative(event: AttemptEvent, **values: int | float | None) -> None:
    for name, value in values.items():
        if value is not None and value < 0:
            raise CoachError(
                ErrorKind.VALIDATION,
                f"{type(event).__name__}.{name} must be >= 0",
                field=name,
                value=value,
            )


def validate_event(event: AttemptEvent) -> None:
    """Reject events whose values are out of range or inconsistent.

    Raises
    ------
    CoachError(VALIDATION)
    """
    if isinstance(event, CodeEvent):
        _non_negative(
            event,
            session_time=event.session_time,
            lines_added=event.lines_added,
            lines_removed=event.lines_removed,
            total_lines=event.total_lines,
            characters_changed=event.characters_changed,
        )
    elif isinstance(event, AIInteraction):
        _non_negative(
            event,
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
            response_length=event.response_length,
            code_lines_generated=event.code_lines_generated,
        )
        if event.paste_timestamp is not None and event.copy_timestamp is not None:
            if as_utc(event.paste_timestamp) < as_utc(event.copy_timestamp):
                raise CoachError(
                    ErrorKind.VALIDATION, "paste_timestamp precedes copy_timestamp",
                    interaction_id=event.interaction_id,
                )
    elif isinstance(event, TrapDetection):
        _non_negative(event, reaction_time=event.reaction_time)
        if event.quiz_score is not None and not 0.0 <= event.quiz_score <= 1.0:
            raise CoachError(
                ErrorKind.VALIDATION, "quiz_score must be within [0, 1]", trap_id=event.trap_id,
            )
        if event.fixed_after_warning and not event.fell_into_trap:
            raise CoachError(
                ErrorKind.VALIDATION,
                "fixed_after_warning requires fell_into_trap",
                trap_id=event.trap_id,
            )
        if event.learned_from and not (event.fell_into_trap or event.explanation_shown):
            raise CoachError(
                ErrorKind.VALIDATION,
                "learned_from requires fell_into_trap or explanation_shown",
                trap_id=event.trap_id,
            )
        if event.quiz_score is not None and not event.quiz_answered:
            raise CoachError(
                ErrorKind.VALIDATION, "quiz_score given without quiz_answered", trap_id=event.trap_id,
            )
    elif isinstance(event, (TestResult, ChecklistMark)):
        _non_negative(event, session_time=event.session_time)
    else:
        raise CoachError(ErrorKind.VALIDATION, f"Unsupported event type {type(event).__name__}")
