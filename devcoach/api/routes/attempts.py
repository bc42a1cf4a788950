"""
devcoach.api.routes.attempts — Challenge & attempt lifecycle endpoints
========================================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from devcoach.api.deps import get_services, http_error, unwrap
from devcoach.engine.events import (
    AIInteraction,
    ChecklistItem,
    ChecklistMark,
    CodeEvent,
    CodeEventType,
    Difficulty,
    TestCase,
    TestResult,
    TrapDetection,
    build_challenge,
)
from devcoach.errors import CoachError
from devcoach.services.scoring_service import Services

router = APIRouter(tags=["attempts"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class TestCaseIn(BaseModel):
    __test__ = False

    test_id: str
    weight: float


class ChecklistItemIn(BaseModel):
    item_id: str
    label: str = ""
    weight: float = 1.0
    category: str = "validation"
    trap_id: str | None = None


class ChallengeIn(BaseModel):
    challenge_id: str
    title: str
    category: str
    difficulty: Difficulty = Difficulty.MEDIUM
    base_xp: int = Field(100, ge=0)
    estimated_minutes: int = Field(30, ge=0)
    test_cases: list[TestCaseIn] = Field(default_factory=list)
    checklist: list[ChecklistItemIn] = Field(default_factory=list)
    trap_ids: list[str] = Field(default_factory=list)


class AttemptStart(BaseModel):
    user_id: int
    challenge_id: str
    language: str = "python"


class CodeEventIn(BaseModel):
    kind: Literal["code"] = "code"
    type: CodeEventType
    session_time: int
    lines_added: int = 0
    lines_removed: int = 0
    total_lines: int = 0
    characters_changed: int = 0
    was_from_ai: bool = False
    ai_interaction_id: str | None = None
    file_name: str | None = None

    def to_event(self) -> CodeEvent:
        return CodeEvent(**self.model_dump(exclude={"kind"}))


class AIInteractionIn(BaseModel):
    kind: Literal["ai_interaction"] = "ai_interaction"
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

    def to_event(self) -> AIInteraction:
        return AIInteraction(**self.model_dump(exclude={"kind"}))


class TrapDetectionIn(BaseModel):
    kind: Literal["trap"] = "trap"
    trap_id: str
    reaction_time: int
    fell_into_trap: bool
    fixed_after_warning: bool = False
    learned_from: bool = False
    explanation_shown: bool = False
    quiz_answered: bool = False
    quiz_score: float | None = None

    def to_event(self) -> TrapDetection:
        return TrapDetection(**self.model_dump(exclude={"kind"}))


class TestResultIn(BaseModel):
    __test__ = False

    kind: Literal["test_result"] = "test_result"
    test_id: str
    passed: bool
    session_time: int = 0

    def to_event(self) -> TestResult:
        return TestResult(**self.model_dump(exclude={"kind"}))


class ChecklistMarkIn(BaseModel):
    kind: Literal["checklist"] = "checklist"
    item_id: str
    checked: bool
    session_time: int = 0

    def to_event(self) -> ChecklistMark:
        return ChecklistMark(**self.model_dump(exclude={"kind"}))


EventIn = Annotated[
    CodeEventIn | AIInteractionIn | TrapDetectionIn | TestResultIn | ChecklistMarkIn,
    Field(discriminator="kind"),
]


class SnapshotRequest(BaseModel):
    elapsed: int = Field(..., ge=0)


class CompleteRequest(BaseModel):
    elapsed: int | None = Field(None, ge=0)
    at: datetime | None = None


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------
@router.post("/challenges", status_code=status.HTTP_201_CREATED)
def register_challenge(body: ChallengeIn, services: Services = Depends(get_services)):
    try:
        challenge = build_challenge(
            body.challenge_id,
            body.title,
            body.category,
            body.difficulty,
            base_xp=body.base_xp,
            estimated_minutes=body.estimated_minutes,
            test_cases=[TestCase(t.test_id, t.weight) for t in body.test_cases],
            checklist=[ChecklistItem(**i.model_dump()) for i in body.checklist],
            trap_ids=body.trap_ids,
        )
    except CoachError as exc:
        raise http_error(exc.kind, exc.message) from None
    return unwrap(services.scoring.register_challenge(challenge))


# ---------------------------------------------------------------------------
# Attempts
# ---------------------------------------------------------------------------
@router.post("/attempts", status_code=status.HTTP_201_CREATED)
def start_attempt(body: AttemptStart, services: Services = Depends(get_services)):
    return unwrap(services.scoring.start_attempt(body.user_id, body.challenge_id, body.language))


@router.get("/attempts/{attempt_id}")
def get_attempt(attempt_id: int, services: Services = Depends(get_services)):
    return unwrap(services.scoring.get_attempt(attempt_id))


@router.post("/attempts/{attempt_id}/events", status_code=status.HTTP_204_NO_CONTENT)
def record_event(attempt_id: int, body: EventIn, services: Services = Depends(get_services)):
    """Record one observed event (code edit, AI exchange, trap, test run, checklist tick)."""
    unwrap(services.scoring.record_event(attempt_id, body.to_event()))


@router.post("/attempts/{attempt_id}/snapshots", status_code=status.HTTP_201_CREATED)
def take_snapshot(
    attempt_id: int, body: SnapshotRequest, services: Services = Depends(get_services)
):
    return unwrap(services.scoring.compute_snapshot(attempt_id, body.elapsed)).as_dict()


@router.get("/attempts/{attempt_id}/snapshots")
def list_snapshots(attempt_id: int, services: Services = Depends(get_services)):
    return [s.as_dict() for s in unwrap(services.scoring.snapshots(attempt_id))]


@router.get("/attempts/{attempt_id}/trend/{metric}")
def get_trend(attempt_id: int, metric: str, services: Services = Depends(get_services)):
    return unwrap(services.scoring.trend(attempt_id, metric))


@router.post("/attempts/{attempt_id}/complete")
def complete_attempt(
    attempt_id: int,
    body: CompleteRequest | None = None,
    services: Services = Depends(get_services),
):
    body = body or CompleteRequest()
    report = unwrap(services.scoring.complete_attempt(attempt_id, body.at, body.elapsed))
    return {
        "attempt_id": report.attempt_id,
        "passed": report.passed,
        "score": report.score,
        "final_snapshot": report.final_snapshot.as_dict(),
        "user_metrics_delta": report.user_metrics_delta,
        "xp_earned": report.xp_earned,
        "xp_transactions": report.xp_transactions,
        "unlocked_badges": [b.key for b in report.unlocked_badges],
        "streak": report.streak_update,
        "risk": report.risk,
        "insights": report.insights,
    }


@router.post("/attempts/{attempt_id}/abandon")
def abandon_attempt(attempt_id: int, services: Services = Depends(get_services)):
    return unwrap(services.scoring.abandon_attempt(attempt_id))
