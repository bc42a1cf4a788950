"""
devcoach.services.store — Store Contract & SQLAlchemy Implementation
======================================================================

:class:`Store` is the narrow persistence contract the services depend on;
it speaks only in engine value types.  :class:`SqlStore` implements it over
a single SQLAlchemy :class:`Session` — the caller owns the transaction
(see :func:`devcoach.database.engine.get_session`).

SQLAlchemy errors are not caught here.  They propagate to the service
boundary, where :func:`devcoach.errors.as_result` maps connection failures
to ``UNAVAILABLE`` and uniqueness violations to ``CONFLICT``.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from devcoach.database.engine import get_session
from devcoach.database.models import (
    AIInteractionRow,
    AttemptStatus,
    BadgeRow,
    CertificateRow,
    ChallengeAttempt,
    ChallengeRow,
    ChecklistMarkRow,
    CodeEventRow,
    MetricSnapshotRow,
    StreakRow,
    TestResultRow,
    TrapDetectionRow,
    UserBadgeRow,
    UserMetricsRow,
    XPTransactionRow,
)
from devcoach.engine.badges import BadgeDefinition, Rarity
from devcoach.engine.certificates import Certificate, CertificateLevel
from devcoach.engine.events import (
    AIInteraction,
    AttemptEvent,
    AttemptEvents,
    Challenge,
    ChecklistItem,
    ChecklistMark,
    CodeEvent,
    CodeEventType,
    TestCase,
    TestResult,
    TrapDetection,
    build_challenge,
)
from devcoach.engine.ledger import XPSource, XPTransaction
from devcoach.engine.metrics import AttemptSummary, MetricSnapshot, UserMetricsSummary
from devcoach.engine.streaks import StreakState
from devcoach.errors import CoachError, ErrorKind

logger = logging.getLogger(__name__)


def _utc(moment: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Attempt record
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Attempt:
    """One user's run at one challenge."""

    attempt_id: int
    user_id: int
    challenge_id: str
    status: AttemptStatus
    started_at: datetime
    language: str = "python"
    attempt_number: int = 1
    session_time: int = 0
    score: float | None = None
    passed: bool | None = None
    final_di: float | None = None
    final_pr: float | None = None
    final_cs: float | None = None
    completed_at: datetime | None = None

    @property
    def in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
class Store(Protocol):
    # attempts & challenges
    def create_attempt(
        self, user_id: int, challenge_id: str, language: str, started_at: datetime
    ) -> Attempt: ...
    def load_attempt(self, attempt_id: int) -> Attempt | None: ...
    def save_attempt(self, attempt: Attempt) -> None: ...
    def count_attempts(self, user_id: int, challenge_id: str) -> int: ...
    def load_challenge(self, challenge_id: str) -> Challenge | None: ...
    def save_challenge(self, challenge: Challenge) -> None: ...

    # events & snapshots
    def append_event(self, attempt_id: int, event: AttemptEvent) -> None: ...
    def load_attempt_events(self, attempt_id: int) -> AttemptEvents: ...
    def append_snapshot(self, snapshot: MetricSnapshot) -> None: ...
    def load_snapshots(self, attempt_id: int) -> list[MetricSnapshot]: ...

    # user aggregates
    def load_completed_attempts(self, user_id: int) -> list[AttemptSummary]: ...
    def load_user_metrics(self, user_id: int) -> UserMetricsSummary | None: ...
    def save_user_metrics(self, metrics: UserMetricsSummary) -> None: ...

    # ledger
    def append_xp_transaction(self, tx: XPTransaction) -> XPTransaction: ...
    def load_latest_balance(self, user_id: int) -> int: ...
    def load_transactions(self, user_id: int) -> list[XPTransaction]: ...
    def has_transaction(self, user_id: int, source: XPSource, source_id: str) -> bool: ...

    # streaks
    def load_streak(self, user_id: int) -> StreakState: ...
    def save_streak(self, streak: StreakState) -> None: ...
    def load_streak_user_ids(self, active_only: bool = True) -> list[int]: ...

    # badges
    def load_badge_catalog(self) -> list[BadgeDefinition]: ...
    def load_unlocked_badges(self, user_id: int) -> set[str]: ...
    def save_user_badge(
        self, user_id: int, badge_key: str, unlocked_at: datetime, progress: float = 1.0
    ) -> bool: ...

    # certificates
    def save_certificate(self, certificate: Certificate) -> None: ...
    def find_certificate_by_code(self, code: str) -> Certificate | None: ...
    def load_certificates(
        self, user_id: int, level: CertificateLevel | None = None
    ) -> list[Certificate]: ...


# ---------------------------------------------------------------------------
# Row ↔ value conversion
# ---------------------------------------------------------------------------
def _attempt_from_row(row: ChallengeAttempt) -> Attempt:
    return Attempt(
        attempt_id=row.id,
        user_id=row.user_id,
        challenge_id=row.challenge_id,
        status=AttemptStatus(row.status),
        started_at=_utc(row.started_at),
        language=row.language,
        attempt_number=row.attempt_number,
        session_time=row.session_time,
        score=row.score,
        passed=row.passed,
        final_di=row.final_di,
        final_pr=row.final_pr,
        final_cs=row.final_cs,
        completed_at=_utc(row.completed_at),
    )


def _challenge_from_row(row: ChallengeRow) -> Challenge:
    return build_challenge(
        row.id,
        row.title,
        row.category,
        row.difficulty,
        base_xp=row.base_xp,
        estimated_minutes=row.estimated_minutes,
        test_cases=[TestCase(t["test_id"], float(t["weight"])) for t in row.test_cases or []],
        checklist=[
            ChecklistItem(
                item_id=i["item_id"],
                label=i.get("label", i["item_id"]),
                weight=float(i.get("weight", 1.0)),
                category=i.get("category", "validation"),
                trap_id=i.get("trap_id"),
            )
            for i in row.checklist or []
        ],
        trap_ids=list(row.trap_ids or []),
    )


def _tx_from_row(row: XPTransactionRow) -> XPTransaction:
    return XPTransaction(
        user_id=row.user_id,
        amount=row.amount,
        source=XPSource(row.source),
        balance_before=row.balance_before,
        balance_after=row.balance_after,
        reason=row.reason,
        source_id=row.source_id,
        sequence=row.sequence,
        created_at=_utc(row.created_at),
    )


def _certificate_from_row(row: CertificateRow) -> Certificate:
    return Certificate(
        code=row.code,
        user_id=row.user_id,
        level=CertificateLevel(row.level),
        theory_score=row.theory_score,
        practical_score=row.practical_score,
        portfolio_score=row.portfolio_score,
        final_score=row.final_score,
        grade=row.grade,
        issued_at=_utc(row.issued_at),
        expires_at=_utc(row.expires_at),
        verification_hash=row.verification_hash,
        verification_url=row.verification_url,
        skills=tuple(row.skills or ()),
        challenges_completed=row.challenges_completed,
        total_hours=row.total_hours,
        average_di=row.average_di,
        average_pr=row.average_pr,
        average_cs=row.average_cs,
        stats=dict(row.stats or {}),
    )


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------
class SqlStore:
    """:class:`Store` over one open SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # -- attempts & challenges ----------------------------------------------
    def create_attempt(
        self, user_id: int, challenge_id: str, language: str, started_at: datetime
    ) -> Attempt:
        row = ChallengeAttempt(
            user_id=user_id,
            challenge_id=challenge_id,
            language=language,
            status=AttemptStatus.IN_PROGRESS.value,
            attempt_number=self.count_attempts(user_id, challenge_id) + 1,
            session_time=0,
            started_at=started_at,
        )
        self.session.add(row)
        self.session.flush()
        return _attempt_from_row(row)

    def load_attempt(self, attempt_id: int) -> Attempt | None:
        row = self.session.get(ChallengeAttempt, attempt_id)
        return _attempt_from_row(row) if row is not None else None

    def save_attempt(self, attempt: Attempt) -> None:
        row = self.session.get(ChallengeAttempt, attempt.attempt_id)
        if row is None:
            raise CoachError(ErrorKind.NOT_FOUND, "Attempt not found", attempt_id=attempt.attempt_id)
        row.status = attempt.status.value
        row.session_time = attempt.session_time
        row.score = attempt.score
        row.passed = attempt.passed
        row.final_di = attempt.final_di
        row.final_pr = attempt.final_pr
        row.final_cs = attempt.final_cs
        row.completed_at = attempt.completed_at
        self.session.flush()

    def count_attempts(self, user_id: int, challenge_id: str) -> int:
        return self.session.scalar(
            select(func.count()).select_from(ChallengeAttempt).where(
                ChallengeAttempt.user_id == user_id,
                ChallengeAttempt.challenge_id == challenge_id,
            )
        ) or 0

    def load_challenge(self, challenge_id: str) -> Challenge | None:
        row = self.session.get(ChallengeRow, challenge_id)
        return _challenge_from_row(row) if row is not None else None

    def save_challenge(self, challenge: Challenge) -> None:
        row = self.session.get(ChallengeRow, challenge.challenge_id)
        if row is None:
            row = ChallengeRow(id=challenge.challenge_id)
            self.session.add(row)
        row.title = challenge.title
        row.category = challenge.category
        row.difficulty = challenge.difficulty.value
        row.base_xp = challenge.base_xp
        row.estimated_minutes = challenge.estimated_minutes
        row.test_cases = [{"test_id": t.test_id, "weight": t.weight} for t in challenge.test_cases]
        row.checklist = [
            {
                "item_id": i.item_id,
                "label": i.label,
                "weight": i.weight,
                "category": i.category,
                "trap_id": i.trap_id,
            }
            for i in challenge.checklist
        ]
        row.trap_ids = list(challenge.trap_ids)
        self.session.flush()

    # -- events & snapshots ---------------------------------------------------
    def append_event(self, attempt_id: int, event: AttemptEvent) -> None:
        if isinstance(event, CodeEvent):
            row = CodeEventRow(
                attempt_id=attempt_id,
                type=event.type.value,
                session_time=event.session_time,
                lines_added=event.lines_added,
                lines_removed=event.lines_removed,
                total_lines=event.total_lines,
                characters_changed=event.characters_changed,
                was_from_ai=event.was_from_ai,
                ai_interaction_id=event.ai_interaction_id,
                file_name=event.file_name,
                timestamp=event.timestamp,
            )
        elif isinstance(event, AIInteraction):
            row = AIInteractionRow(attempt_id=attempt_id, **dataclasses.asdict(event))
        elif isinstance(event, TrapDetection):
            row = TrapDetectionRow(attempt_id=attempt_id, **dataclasses.asdict(event))
        elif isinstance(event, TestResult):
            row = TestResultRow(attempt_id=attempt_id, **dataclasses.asdict(event))
        elif isinstance(event, ChecklistMark):
            row = ChecklistMarkRow(attempt_id=attempt_id, **dataclasses.asdict(event))
        else:
            raise CoachError(ErrorKind.VALIDATION, f"Unsupported event type {type(event).__name__}")
        self.session.add(row)
        self.session.flush()

    def load_attempt_events(self, attempt_id: int) -> AttemptEvents:
        code_rows = self.session.scalars(
            select(CodeEventRow)
            .where(CodeEventRow.attempt_id == attempt_id)
            .order_by(CodeEventRow.session_time, CodeEventRow.id)
        ).all()
        ai_rows = self.session.scalars(
            select(AIInteractionRow)
            .where(AIInteractionRow.attempt_id == attempt_id)
            .order_by(AIInteractionRow.id)
        ).all()
        trap_rows = self.session.scalars(
            select(TrapDetectionRow)
            .where(TrapDetectionRow.attempt_id == attempt_id)
            .order_by(TrapDetectionRow.id)
        ).all()
        test_rows = self.session.scalars(
            select(TestResultRow)
            .where(TestResultRow.attempt_id == attempt_id)
            .order_by(TestResultRow.session_time, TestResultRow.id)
        ).all()
        mark_rows = self.session.scalars(
            select(ChecklistMarkRow)
            .where(ChecklistMarkRow.attempt_id == attempt_id)
            .order_by(ChecklistMarkRow.session_time, ChecklistMarkRow.id)
        ).all()

        return AttemptEvents(
            code_events=tuple(
                CodeEvent(
                    type=CodeEventType(r.type),
                    session_time=r.session_time,
                    lines_added=r.lines_added,
                    lines_removed=r.lines_removed,
                    total_lines=r.total_lines,
                    characters_changed=r.characters_changed,
                    was_from_ai=r.was_from_ai,
                    ai_interaction_id=r.ai_interaction_id,
                    file_name=r.file_name,
                    timestamp=_utc(r.timestamp),
                )
                for r in code_rows
            ),
            ai_interactions=tuple(
                AIInteraction(
                    interaction_id=r.interaction_id,
                    provider=r.provider,
                    model=r.model,
                    input_tokens=r.input_tokens,
                    output_tokens=r.output_tokens,
                    response_length=r.response_length,
                    code_lines_generated=r.code_lines_generated,
                    was_copied=r.was_copied,
                    copy_timestamp=_utc(r.copy_timestamp),
                    paste_timestamp=_utc(r.paste_timestamp),
                    timestamp=_utc(r.timestamp),
                )
                for r in ai_rows
            ),
            trap_detections=tuple(
                TrapDetection(
                    trap_id=r.trap_id,
                    reaction_time=r.reaction_time,
                    fell_into_trap=r.fell_into_trap,
                    fixed_after_warning=r.fixed_after_warning,
                    learned_from=r.learned_from,
                    explanation_shown=r.explanation_shown,
                    quiz_answered=r.quiz_answered,
                    quiz_score=r.quiz_score,
                    detected_at=_utc(r.detected_at),
                )
                for r in trap_rows
            ),
            test_results=tuple(
                TestResult(test_id=r.test_id, passed=r.passed, session_time=r.session_time)
                for r in test_rows
            ),
            checklist_marks=tuple(
                ChecklistMark(item_id=r.item_id, checked=r.checked, session_time=r.session_time)
                for r in mark_rows
            ),
        )

    def append_snapshot(self, snapshot: MetricSnapshot) -> None:
        if snapshot.attempt_id is None:
            raise CoachError(ErrorKind.VALIDATION, "Snapshot has no attempt id")
        self.session.add(MetricSnapshotRow(
            attempt_id=snapshot.attempt_id,
            session_time=snapshot.session_time,
            dependency_index=snapshot.dependency_index,
            pass_rate=snapshot.pass_rate,
            checklist_score=snapshot.checklist_score,
            taken_at=snapshot.taken_at,
        ))
        self.session.flush()

    def load_snapshots(self, attempt_id: int) -> list[MetricSnapshot]:
        rows = self.session.scalars(
            select(MetricSnapshotRow)
            .where(MetricSnapshotRow.attempt_id == attempt_id)
            .order_by(MetricSnapshotRow.session_time, MetricSnapshotRow.id)
        ).all()
        return [
            MetricSnapshot(
                session_time=r.session_time,
                dependency_index=r.dependency_index,
                pass_rate=r.pass_rate,
                checklist_score=r.checklist_score,
                attempt_id=r.attempt_id,
                taken_at=_utc(r.taken_at),
            )
            for r in rows
        ]

    # -- user aggregates ------------------------------------------------------
    def load_completed_attempts(self, user_id: int) -> list[AttemptSummary]:
        rows = self.session.execute(
            select(ChallengeAttempt, ChallengeRow.category)
            .join(ChallengeRow, ChallengeRow.id == ChallengeAttempt.challenge_id)
            .where(
                ChallengeAttempt.user_id == user_id,
                ChallengeAttempt.status == AttemptStatus.COMPLETED.value,
            )
            .order_by(ChallengeAttempt.completed_at, ChallengeAttempt.id)
        ).all()
        return [
            AttemptSummary(
                attempt_id=attempt.id,
                challenge_id=attempt.challenge_id,
                category=category,
                completed_at=_utc(attempt.completed_at),
                dependency_index=attempt.final_di or 0.0,
                pass_rate=attempt.final_pr or 0.0,
                checklist_score=attempt.final_cs or 0.0,
                passed=bool(attempt.passed),
                score=attempt.score or 0.0,
            )
            for attempt, category in rows
        ]

    def load_user_metrics(self, user_id: int) -> UserMetricsSummary | None:
        row = self.session.get(UserMetricsRow, user_id)
        if row is None:
            return None
        return UserMetricsSummary(
            user_id=row.user_id,
            total_attempts=row.total_attempts,
            average_di=row.average_di,
            average_pr=row.average_pr,
            average_cs=row.average_cs,
            weekly_trend=dict(row.weekly_trend or {}),
            first_week_di=row.first_week_di,
            current_week_di=row.current_week_di,
            improvement=row.improvement,
            category_scores=dict(row.category_scores or {}),
            strong_areas=tuple(row.strong_areas or ()),
            weak_areas=tuple(row.weak_areas or ()),
        )

    def save_user_metrics(self, metrics: UserMetricsSummary) -> None:
        row = self.session.get(UserMetricsRow, metrics.user_id)
        if row is None:
            row = UserMetricsRow(user_id=metrics.user_id)
            self.session.add(row)
        row.total_attempts = metrics.total_attempts
        row.average_di = metrics.average_di
        row.average_pr = metrics.average_pr
        row.average_cs = metrics.average_cs
        row.weekly_trend = metrics.weekly_trend
        row.first_week_di = metrics.first_week_di
        row.current_week_di = metrics.current_week_di
        row.improvement = metrics.improvement
        row.category_scores = metrics.category_scores
        row.strong_areas = list(metrics.strong_areas)
        row.weak_areas = list(metrics.weak_areas)
        self.session.flush()

    # -- ledger ----------------------------------------------------------------
    def _latest_tx_row(self, user_id: int) -> XPTransactionRow | None:
        return self.session.scalar(
            select(XPTransactionRow)
            .where(XPTransactionRow.user_id == user_id)
            .order_by(XPTransactionRow.sequence.desc())
            .limit(1)
        )

    def append_xp_transaction(self, tx: XPTransaction) -> XPTransaction:
        """Append *tx* as the user's next sequence number.

        Raises ``CoachError(CONFLICT)`` when ``tx.balance_before`` no longer
        matches the latest ``balance_after``; a concurrent writer taking the
        same sequence surfaces as :class:`IntegrityError`.
        """
        latest = self._latest_tx_row(tx.user_id)
        expected_before = latest.balance_after if latest is not None else 0
        if tx.balance_before != expected_before:
            raise CoachError(
                ErrorKind.CONFLICT,
                "Balance changed since it was read",
                user_id=tx.user_id,
                expected=expected_before,
                got=tx.balance_before,
            )
        sequence = (latest.sequence if latest is not None else 0) + 1
        stored = dataclasses.replace(tx, sequence=sequence)
        with self.session.begin_nested():   # SAVEPOINT
            self.session.add(XPTransactionRow(
                user_id=stored.user_id,
                sequence=stored.sequence,
                amount=stored.amount,
                source=stored.source.value,
                source_id=stored.source_id,
                reason=stored.reason,
                balance_before=stored.balance_before,
                balance_after=stored.balance_after,
                created_at=stored.created_at,
            ))
        return stored

    def load_latest_balance(self, user_id: int) -> int:
        latest = self._latest_tx_row(user_id)
        return latest.balance_after if latest is not None else 0

    def load_transactions(self, user_id: int) -> list[XPTransaction]:
        rows = self.session.scalars(
            select(XPTransactionRow)
            .where(XPTransactionRow.user_id == user_id)
            .order_by(XPTransactionRow.sequence)
        ).all()
        return [_tx_from_row(r) for r in rows]

    def has_transaction(self, user_id: int, source: XPSource, source_id: str) -> bool:
        return self.session.scalar(
            select(XPTransactionRow.id).where(
                XPTransactionRow.user_id == user_id,
                XPTransactionRow.source == XPSource(source).value,
                XPTransactionRow.source_id == source_id,
            ).limit(1)
        ) is not None

    # -- streaks ---------------------------------------------------------------
    def load_streak(self, user_id: int) -> StreakState:
        row = self.session.get(StreakRow, user_id)
        if row is None:
            return StreakState(user_id=user_id)
        return StreakState(
            user_id=row.user_id,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_activity_date=row.last_activity_date,
            risk_notified_on=row.risk_notified_on,
        )

    def save_streak(self, streak: StreakState) -> None:
        row = self.session.get(StreakRow, streak.user_id)
        if row is None:
            row = StreakRow(user_id=streak.user_id)
            self.session.add(row)
        row.current_streak = streak.current_streak
        row.longest_streak = streak.longest_streak
        row.last_activity_date = streak.last_activity_date
        row.risk_notified_on = streak.risk_notified_on
        self.session.flush()

    def load_streak_user_ids(self, active_only: bool = True) -> list[int]:
        stmt = select(StreakRow.user_id)
        if active_only:
            stmt = stmt.where(StreakRow.current_streak > 0)
        return list(self.session.scalars(stmt.order_by(StreakRow.user_id)).all())

    # -- badges ----------------------------------------------------------------
    def load_badge_catalog(self) -> list[BadgeDefinition]:
        rows = self.session.scalars(
            select(BadgeRow).where(BadgeRow.active.is_(True)).order_by(BadgeRow.id)
        ).all()
        return [
            BadgeDefinition(
                key=r.key,
                name=r.name,
                requirement=dict(r.requirement or {}),
                description=r.description,
                rarity=Rarity(r.rarity),
                xp_reward=r.xp_reward,
            )
            for r in rows
        ]

    def load_unlocked_badges(self, user_id: int) -> set[str]:
        rows = self.session.scalars(
            select(BadgeRow.key)
            .join(UserBadgeRow, UserBadgeRow.badge_id == BadgeRow.id)
            .where(UserBadgeRow.user_id == user_id)
        ).all()
        return set(rows)

    def save_user_badge(
        self, user_id: int, badge_key: str, unlocked_at: datetime, progress: float = 1.0
    ) -> bool:
        """Insert the unlock record.  Returns False if it already existed."""
        badge_id = self.session.scalar(select(BadgeRow.id).where(BadgeRow.key == badge_key))
        if badge_id is None:
            raise CoachError(ErrorKind.NOT_FOUND, f"Unknown badge {badge_key!r}", badge=badge_key)
        if self.session.get(UserBadgeRow, (user_id, badge_id)) is not None:
            return False
        try:
            with self.session.begin_nested():   # SAVEPOINT
                self.session.add(UserBadgeRow(
                    user_id=user_id, badge_id=badge_id,
                    unlocked_at=unlocked_at, progress=progress,
                ))
        except IntegrityError:
            # A concurrent evaluation inserted it first; the outer txn is intact.
            logger.info("Badge %s already unlocked for user %d", badge_key, user_id)
            return False
        return True

    # -- certificates ----------------------------------------------------------
    def save_certificate(self, certificate: Certificate) -> None:
        with self.session.begin_nested():
            self.session.add(CertificateRow(
                code=certificate.code,
                user_id=certificate.user_id,
                level=certificate.level.value,
                theory_score=certificate.theory_score,
                practical_score=certificate.practical_score,
                portfolio_score=certificate.portfolio_score,
                final_score=certificate.final_score,
                grade=certificate.grade,
                verification_hash=certificate.verification_hash,
                verification_url=certificate.verification_url,
                skills=list(certificate.skills),
                challenges_completed=certificate.challenges_completed,
                total_hours=certificate.total_hours,
                average_di=certificate.average_di,
                average_pr=certificate.average_pr,
                average_cs=certificate.average_cs,
                stats=certificate.stats,
                issued_at=certificate.issued_at,
                expires_at=certificate.expires_at,
            ))

    def find_certificate_by_code(self, code: str) -> Certificate | None:
        row = self.session.scalar(select(CertificateRow).where(CertificateRow.code == code))
        return _certificate_from_row(row) if row is not None else None

    def load_certificates(
        self, user_id: int, level: CertificateLevel | None = None
    ) -> list[Certificate]:
        stmt = select(CertificateRow).where(CertificateRow.user_id == user_id)
        if level is not None:
            stmt = stmt.where(CertificateRow.level == CertificateLevel(level).value)
        rows = self.session.scalars(
            stmt.order_by(CertificateRow.issued_at.desc(), CertificateRow.id.desc())
        ).all()
        return [_certificate_from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------
StoreFactory = Callable[[Session], Store]


@contextmanager
def open_store(engine: Engine, factory: StoreFactory = SqlStore) -> Iterator[Store]:
    """Yield a store bound to one session that commits on success."""
    with get_session(engine) as session:
        yield factory(session)
