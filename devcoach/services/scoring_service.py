"""
devcoach.services.scoring_service — Attempt Lifecycle & Completion
====================================================================

Entry point for the coaching client: start an attempt, stream its events,
take metric snapshots, and finally complete it.

``complete_attempt`` is the one place where every component meets.  Under
the user's lock and inside a single transaction it:

1. computes and appends the final snapshot;
2. marks the attempt completed (passed when PR ≥ ``pass_threshold``);
3. recomputes the user's aggregate metrics;
4. counts today's activity towards the streak;
5. posts challenge XP for a passed attempt (``source_id`` = attempt id);
6. evaluates badges and posts their rewards.

Notifications raised along the way are released only after the commit.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from devcoach.config import DevCoachConfig
from devcoach.database.models import AttemptStatus
from devcoach.engine import metrics
from devcoach.engine.badges import BadgeDefinition
from devcoach.engine.events import AttemptEvent, Challenge, validate_event
from devcoach.engine.ledger import XPSource, XPTransaction
from devcoach.engine.metrics import (
    MetricSnapshot,
    MetricTrend,
    RiskAssessment,
    UserMetricsSummary,
)
from devcoach.engine.rewards import calculate_challenge_xp
from devcoach.errors import CoachError, ErrorKind, Result, as_result
from devcoach.services.badge_service import BadgeService
from devcoach.services.certificate_service import CertificateService, VerificationResult
from devcoach.services.ledger_service import LedgerService
from devcoach.services.locks import UserLocks, get_default_locks
from devcoach.services.notifications import NotificationEmitter, NotificationSink, Outbox
from devcoach.services.secrets import EnvSecretProvider, SecretProvider
from devcoach.services.store import Attempt, SqlStore, Store, StoreFactory, open_store
from devcoach.services.streak_service import StreakService, StreakUpdate

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from devcoach.engine.certificates import Certificate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionReport:
    """Everything that changed because one attempt was completed."""

    attempt_id: int
    final_snapshot: MetricSnapshot
    passed: bool
    score: float
    user_metrics: UserMetricsSummary
    user_metrics_delta: dict[str, float]
    streak_update: StreakUpdate
    xp_transactions: list[XPTransaction] = field(default_factory=list)
    unlocked_badges: list[BadgeDefinition] = field(default_factory=list)
    risk: RiskAssessment | None = None
    insights: list[str] = field(default_factory=list)

    @property
    def xp_earned(self) -> int:
        return sum(tx.amount for tx in self.xp_transactions)


def _load_attempt(store: Store, attempt_id: int) -> Attempt:
    attempt = store.load_attempt(attempt_id)
    if attempt is None:
        raise CoachError(ErrorKind.NOT_FOUND, "Attempt not found", attempt_id=attempt_id)
    return attempt


def _load_open_attempt(store: Store, attempt_id: int) -> Attempt:
    attempt = _load_attempt(store, attempt_id)
    if not attempt.in_progress:
        raise CoachError(
            ErrorKind.CONFLICT,
            f"Attempt is {attempt.status.value.lower()}",
            attempt_id=attempt_id,
        )
    return attempt


def _load_challenge(store: Store, challenge_id: str) -> Challenge:
    challenge = store.load_challenge(challenge_id)
    if challenge is None:
        raise CoachError(ErrorKind.NOT_FOUND, "Challenge not found", challenge_id=challenge_id)
    return challenge


class ScoringService:
    def __init__(
        self,
        engine: Engine,
        config: DevCoachConfig | None = None,
        *,
        locks: UserLocks | None = None,
        emitter: NotificationEmitter | None = None,
        store_factory: StoreFactory = SqlStore,
        ledger: LedgerService | None = None,
        badges: BadgeService | None = None,
        streaks: StreakService | None = None,
        certificates: CertificateService | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or DevCoachConfig()
        self.locks = locks if locks is not None else get_default_locks()
        self.emitter = emitter or NotificationEmitter()
        self.store_factory = store_factory
        shared = {"locks": self.locks, "emitter": self.emitter, "store_factory": store_factory}
        self.ledger = ledger or LedgerService(engine, self.config, **shared)
        self.badges = badges or BadgeService(engine, self.config, ledger=self.ledger, **shared)
        self.streaks = streaks or StreakService(engine, self.config, **shared)
        self.certificates = certificates

    # ------------------------------------------------------------------
    # Challenges & attempts
    # ------------------------------------------------------------------
    @as_result
    def register_challenge(self, challenge: Challenge) -> Challenge:
        """Create or replace a challenge definition."""
        with open_store(self.engine, self.store_factory) as store:
            store.save_challenge(challenge)
        logger.info("Challenge registered: %s", challenge.challenge_id)
        return challenge

    @as_result
    def start_attempt(
        self, user_id: int, challenge_id: str, language: str = "python",
        at: datetime | None = None,
    ) -> Attempt:
        """Failure kinds: ``NOT_FOUND`` (challenge), ``UNAVAILABLE``."""
        at = at or datetime.now(timezone.utc)
        with open_store(self.engine, self.store_factory) as store:
            _load_challenge(store, challenge_id)
            attempt = store.create_attempt(user_id, challenge_id, language, at)
        logger.info(
            "Attempt %d started: user %d on %s (#%d)",
            attempt.attempt_id, user_id, challenge_id, attempt.attempt_number,
        )
        return attempt

    @as_result
    def get_attempt(self, attempt_id: int) -> Attempt:
        with open_store(self.engine, self.store_factory) as store:
            return _load_attempt(store, attempt_id)

    @as_result
    def abandon_attempt(self, attempt_id: int, at: datetime | None = None) -> Attempt:
        """Failure kinds: ``NOT_FOUND``, ``CONFLICT`` (not in progress), ``UNAVAILABLE``."""
        at = at or datetime.now(timezone.utc)
        with self.locks.hold(self._owner_of(attempt_id)):
            with open_store(self.engine, self.store_factory) as store:
                attempt = dataclasses.replace(
                    _load_open_attempt(store, attempt_id),
                    status=AttemptStatus.ABANDONED,
                    completed_at=at,
                )
                store.save_attempt(attempt)
        logger.info("Attempt %d abandoned", attempt_id)
        return attempt

    def _owner_of(self, attempt_id: int) -> int:
        """User id of an attempt; the per-user lock is taken on it before any write."""
        with open_store(self.engine, self.store_factory) as store:
            return _load_attempt(store, attempt_id).user_id

    # ------------------------------------------------------------------
    # Events & snapshots
    # ------------------------------------------------------------------
    @as_result
    def record_event(self, attempt_id: int, event: AttemptEvent) -> None:
        """Append one observed event to an in-progress attempt.

        Failure kinds: ``NOT_FOUND``, ``CONFLICT`` (attempt finished, or a
        second detection for the same trap), ``VALIDATION``, ``UNAVAILABLE``.
        """
        validate_event(event)
        with self.locks.hold(self._owner_of(attempt_id)):
            with open_store(self.engine, self.store_factory) as store:
                _load_open_attempt(store, attempt_id)
                store.append_event(attempt_id, event)
        logger.debug("Attempt %d: recorded %s", attempt_id, type(event).__name__)

    @as_result
    def compute_snapshot(self, attempt_id: int, elapsed: int) -> MetricSnapshot:
        """Compute DI/PR/CS from all events so far and append one snapshot.

        Failure kinds: ``NOT_FOUND``, ``CONFLICT`` (attempt finished, or
        *elapsed* earlier than the latest snapshot), ``VALIDATION``
        (negative *elapsed*), ``UNAVAILABLE``.
        """
        if elapsed < 0:
            raise CoachError(ErrorKind.VALIDATION, "Elapsed session time must be >= 0")
        with self.locks.hold(self._owner_of(attempt_id)):
            with open_store(self.engine, self.store_factory) as store:
                attempt = _load_open_attempt(store, attempt_id)
                snapshot = self._snapshot_in(store, attempt, elapsed)
                store.save_attempt(dataclasses.replace(attempt, session_time=elapsed))
        return snapshot

    def _snapshot_in(self, store: Store, attempt: Attempt, elapsed: int) -> MetricSnapshot:
        previous = store.load_snapshots(attempt.attempt_id)
        if previous and elapsed < previous[-1].session_time:
            raise CoachError(
                ErrorKind.CONFLICT,
                "Snapshot is older than the latest one",
                attempt_id=attempt.attempt_id,
                latest=previous[-1].session_time,
                got=elapsed,
            )
        challenge = _load_challenge(store, attempt.challenge_id)
        snapshot = metrics.compute_snapshot(
            store.load_attempt_events(attempt.attempt_id),
            challenge,
            elapsed,
            attempt_id=attempt.attempt_id,
        )
        store.append_snapshot(snapshot)
        logger.info(
            "Snapshot appended for attempt %d at %ds: DI=%.2f PR=%.2f CS=%.2f",
            attempt.attempt_id, elapsed,
            snapshot.dependency_index, snapshot.pass_rate, snapshot.checklist_score,
        )
        return snapshot

    @as_result
    def snapshots(self, attempt_id: int) -> list[MetricSnapshot]:
        with open_store(self.engine, self.store_factory) as store:
            _load_attempt(store, attempt_id)
            return store.load_snapshots(attempt_id)

    @as_result
    def trend(self, attempt_id: int, metric: str, window: int = 5) -> MetricTrend:
        """Failure kinds: ``NOT_FOUND``, ``VALIDATION`` (metric not DI/PR/CS)."""
        if metric.upper() not in metrics.TREND_METRICS:
            raise CoachError(ErrorKind.VALIDATION, f"Unknown metric {metric!r}")
        with open_store(self.engine, self.store_factory) as store:
            _load_attempt(store, attempt_id)
            history = store.load_snapshots(attempt_id)
        return metrics.session_trend(history, metric, window)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    @as_result
    def complete_attempt(
        self, attempt_id: int, at: datetime | None = None, elapsed: int | None = None
    ) -> CompletionReport:
        """Finish an attempt and apply every consequence atomically.

        Failure kinds: ``NOT_FOUND``, ``CONFLICT`` (attempt not in
        progress, completion dated before the user's last activity, or a
        lost ledger race), ``CONFIGURATION`` (badge catalogue),
        ``UNAVAILABLE``.
        """
        at = at or datetime.now(timezone.utc)
        with self.locks.hold(self._owner_of(attempt_id)):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                report = self._complete_in(store, outbox, attempt_id, at, elapsed)
            outbox.flush()

        logger.info(
            "Attempt %d completed: %s (score %.2f, +%d XP, %d badge(s))",
            attempt_id, "passed" if report.passed else "failed",
            report.score, report.xp_earned, len(report.unlocked_badges),
        )
        return report

    def _complete_in(
        self,
        store: Store,
        outbox: NotificationEmitter,
        attempt_id: int,
        at: datetime,
        elapsed: int | None,
    ) -> CompletionReport:
        attempt = _load_open_attempt(store, attempt_id)
        user_id = attempt.user_id
        challenge = _load_challenge(store, attempt.challenge_id)

        history = store.load_snapshots(attempt_id)
        final_time = elapsed if elapsed is not None else attempt.session_time
        if history:
            final_time = max(final_time, history[-1].session_time)
        final = self._snapshot_in(store, attempt, final_time)

        passed = final.pass_rate >= self.config.pass_threshold
        score = metrics.attempt_score(final.dependency_index, final.pass_rate, final.checklist_score)
        store.save_attempt(dataclasses.replace(
            attempt,
            status=AttemptStatus.COMPLETED,
            session_time=final_time,
            score=score,
            passed=passed,
            final_di=final.dependency_index,
            final_pr=final.pass_rate,
            final_cs=final.checklist_score,
            completed_at=at,
        ))

        before = store.load_user_metrics(user_id)
        completed = store.load_completed_attempts(user_id)
        after = metrics.aggregate_user_metrics(
            user_id,
            completed,
            strong_threshold=self.config.strong_area_threshold,
            weak_threshold=self.config.weak_area_threshold,
        )
        store.save_user_metrics(after)

        streak = self.streaks.record_in(store, user_id, self.streaks.day_of(at))

        transactions: list[XPTransaction] = []
        source_id = str(attempt_id)
        if passed and not store.has_transaction(user_id, XPSource.CHALLENGE, source_id):
            reward = calculate_challenge_xp(
                challenge.base_xp,
                challenge.difficulty,
                final,
                attempt_number=attempt.attempt_number,
                streak_days=streak.current,
            )
            if reward.xp > 0:
                transactions.append(self.ledger.post_in(
                    store, outbox, user_id, reward.xp, XPSource.CHALLENGE,
                    source_id=source_id,
                    reason=f"Completed {challenge.title}: {reward.breakdown()}",
                ))

        unlocked = self.badges.evaluate_in(store, outbox, user_id, at)
        transactions.extend(u.reward for u in unlocked if u.reward is not None)

        previous = next(
            (a for a in reversed(completed) if a.attempt_id != attempt_id), None,
        )
        previous_snapshot = None
        if previous is not None:
            previous_snapshot = MetricSnapshot(
                session_time=0,
                dependency_index=previous.dependency_index,
                pass_rate=previous.pass_rate,
                checklist_score=previous.checklist_score,
                attempt_id=previous.attempt_id,
            )

        return CompletionReport(
            attempt_id=attempt_id,
            final_snapshot=final,
            passed=passed,
            score=score,
            user_metrics=after,
            user_metrics_delta=metrics.metrics_delta(before, after),
            streak_update=streak,
            xp_transactions=transactions,
            unlocked_badges=[u.badge for u in unlocked],
            risk=metrics.assess_risk(final),
            insights=metrics.generate_insights(final, previous_snapshot),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @as_result
    def user_metrics(self, user_id: int) -> UserMetricsSummary:
        with open_store(self.engine, self.store_factory) as store:
            summary = store.load_user_metrics(user_id)
        return summary or UserMetricsSummary(user_id=user_id)

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------
    def issue_certificate(
        self,
        user_id: int,
        level: str,
        theory: float,
        practical: float,
        portfolio: float,
        **kwargs,
    ) -> Result[Certificate]:
        """Delegates to :meth:`CertificateService.issue`; ``CONFIGURATION`` when unwired."""
        if self.certificates is None:
            return Result.fail(ErrorKind.CONFIGURATION, "No certificate service configured")
        return self.certificates.issue(user_id, level, theory, practical, portfolio, **kwargs)

    def verify_certificate(self, code: str, now: datetime | None = None) -> Result[VerificationResult]:
        if self.certificates is None:
            return Result.fail(ErrorKind.CONFIGURATION, "No certificate service configured")
        return self.certificates.verify(code, now=now)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Services:
    scoring: ScoringService
    ledger: LedgerService
    badges: BadgeService
    streaks: StreakService
    certificates: CertificateService


def build_services(
    engine: Engine,
    config: DevCoachConfig | None = None,
    *,
    sink: NotificationSink | None = None,
    secrets: SecretProvider | None = None,
    locks: UserLocks | None = None,
) -> Services:
    """Wire every service around one engine, lock table and emitter."""
    config = config or DevCoachConfig()
    locks = locks if locks is not None else get_default_locks()
    emitter = NotificationEmitter(sink)
    ledger = LedgerService(engine, config, locks=locks, emitter=emitter)
    badges = BadgeService(engine, config, ledger=ledger, locks=locks, emitter=emitter)
    streaks = StreakService(engine, config, locks=locks, emitter=emitter)
    certificates = CertificateService(
        engine, secrets or EnvSecretProvider(), config, emitter=emitter,
    )
    scoring = ScoringService(
        engine, config, locks=locks, emitter=emitter,
        ledger=ledger, badges=badges, streaks=streaks, certificates=certificates,
    )
    return Services(
        scoring=scoring,
        ledger=ledger,
        badges=badges,
        streaks=streaks,
        certificates=certificates,
    )
