"""
devcoach.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- challenges          — Challenge definitions (tests, checklist, traps as JSONB)
- challenge_attempts  — One user's timed run at one challenge
- code_events         — Append-only edit journal per attempt
- ai_interactions     — Append-only AI-assistant exchanges per attempt
- trap_detections     — One row per trap per attempt
- test_results        — Append-only test-case outcomes per attempt
- checklist_marks     — Append-only checklist ticks per attempt
- metric_snapshots    — Append-only DI/PR/CS time series per attempt
- user_metrics        — One recomputed aggregate row per user
- xp_transactions     — Append-only XP ledger, unique (user_id, sequence)
- badges              — Static badge catalogue
- user_badges         — Unlock records, at most one per (user, badge)
- streaks             — One row per user
- certificates        — Issued credentials, never deleted

Users are identified by an opaque integer id supplied by the caller; there
is no users table.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all DevCoach ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AttemptStatus(enum.StrEnum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------
class ChallengeRow(Base):
    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)
    base_xp: Mapped[int] = mapped_column(Integer, default=100)
    estimated_minutes: Mapped[int] = mapped_column(Integer, default=30)
    test_cases: Mapped[list] = mapped_column(JSONB, default=list)   # [{"test_id", "weight"}]
    checklist: Mapped[list] = mapped_column(JSONB, default=list)    # [{"item_id", "label", ...}]
    trap_ids: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    attempts: Mapped[list[ChallengeAttempt]] = relationship(back_populates="challenge")

    def __repr__(self) -> str:
        return f"<Challenge id={self.id!r} difficulty={self.difficulty}>"


class ChallengeAttempt(Base):
    __tablename__ = "challenge_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    challenge_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=AttemptStatus.IN_PROGRESS.value)
    language: Mapped[str] = mapped_column(String(30), default="python")
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)
    session_time: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    final_di: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_pr: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_cs: Mapped[float | None] = mapped_column(Float, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    challenge: Mapped[ChallengeRow] = relationship(back_populates="attempts")

    __table_args__ = (
        Index("ix_attempts_user_status", "user_id", "status"),
        Index("ix_attempts_user_challenge", "user_id", "challenge_id"),
    )

    def __repr__(self) -> str:
        return f"<ChallengeAttempt id={self.id} user={self.user_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Attempt event journals: append only
# ---------------------------------------------------------------------------
class CodeEventRow(Base):
    __tablename__ = "code_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    session_time: Mapped[int] = mapped_column(Integer, nullable=False)
    lines_added: Mapped[int] = mapped_column(Integer, default=0)
    lines_removed: Mapped[int] = mapped_column(Integer, default=0)
    total_lines: Mapped[int] = mapped_column(Integer, default=0)
    characters_changed: Mapped[int] = mapped_column(Integer, default=0)
    was_from_ai: Mapped[bool] = mapped_column(Boolean, default=False)
    ai_interaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_code_events_attempt_time", "attempt_id", "session_time"),
    )


class AIInteractionRow(Base):
    __tablename__ = "ai_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False
    )
    interaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), default="OPENAI")
    model: Mapped[str] = mapped_column(String(100), default="")
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    response_length: Mapped[int] = mapped_column(Integer, default=0)
    code_lines_generated: Mapped[int] = mapped_column(Integer, default=0)
    was_copied: Mapped[bool] = mapped_column(Boolean, default=False)
    copy_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paste_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("attempt_id", "interaction_id", name="uq_ai_interactions_attempt_iid"),
    )


class TrapDetectionRow(Base):
    __tablename__ = "trap_detections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False
    )
    trap_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reaction_time: Mapped[int] = mapped_column(Integer, default=0)
    fell_into_trap: Mapped[bool] = mapped_column(Boolean, default=False)
    fixed_after_warning: Mapped[bool] = mapped_column(Boolean, default=False)
    learned_from: Mapped[bool] = mapped_column(Boolean, default=False)
    explanation_shown: Mapped[bool] = mapped_column(Boolean, default=False)
    quiz_answered: Mapped[bool] = mapped_column(Boolean, default=False)
    quiz_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("attempt_id", "trap_id", name="uq_trap_detections_attempt_trap"),
    )


class TestResultRow(Base):
    __tablename__ = "test_results"
    __test__ = False

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False
    )
    test_id: Mapped[str] = mapped_column(String(64), nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    session_time: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("ix_test_results_attempt", "attempt_id", "test_id"),
    )


class ChecklistMarkRow(Base):
    __tablename__ = "checklist_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    checked: Mapped[bool] = mapped_column(Boolean, nullable=False)
    session_time: Mapped[int] = mapped_column(Integer, default=0)


class MetricSnapshotRow(Base):
    __tablename__ = "metric_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False
    )
    session_time: Mapped[int] = mapped_column(Integer, nullable=False)
    dependency_index: Mapped[float] = mapped_column(Float, nullable=False)
    pass_rate: Mapped[float] = mapped_column(Float, nullable=False)
    checklist_score: Mapped[float] = mapped_column(Float, nullable=False)
    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_metric_snapshots_attempt_time", "attempt_id", "session_time"),
    )


# ---------------------------------------------------------------------------
# User metrics: one recomputed row per user
# ---------------------------------------------------------------------------
class UserMetricsRow(Base):
    __tablename__ = "user_metrics"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    average_di: Mapped[float] = mapped_column(Float, default=0.0)
    average_pr: Mapped[float] = mapped_column(Float, default=0.0)
    average_cs: Mapped[float] = mapped_column(Float, default=0.0)
    weekly_trend: Mapped[dict] = mapped_column(JSONB, default=dict)
    first_week_di: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_week_di: Mapped[float | None] = mapped_column(Float, nullable=True)
    improvement: Mapped[float | None] = mapped_column(Float, nullable=True)
    category_scores: Mapped[dict] = mapped_column(JSONB, default=dict)
    strong_areas: Mapped[list] = mapped_column(JSONB, default=list)
    weak_areas: Mapped[list] = mapped_column(JSONB, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# XP ledger: append only, strictly ordered per user
# ---------------------------------------------------------------------------
class XPTransactionRow(Base):
    __tablename__ = "xp_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason: Mapped[str] = mapped_column(Text, default="")
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_xp_transactions_user_sequence"),
        CheckConstraint("balance_after >= 0", name="ck_xp_transactions_non_negative"),
        Index("ix_xp_transactions_source", "user_id", "source", "source_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<XPTransaction user={self.user_id} seq={self.sequence} "
            f"{self.balance_before}{self.amount:+d}={self.balance_after}>"
        )


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------
class BadgeRow(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    rarity: Mapped[str] = mapped_column(String(20), default="COMMON")
    requirement: Mapped[dict] = mapped_column(JSONB, nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    unlocked_by: Mapped[list[UserBadgeRow]] = relationship(
        back_populates="badge", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Badge key={self.key!r} rarity={self.rarity}>"


class UserBadgeRow(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True
    )
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    progress: Mapped[float] = mapped_column(Float, default=1.0)

    badge: Mapped[BadgeRow] = relationship(back_populates="unlocked_by")

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# Streaks: one row per user, never deleted
# ---------------------------------------------------------------------------
class StreakRow(Base):
    __tablename__ = "streaks"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    risk_notified_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Certificates: a new row per issuance
# ---------------------------------------------------------------------------
class CertificateRow(Base):
    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    theory_score: Mapped[float] = mapped_column(Float, nullable=False)
    practical_score: Mapped[float] = mapped_column(Float, nullable=False)
    portfolio_score: Mapped[float] = mapped_column(Float, nullable=False)
    final_score: Mapped[float] = mapped_column(Float, nullable=False)
    grade: Mapped[str] = mapped_column(String(4), nullable=False)
    verification_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    verification_url: Mapped[str] = mapped_column(String(255), default="")
    skills: Mapped[list] = mapped_column(JSONB, default=list)
    challenges_completed: Mapped[int] = mapped_column(Integer, default=0)
    total_hours: Mapped[float] = mapped_column(Float, default=0.0)
    average_di: Mapped[float] = mapped_column(Float, default=0.0)
    average_pr: Mapped[float] = mapped_column(Float, default=0.0)
    average_cs: Mapped[float] = mapped_column(Float, default=0.0)
    stats: Mapped[dict] = mapped_column(JSONB, default=dict)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_certificates_user_level", "user_id", "level", "issued_at"),
    )

    def __repr__(self) -> str:
        return f"<Certificate code={self.code!r} level={self.level} grade={self.grade}>"
