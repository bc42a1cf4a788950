"""Initial schema: challenges, attempts, event journals, ledger, badges, streaks, certificates

Revision ID: 0a1c5e7d9b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7d9b21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _attempt_fk() -> sa.Column:
    return sa.Column(
        "attempt_id", sa.Integer,
        sa.ForeignKey("challenge_attempts.id", ondelete="CASCADE"), nullable=False,
    )


def upgrade() -> None:
    # --- challenges & attempts ---
    op.create_table(
        "challenges",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("difficulty", sa.String(20), nullable=False),
        sa.Column("base_xp", sa.Integer, server_default="100"),
        sa.Column("estimated_minutes", sa.Integer, server_default="30"),
        sa.Column("test_cases", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("checklist", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("trap_ids", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "challenge_attempts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column(
            "challenge_id", sa.String(64),
            sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("language", sa.String(30), server_default="python"),
        sa.Column("attempt_number", sa.Integer, server_default="1"),
        sa.Column("session_time", sa.Integer, server_default="0"),
        sa.Column("score", sa.Float, nullable=True),
        sa.Column("passed", sa.Boolean, nullable=True),
        sa.Column("final_di", sa.Float, nullable=True),
        sa.Column("final_pr", sa.Float, nullable=True),
        sa.Column("final_cs", sa.Float, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_attempts_user_status", "challenge_attempts", ["user_id", "status"])
    op.create_index(
        "ix_attempts_user_challenge", "challenge_attempts", ["user_id", "challenge_id"],
    )

    # --- event journals (append only) ---
    op.create_table(
        "code_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _attempt_fk(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("session_time", sa.Integer, nullable=False),
        sa.Column("lines_added", sa.Integer, server_default="0"),
        sa.Column("lines_removed", sa.Integer, server_default="0"),
        sa.Column("total_lines", sa.Integer, server_default="0"),
        sa.Column("characters_changed", sa.Integer, server_default="0"),
        sa.Column("was_from_ai", sa.Boolean, server_default=sa.false()),
        sa.Column("ai_interaction_id", sa.String(64), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_code_events_attempt_time", "code_events", ["attempt_id", "session_time"])

    op.create_table(
        "ai_interactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _attempt_fk(),
        sa.Column("interaction_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(30), server_default="OPENAI"),
        sa.Column("model", sa.String(100), server_default=""),
        sa.Column("input_tokens", sa.Integer, server_default="0"),
        sa.Column("output_tokens", sa.Integer, server_default="0"),
        sa.Column("response_length", sa.Integer, server_default="0"),
        sa.Column("code_lines_generated", sa.Integer, server_default="0"),
        sa.Column("was_copied", sa.Boolean, server_default=sa.false()),
        sa.Column("copy_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paste_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("attempt_id", "interaction_id", name="uq_ai_interactions_attempt_iid"),
    )

    op.create_table(
        "trap_detections",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _attempt_fk(),
        sa.Column("trap_id", sa.String(64), nullable=False),
        sa.Column("reaction_time", sa.Integer, server_default="0"),
        sa.Column("fell_into_trap", sa.Boolean, server_default=sa.false()),
        sa.Column("fixed_after_warning", sa.Boolean, server_default=sa.false()),
        sa.Column("learned_from", sa.Boolean, server_default=sa.false()),
        sa.Column("explanation_shown", sa.Boolean, server_default=sa.false()),
        sa.Column("quiz_answered", sa.Boolean, server_default=sa.false()),
        sa.Column("quiz_score", sa.Float, nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("attempt_id", "trap_id", name="uq_trap_detections_attempt_trap"),
    )

    op.create_table(
        "test_results",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _attempt_fk(),
        sa.Column("test_id", sa.String(64), nullable=False),
        sa.Column("passed", sa.Boolean, nullable=False),
        sa.Column("session_time", sa.Integer, server_default="0"),
    )
    op.create_index("ix_test_results_attempt", "test_results", ["attempt_id", "test_id"])

    op.create_table(
        "checklist_marks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _attempt_fk(),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("checked", sa.Boolean, nullable=False),
        sa.Column("session_time", sa.Integer, server_default="0"),
    )

    op.create_table(
        "metric_snapshots",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _attempt_fk(),
        sa.Column("session_time", sa.Integer, nullable=False),
        sa.Column("dependency_index", sa.Float, nullable=False),
        sa.Column("pass_rate", sa.Float, nullable=False),
        sa.Column("checklist_score", sa.Float, nullable=False),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_metric_snapshots_attempt_time", "metric_snapshots", ["attempt_id", "session_time"],
    )

    # --- per-user aggregates ---
    op.create_table(
        "user_metrics",
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("total_attempts", sa.Integer, server_default="0"),
        sa.Column("average_di", sa.Float, server_default="0"),
        sa.Column("average_pr", sa.Float, server_default="0"),
        sa.Column("average_cs", sa.Float, server_default="0"),
        sa.Column("weekly_trend", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("first_week_di", sa.Float, nullable=True),
        sa.Column("current_week_di", sa.Float, nullable=True),
        sa.Column("improvement", sa.Float, nullable=True),
        sa.Column("category_scores", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("strong_areas", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("weak_areas", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- XP ledger ---
    op.create_table(
        "xp_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("source_id", sa.String(100), nullable=True),
        sa.Column("reason", sa.Text, server_default=""),
        sa.Column("balance_before", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "sequence", name="uq_xp_transactions_user_sequence"),
        sa.CheckConstraint("balance_after >= 0", name="ck_xp_transactions_non_negative"),
    )
    op.create_index(
        "ix_xp_transactions_source", "xp_transactions", ["user_id", "source", "source_id"],
    )

    # --- badges ---
    op.create_table(
        "badges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("rarity", sa.String(20), server_default="COMMON"),
        sa.Column("requirement", postgresql.JSONB, nullable=False),
        sa.Column("xp_reward", sa.Integer, server_default="0"),
        sa.Column("active", sa.Boolean, server_default=sa.true()),
    )
    op.create_table(
        "user_badges",
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column(
            "badge_id", sa.Integer,
            sa.ForeignKey("badges.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("progress", sa.Float, server_default="1"),
        sa.PrimaryKeyConstraint("user_id", "badge_id"),
    )

    # --- streaks ---
    op.create_table(
        "streaks",
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("current_streak", sa.Integer, server_default="0"),
        sa.Column("longest_streak", sa.Integer, server_default="0"),
        sa.Column("last_activity_date", sa.Date, nullable=True),
        sa.Column("risk_notified_on", sa.Date, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- certificates ---
    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("level", sa.String(20), nullable=False),
        sa.Column("theory_score", sa.Float, nullable=False),
        sa.Column("practical_score", sa.Float, nullable=False),
        sa.Column("portfolio_score", sa.Float, nullable=False),
        sa.Column("final_score", sa.Float, nullable=False),
        sa.Column("grade", sa.String(4), nullable=False),
        sa.Column("verification_hash", sa.String(64), nullable=False),
        sa.Column("verification_url", sa.String(255), server_default=""),
        sa.Column("skills", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("challenges_completed", sa.Integer, server_default="0"),
        sa.Column("total_hours", sa.Float, server_default="0"),
        sa.Column("average_di", sa.Float, server_default="0"),
        sa.Column("average_pr", sa.Float, server_default="0"),
        sa.Column("average_cs", sa.Float, server_default="0"),
        sa.Column("stats", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_certificates_user_level", "certificates", ["user_id", "level", "issued_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_certificates_user_level", table_name="certificates")
    op.drop_table("certificates")
    op.drop_table("streaks")
    op.drop_table("user_badges")
    op.drop_table("badges")
    op.drop_index("ix_xp_transactions_source", table_name="xp_transactions")
    op.drop_table("xp_transactions")
    op.drop_table("user_metrics")
    op.drop_index("ix_metric_snapshots_attempt_time", table_name="metric_snapshots")
    op.drop_table("metric_snapshots")
    op.drop_table("checklist_marks")
    op.drop_index("ix_test_results_attempt", table_name="test_results")
    op.drop_table("test_results")
    op.drop_table("trap_detections")
    op.drop_table("ai_interactions")
    op.drop_index("ix_code_events_attempt_time", table_name="code_events")
    op.drop_table("code_events")
    op.drop_index("ix_attempts_user_challenge", table_name="challenge_attempts")
    op.drop_index("ix_attempts_user_status", table_name="challenge_attempts")
    op.drop_table("challenge_attempts")
    op.drop_table("challenges")
