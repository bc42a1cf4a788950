"""
DevCoach — Metrics & Gamification Engine for Developer Coaching
=================================================================
Measures how independently a developer solves coding challenges (AI
Dependency Index, Pass Rate, Checklist Score) and turns the results into
XP, levels, badges, streaks and verifiable certificates.

Package layout::

    devcoach/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Level table, grade table, rarity presentation
    ├── errors.py          # ErrorKind, CoachError, Result
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session + async helper
    │   ├── models.py      # All ORM models (14 tables)
    │   └── seed.py        # Default badge catalogue
    ├── engine/
    │   ├── events.py      # Observed attempt events + challenge definition
    │   ├── metrics.py     # DI / PR / CS, risk, insights, user aggregates
    │   ├── rewards.py     # Challenge XP pipeline
    │   ├── ledger.py      # Levels + XP transaction rules
    │   ├── badges.py      # Requirement handler registry
    │   ├── streaks.py     # Day-granularity streak transitions
    │   └── certificates.py # Final score, grade, signing, verification
    ├── services/
    │   ├── store.py           # Store contract + SQLAlchemy implementation
    │   ├── locks.py           # Per-user serialisation
    │   ├── notifications.py   # Sink protocol + emitter + outbox
    │   ├── secrets.py         # Certificate signing secret
    │   ├── ledger_service.py  # XP posting
    │   ├── badge_service.py   # Badge unlocks + rewards
    │   ├── streak_service.py  # Streak recording + daily sweep
    │   ├── certificate_service.py
    │   └── scoring_service.py # Attempt lifecycle + completion
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Attempts, users, certificates
"""

__version__ = "0.1.0"
