"""
devcoach.database.seed — Badge Catalogue Seeder
=================================================

Baseline badge catalogue seeded on first startup so badge evaluation has
something to evaluate.

Idempotent — only inserts badge keys that don't already exist.  Badges
edited later are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from devcoach.database.models import BadgeRow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default badge catalogue
# ---------------------------------------------------------------------------
DEFAULT_BADGES: list[dict] = [
    {
        "key": "first-steps",
        "name": "First Steps",
        "description": "Earn your first XP",
        "rarity": "COMMON",
        "requirement": {"type": "special", "kind": "first-xp"},
        "xp_reward": 10,
    },
    {
        "key": "first-pass",
        "name": "Green Bar",
        "description": "Pass your first challenge",
        "rarity": "COMMON",
        "requirement": {"type": "special", "kind": "first-pass"},
        "xp_reward": 25,
    },
    {
        "key": "manual-mastery",
        "name": "Manual Mastery",
        "description": "Pass every test of a challenge with almost no AI-written code",
        "rarity": "RARE",
        "requirement": {"type": "low_dependency_attempts", "count": 1, "max_di": 10, "min_pr": 100},
        "xp_reward": 100,
    },
    {
        "key": "independent-thinker",
        "name": "Independent Thinker",
        "description": "Finish 10 challenges with a Dependency Index of 30 or less",
        "rarity": "EPIC",
        "requirement": {"type": "low_dependency_attempts", "count": 10, "max_di": 30},
        "xp_reward": 300,
    },
    {
        "key": "challenger-10",
        "name": "Challenger",
        "description": "Pass 10 challenges",
        "rarity": "COMMON",
        "requirement": {"type": "challenges", "count": 10},
        "xp_reward": 100,
    },
    {
        "key": "security-minded",
        "name": "Security Minded",
        "description": "Pass 5 security challenges",
        "rarity": "RARE",
        "requirement": {"type": "challenges", "count": 5, "category": "security"},
        "xp_reward": 150,
    },
    {
        "key": "validator",
        "name": "Validator",
        "description": "Keep an average Checklist Score of 80 over 5 attempts",
        "rarity": "RARE",
        "requirement": {
            "type": "metrics", "metric": "CS", "threshold": 80,
            "comparison": "gte", "scope": "average", "min_attempts": 5,
        },
        "xp_reward": 150,
    },
    {
        "key": "week-warrior",
        "name": "Week Warrior",
        "description": "Keep a 7-day streak",
        "rarity": "COMMON",
        "requirement": {"type": "streak", "days": 7},
        "xp_reward": 50,
    },
    {
        "key": "monthly-master",
        "name": "Monthly Master",
        "description": "Keep a 30-day streak",
        "rarity": "EPIC",
        "requirement": {"type": "streak", "days": 30},
        "xp_reward": 250,
    },
    {
        "key": "rising-star",
        "name": "Rising Star",
        "description": "Reach level 5",
        "rarity": "RARE",
        "requirement": {"type": "level", "value": 5},
        "xp_reward": 100,
    },
    {
        "key": "xp-hoarder",
        "name": "XP Hoarder",
        "description": "Hold 5,000 XP",
        "rarity": "EPIC",
        "requirement": {"type": "xp", "value": 5000},
        "xp_reward": 200,
    },
    {
        "key": "certified-foundation",
        "name": "Certified",
        "description": "Earn the Foundation certificate",
        "rarity": "LEGENDARY",
        "requirement": {"type": "certificate", "level": "FOUNDATION"},
        "xp_reward": 500,
    },
]


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_badges(engine: Engine, badges: list[dict] | None = None) -> int:
    """Insert catalogue badges whose key doesn't exist yet.

    Returns the number of rows inserted.
    """
    catalogue = DEFAULT_BADGES if badges is None else badges
    session = Session(engine)
    inserted = 0
    try:
        existing = set(session.scalars(select(BadgeRow.key)).all())
        for entry in catalogue:
            if entry["key"] in existing:
                continue
            session.add(BadgeRow(**entry))
            inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default badges.", inserted)
    return inserted
