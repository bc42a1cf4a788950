"""
devcoach.constants — Shared Constants & Tables
================================================

Single source of truth for the level table, the certificate grade table and
presentation constants.  Import from here instead of duplicating them in the
engine, services and API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Rarity presentation (used by notification payloads)
# ---------------------------------------------------------------------------
RARITY_EMOJI: dict[str, str] = {
    "COMMON": "\u26aa",        # ⚪
    "RARE": "\U0001f535",      # 🔵
    "EPIC": "\U0001f7e3",      # 🟣
    "LEGENDARY": "\U0001f7e1", # 🟡
}


# ---------------------------------------------------------------------------
# Level table: cumulative XP required to reach each level
# ---------------------------------------------------------------------------
LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "title": "Beginner", "required_xp": 0, "perks": ["Basic challenges"]},
    {"level": 2, "title": "Apprentice", "required_xp": 100, "perks": ["Free hints"]},
    {"level": 3, "title": "Practitioner", "required_xp": 300, "perks": ["Medium challenges"]},
    {"level": 4, "title": "Competent", "required_xp": 600, "perks": ["Code analysis"]},
    {"level": 5, "title": "Proficient", "required_xp": 1000,
     "perks": ["Hard challenges", "Exclusive badge"]},
    {"level": 6, "title": "Advanced", "required_xp": 1500, "perks": ["Streak insights"]},
    {"level": 7, "title": "Specialist", "required_xp": 2500, "perks": ["Expert challenges"]},
    {"level": 8, "title": "Master", "required_xp": 4000, "perks": ["Foundation certification"]},
    {"level": 9, "title": "Grandmaster", "required_xp": 6000,
     "perks": ["Professional certification"]},
    {"level": 10, "title": "Legend", "required_xp": 10000,
     "perks": ["Expert certification", "Special title"]},
]


# ---------------------------------------------------------------------------
# Certificate grading: (minimum final score, grade), highest first
# ---------------------------------------------------------------------------
GRADE_STEPS: list[tuple[float, str]] = [
    (90.0, "A+"),
    (85.0, "A"),
    (80.0, "B+"),
    (75.0, "B"),
    (70.0, "C+"),
    (65.0, "C"),
    (60.0, "D"),
]
FAILING_GRADE = "F"
MIN_PASSING_SCORE = 60.0

# Component weights for the certificate final score
THEORY_WEIGHT = 0.3
PRACTICAL_WEIGHT = 0.5
PORTFOLIO_WEIGHT = 0.2

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


# ---------------------------------------------------------------------------
# Streak milestones (days) reported as "next milestone"
# ---------------------------------------------------------------------------
STREAK_MILESTONES: list[int] = [3, 7, 14, 30, 60, 100, 365]
