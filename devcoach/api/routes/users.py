"""
devcoach.api.routes.users — Per-user progress endpoints
=========================================================
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from devcoach.api.deps import get_services, unwrap
from devcoach.constants import RARITY_EMOJI
from devcoach.engine.ledger import XPSource
from devcoach.services.scoring_service import Services

router = APIRouter(tags=["users"])


class ManualAward(BaseModel):
    amount: int
    source: XPSource = XPSource.BONUS
    source_id: str | None = None
    reason: str = ""


class SweepRequest(BaseModel):
    today: date | None = None
    user_ids: list[int] | None = Field(None)


# ---------------------------------------------------------------------------
# Metrics & XP
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/metrics")
def get_user_metrics(user_id: int, services: Services = Depends(get_services)):
    return unwrap(services.scoring.user_metrics(user_id))


@router.get("/users/{user_id}/xp")
def get_balance(user_id: int, services: Services = Depends(get_services)):
    info = unwrap(services.ledger.balance(user_id))
    level = info.level
    return {
        "user_id": user_id,
        "balance": info.balance,
        "transactions": info.transactions,
        "level": level.level,
        "title": level.title,
        "perks": list(level.perks),
        "xp_to_next": level.xp_to_next,
        "progress_percent": level.progress_percent,
    }


@router.get("/users/{user_id}/xp/history")
def get_history(
    user_id: int,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    return unwrap(services.ledger.history(user_id))[-limit:][::-1]


@router.post("/users/{user_id}/xp")
def post_xp(user_id: int, body: ManualAward, services: Services = Depends(get_services)):
    """Manual XP adjustment (bonus or penalty)."""
    return unwrap(services.ledger.post(
        user_id, body.amount, body.source, source_id=body.source_id, reason=body.reason,
    ))


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/badges")
def get_badges(user_id: int, services: Services = Depends(get_services)):
    return [
        {
            "key": e.badge.key,
            "name": e.badge.name,
            "description": e.badge.description,
            "rarity": e.badge.rarity.value,
            "emoji": RARITY_EMOJI.get(e.badge.rarity.value, ""),
            "xp_reward": e.badge.xp_reward,
            "unlocked": e.progress.matched,
            "progress": e.progress.progress,
        }
        for e in unwrap(services.badges.progress(user_id))
    ]


@router.post("/users/{user_id}/badges/evaluate")
def evaluate_badges(user_id: int, services: Services = Depends(get_services)):
    return [u.badge.key for u in unwrap(services.badges.evaluate(user_id))]


@router.post("/users/{user_id}/badges/{key}")
def unlock_badge(user_id: int, key: str, services: Services = Depends(get_services)):
    granted = unwrap(services.badges.unlock(user_id, key))
    return {"badge": granted.badge.key, "reward": granted.reward}


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/streak")
def get_streak(user_id: int, services: Services = Depends(get_services)):
    return unwrap(services.streaks.status(user_id))


@router.post("/streaks/sweep")
def sweep_streaks(body: SweepRequest, services: Services = Depends(get_services)):
    return unwrap(services.streaks.sweep(body.today, body.user_ids))
