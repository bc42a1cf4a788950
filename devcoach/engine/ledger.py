"""
devcoach.engine.ledger — XP Ledger Calculation
================================================

Pure helpers for the append-only XP ledger:

* :func:`compute_level` — level, title and progress derived from an XP total.
  Level is never stored; it is always derived on read.
* :func:`build_transaction` — the next signed transaction for a balance,
  applying the negative-balance policy.
* :func:`replay_ledger` — re-derive every balance from the amounts alone and
  fail loudly if the stored chain disagrees.

Persistence and per-user serialisation live in
:mod:`devcoach.services.ledger_service`.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from devcoach.constants import LEVEL_THRESHOLDS
from devcoach.errors import CoachError, ErrorKind, InvariantViolation

logger = logging.getLogger(__name__)


class XPSource(enum.StrEnum):
    CHALLENGE = "CHALLENGE"
    BADGE = "BADGE"
    STREAK = "STREAK"
    BONUS = "BONUS"
    PENALTY = "PENALTY"


class NegativePolicy(enum.StrEnum):
    """What to do with a debit larger than the balance."""
    REJECT = "reject"
    CLAMP = "clamp"


@dataclass(frozen=True, slots=True)
class XPTransaction:
    """One immutable ledger row.

    ``sequence`` is 1 for a user's first transaction and increases by one
    per posting; it is 0 until the store assigns it.
    """

    user_id: int
    amount: int
    source: XPSource
    balance_before: int
    balance_after: int
    reason: str = ""
    source_id: str | None = None
    sequence: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LevelInfo:
    level: int
    title: str
    total_xp: int
    perks: tuple[str, ...] = ()
    xp_into_level: int = 0
    xp_to_next: int = 0
    progress_percent: float = 100.0
    next_level: int | None = None


def compute_level(total_xp: int) -> LevelInfo:
    """Derive the level for *total_xp* from the level table.

    At the top level ``xp_to_next`` is 0 and progress is 100 %.
    """
    total_xp = max(0, total_xp)
    index = 0
    for i, row in enumerate(LEVEL_THRESHOLDS):
        if total_xp >= row["required_xp"]:
            index = i

    current = LEVEL_THRESHOLDS[index]
    xp_into_level = total_xp - current["required_xp"]
    if index == len(LEVEL_THRESHOLDS) - 1:
        return LevelInfo(
            level=current["level"],
            title=current["title"],
            total_xp=total_xp,
            perks=tuple(current["perks"]),
            xp_into_level=xp_into_level,
        )

    upcoming = LEVEL_THRESHOLDS[index + 1]
    span = upcoming["required_xp"] - current["required_xp"]
    return LevelInfo(
        level=current["level"],
        title=current["title"],
        total_xp=total_xp,
        perks=tuple(current["perks"]),
        xp_into_level=xp_into_level,
        xp_to_next=upcoming["required_xp"] - total_xp,
        progress_percent=round(xp_into_level / span * 100, 2),
        next_level=upcoming["level"],
    )


# ---------------------------------------------------------------------------
# Transaction building
# ---------------------------------------------------------------------------
def build_transaction(
    user_id: int,
    balance_before: int,
    amount: int,
    source: XPSource | str,
    *,
    source_id: str | None = None,
    reason: str = "",
    policy: NegativePolicy | str = NegativePolicy.REJECT,
) -> XPTransaction:
    """Build the transaction that moves *balance_before* by *amount*.

    Raises
    ------
    CoachError(VALIDATION)
        ``amount`` is zero, or ``source`` / ``policy`` is unknown.
    CoachError(INSUFFICIENT_BALANCE)
        Under the ``reject`` policy, when the debit exceeds the balance.
    """
    if amount == 0:
        raise CoachError(ErrorKind.VALIDATION, "XP amount must be non-zero", user_id=user_id)
    try:
        source = XPSource(source)
        policy = NegativePolicy(policy)
    except ValueError as exc:
        raise CoachError(ErrorKind.VALIDATION, str(exc), user_id=user_id) from None
    if balance_before < 0:
        raise InvariantViolation(f"user {user_id} has a negative balance ({balance_before})")

    if balance_before + amount < 0:
        if policy is NegativePolicy.REJECT:
            raise CoachError(
                ErrorKind.INSUFFICIENT_BALANCE,
                f"Debit of {-amount} XP exceeds balance of {balance_before}",
                user_id=user_id,
                balance=balance_before,
                amount=amount,
            )
        logger.info(
            "Clamping XP debit for user %d: %d → %d", user_id, amount, -balance_before,
        )
        amount = -balance_before
        if amount == 0:
            raise CoachError(
                ErrorKind.INSUFFICIENT_BALANCE,
                "Balance is already zero; nothing to debit",
                user_id=user_id,
                balance=balance_before,
            )

    return XPTransaction(
        user_id=user_id,
        amount=amount,
        source=source,
        balance_before=balance_before,
        balance_after=balance_before + amount,
        reason=reason,
        source_id=source_id,
    )


# ---------------------------------------------------------------------------
# Replay / verification
# ---------------------------------------------------------------------------
def replay_ledger(transactions: Sequence[XPTransaction]) -> int:
    """Replay *transactions* (in sequence order) from 0 and return the balance.

    Raises
    ------
    InvariantViolation
        If any row's ``balance_before`` does not continue the chain, its
        ``balance_after`` is not ``balance_before + amount``, or a balance
        goes negative.
    """
    balance = 0
    for tx in sorted(transactions, key=lambda t: t.sequence):
        if tx.balance_before != balance:
            raise InvariantViolation(
                f"Ledger chain broken at sequence {tx.sequence} for user {tx.user_id}: "
                f"balance_before={tx.balance_before}, expected {balance}"
            )
        if tx.balance_after != tx.balance_before + tx.amount:
            raise InvariantViolation(
                f"Ledger row {tx.sequence} for user {tx.user_id} does not add up: "
                f"{tx.balance_before} + {tx.amount} != {tx.balance_after}"
            )
        if tx.balance_after < 0:
            raise InvariantViolation(
                f"Ledger row {tx.sequence} for user {tx.user_id} is negative"
            )
        balance = tx.balance_after
    return balance
