"""
devcoach.services.notifications — Notification Emitter
========================================================

Hands significant state transitions (level-up, badge unlock, streak risk
or reset, certificate issued) to an external :class:`NotificationSink`.

Delivery is fire-and-forget: a failing sink is logged and swallowed, so
scoring, ledger and streak operations never fail because a notification
could not be delivered.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Protocol

from devcoach.constants import RARITY_EMOJI

logger = logging.getLogger(__name__)


class NotificationKind(enum.StrEnum):
    LEVEL_UP = "LEVEL_UP"
    BADGE_UNLOCK = "BADGE_UNLOCK"
    STREAK_RISK = "STREAK_RISK"
    STREAK_RESET = "STREAK_RESET"
    CERTIFICATE_ISSUED = "CERTIFICATE_ISSUED"


class NotificationSink(Protocol):
    def emit(self, user_id: int, kind: NotificationKind, payload: dict[str, Any]) -> None: ...


class LoggingSink:
    """Default sink: writes each notification to the log."""

    def emit(self, user_id: int, kind: NotificationKind, payload: dict[str, Any]) -> None:
        logger.info("Notification %s for user %d: %s", kind.value, user_id, payload)


class NotificationEmitter:
    """Builds notification payloads and pushes them to a sink."""

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self.sink: NotificationSink = sink or LoggingSink()

    def emit(self, user_id: int, kind: NotificationKind, payload: dict[str, Any]) -> None:
        try:
            self.sink.emit(user_id, kind, payload)
        except Exception:
            logger.warning(
                "Notification sink failed for %s (user %d)", kind.value, user_id, exc_info=True,
            )

    # -- convenience builders ------------------------------------------------
    def level_up(self, user_id: int, old_level: int, new_level: int, title: str) -> None:
        self.emit(user_id, NotificationKind.LEVEL_UP, {
            "old_level": old_level,
            "new_level": new_level,
            "title": title,
        })

    def badge_unlocked(
        self, user_id: int, key: str, name: str, rarity: str, xp_reward: int
    ) -> None:
        self.emit(user_id, NotificationKind.BADGE_UNLOCK, {
            "badge": key,
            "name": name,
            "rarity": rarity,
            "emoji": RARITY_EMOJI.get(rarity, ""),
            "xp_reward": xp_reward,
        })

    def streak_at_risk(self, user_id: int, current_streak: int) -> None:
        self.emit(user_id, NotificationKind.STREAK_RISK, {"current_streak": current_streak})

    def streak_reset(self, user_id: int, lost_streak: int, reason: str) -> None:
        self.emit(user_id, NotificationKind.STREAK_RESET, {
            "lost_streak": lost_streak,
            "reason": reason,
        })

    def certificate_issued(
        self, user_id: int, code: str, level: str, grade: str, verification_url: str
    ) -> None:
        self.emit(user_id, NotificationKind.CERTIFICATE_ISSUED, {
            "code": code,
            "level": level,
            "grade": grade,
            "verification_url": verification_url,
        })


class Outbox(NotificationEmitter):
    """Collects notifications during a transaction and releases them after commit.

    Nothing reaches the sink for an operation that rolled back.
    """

    def __init__(self, target: NotificationEmitter) -> None:
        self.target = target
        self.pending: list[tuple[int, NotificationKind, dict[str, Any]]] = []

    def emit(self, user_id: int, kind: NotificationKind, payload: dict[str, Any]) -> None:
        self.pending.append((user_id, kind, payload))

    def flush(self) -> int:
        sent = len(self.pending)
        for user_id, kind, payload in self.pending:
            self.target.emit(user_id, kind, payload)
        self.pending.clear()
        return sent
