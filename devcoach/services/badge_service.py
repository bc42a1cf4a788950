"""
devcoach.services.badge_service — Badge Unlocks & Rewards
===========================================================

Builds a :class:`~devcoach.engine.badges.BadgeContext` from stored state,
runs the requirement handlers and records what was unlocked.

For each newly met badge, inside the caller's transaction:

1. insert the ``UserBadge`` row (an existing row is skipped, not an error);
2. post ``xp_reward`` through the ledger with ``source=BADGE`` and
   ``source_id=<badge key>`` unless that reward transaction already exists;
3. queue a ``BADGE_UNLOCK`` notification.

A badge reward can raise the balance enough to satisfy an ``xp`` or
``level`` badge, so evaluation repeats until nothing new unlocks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from devcoach.config import DevCoachConfig
from devcoach.engine.badges import (
    BadgeContext,
    BadgeDefinition,
    BadgeEvaluation,
    badge_progress,
    evaluate_badges,
)
from devcoach.engine.ledger import XPSource, XPTransaction, compute_level
from devcoach.errors import CoachError, ErrorKind, as_result
from devcoach.services.ledger_service import LedgerService
from devcoach.services.locks import UserLocks, get_default_locks
from devcoach.services.notifications import NotificationEmitter, Outbox
from devcoach.services.store import SqlStore, Store, StoreFactory, open_store

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UnlockedBadge:
    badge: BadgeDefinition
    reward: XPTransaction | None = None


def build_context(store: Store, user_id: int) -> BadgeContext:
    """Gather everything the requirement handlers may look at."""
    balance = store.load_latest_balance(user_id)
    return BadgeContext(
        user_id=user_id,
        xp_balance=balance,
        level=compute_level(balance).level,
        current_streak=store.load_streak(user_id).current_streak,
        attempts=tuple(store.load_completed_attempts(user_id)),
        metrics=store.load_user_metrics(user_id),
        certificate_levels=frozenset(c.level.value for c in store.load_certificates(user_id)),
    )


class BadgeService:
    def __init__(
        self,
        engine: Engine,
        config: DevCoachConfig | None = None,
        *,
        ledger: LedgerService | None = None,
        locks: UserLocks | None = None,
        emitter: NotificationEmitter | None = None,
        store_factory: StoreFactory = SqlStore,
    ) -> None:
        self.engine = engine
        self.config = config or DevCoachConfig()
        self.locks = locks if locks is not None else get_default_locks()
        self.emitter = emitter or NotificationEmitter()
        self.store_factory = store_factory
        self.ledger = ledger or LedgerService(
            engine, self.config, locks=self.locks, emitter=self.emitter,
            store_factory=store_factory,
        )

    # ------------------------------------------------------------------
    # In-transaction building blocks
    # ------------------------------------------------------------------
    def evaluate_in(
        self,
        store: Store,
        outbox: NotificationEmitter,
        user_id: int,
        now: datetime | None = None,
    ) -> list[UnlockedBadge]:
        """Unlock every badge the user now satisfies.  Caller holds the lock.

        Raises
        ------
        CoachError(CONFIGURATION)
            A catalogue badge uses a requirement shape with no handler.
        """
        now = now or datetime.now(timezone.utc)
        catalog = store.load_badge_catalog()
        unlocked: list[UnlockedBadge] = []

        while True:
            owned = store.load_unlocked_badges(user_id)
            ctx = build_context(store, user_id)
            new_badges = evaluate_badges(catalog, ctx, owned)
            if not new_badges:
                break
            for badge in new_badges:
                if not store.save_user_badge(user_id, badge.key, now):
                    continue
                unlocked.append(self._grant_in(store, outbox, user_id, badge))

        return unlocked

    def _grant_in(
        self, store: Store, outbox: NotificationEmitter, user_id: int, badge: BadgeDefinition
    ) -> UnlockedBadge:
        reward = self._reward_in(store, outbox, user_id, badge)
        logger.info("Badge unlocked: %s for user %d", badge.key, user_id)
        outbox.badge_unlocked(
            user_id, badge.key, badge.name, badge.rarity.value, badge.xp_reward,
        )
        return UnlockedBadge(badge=badge, reward=reward)

    def _reward_in(
        self, store: Store, outbox: NotificationEmitter, user_id: int, badge: BadgeDefinition
    ) -> XPTransaction | None:
        if badge.xp_reward <= 0:
            return None
        if store.has_transaction(user_id, XPSource.BADGE, badge.key):
            return None
        return self.ledger.post_in(
            store, outbox, user_id, badge.xp_reward, XPSource.BADGE,
            source_id=badge.key, reason=f"Badge unlocked: {badge.name}",
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    @as_result
    def evaluate(self, user_id: int, now: datetime | None = None) -> list[UnlockedBadge]:
        """Failure kinds: ``CONFIGURATION``, ``CONFLICT``, ``UNAVAILABLE``."""
        with self.locks.hold(user_id):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                unlocked = self.evaluate_in(store, outbox, user_id, now)
            outbox.flush()
        return unlocked

    @as_result
    def unlock(self, user_id: int, key: str, now: datetime | None = None) -> UnlockedBadge:
        """Grant *key* regardless of its requirement.

        Failure kinds: ``NOT_FOUND`` (unknown or inactive badge),
        ``CONFLICT`` (already owned), ``UNAVAILABLE``.
        """
        now = now or datetime.now(timezone.utc)
        with self.locks.hold(user_id):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                badge = next((b for b in store.load_badge_catalog() if b.key == key), None)
                if badge is None:
                    raise CoachError(ErrorKind.NOT_FOUND, f"Unknown badge {key!r}", badge=key)
                if not store.save_user_badge(user_id, key, now):
                    raise CoachError(
                        ErrorKind.CONFLICT, f"Badge {key!r} already unlocked",
                        badge=key, user_id=user_id,
                    )
                granted = self._grant_in(store, outbox, user_id, badge)
            outbox.flush()
        return granted

    @as_result
    def resume_rewards(self, user_id: int) -> list[XPTransaction]:
        """Post any badge reward that is missing for an already-unlocked badge."""
        with self.locks.hold(user_id):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                owned = store.load_unlocked_badges(user_id)
                posted = []
                for badge in store.load_badge_catalog():
                    if badge.key not in owned:
                        continue
                    tx = self._reward_in(store, outbox, user_id, badge)
                    if tx is not None:
                        logger.info("Resumed reward for badge %s (user %d)", badge.key, user_id)
                        posted.append(tx)
            outbox.flush()
        return posted

    @as_result
    def progress(self, user_id: int) -> list[BadgeEvaluation]:
        with open_store(self.engine, self.store_factory) as store:
            catalog = store.load_badge_catalog()
            owned = store.load_unlocked_badges(user_id)
            ctx = build_context(store, user_id)
        return badge_progress(catalog, ctx, owned)

    @as_result
    def unlocked(self, user_id: int) -> set[str]:
        with open_store(self.engine, self.store_factory) as store:
            return store.load_unlocked_badges(user_id)
