"""
devcoach.services.ledger_service — XP Posting & Balance Queries
=================================================================

Every XP change goes through :meth:`LedgerService.post_in`, which reads the
latest balance, builds the next transaction and appends it.  That
read-then-append is serialised per user in-process by
:class:`~devcoach.services.locks.UserLocks`; across processes a lost race
shows up as an ``IntegrityError`` on ``(user_id, sequence)`` (or a stale
``balance_before``) and the post is retried from a fresh read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from devcoach.config import DevCoachConfig
from devcoach.engine.ledger import (
    LevelInfo,
    XPSource,
    XPTransaction,
    build_transaction,
    compute_level,
    replay_ledger,
)
from devcoach.errors import CoachError, ErrorKind, as_result
from devcoach.services.locks import UserLocks, get_default_locks
from devcoach.services.notifications import NotificationEmitter, Outbox
from devcoach.services.store import SqlStore, Store, StoreFactory, open_store

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BalanceInfo:
    user_id: int
    balance: int
    level: LevelInfo
    transactions: int = 0


class LedgerService:
    def __init__(
        self,
        engine: Engine,
        config: DevCoachConfig | None = None,
        *,
        locks: UserLocks | None = None,
        emitter: NotificationEmitter | None = None,
        store_factory: StoreFactory = SqlStore,
    ) -> None:
        self.engine = engine
        self.config = config or DevCoachConfig()
        self.locks = locks if locks is not None else get_default_locks()
        self.emitter = emitter or NotificationEmitter()
        self.store_factory = store_factory

    # ------------------------------------------------------------------
    # In-transaction building block
    # ------------------------------------------------------------------
    def post_in(
        self,
        store: Store,
        outbox: NotificationEmitter,
        user_id: int,
        amount: int,
        source: XPSource | str,
        *,
        source_id: str | None = None,
        reason: str = "",
    ) -> XPTransaction:
        """Append one transaction inside the caller's transaction.

        The caller must hold the user's lock.  Level-ups are queued on
        *outbox*.

        Raises
        ------
        CoachError(VALIDATION | INSUFFICIENT_BALANCE | CONFLICT)
        """
        attempts = max(1, self.config.ledger_max_retries)
        for attempt in range(1, attempts + 1):
            balance_before = store.load_latest_balance(user_id)
            tx = build_transaction(
                user_id,
                balance_before,
                amount,
                source,
                source_id=source_id,
                reason=reason,
                policy=self.config.xp_negative_policy,
            )
            try:
                stored = store.append_xp_transaction(tx)
            except IntegrityError:
                logger.warning(
                    "Ledger sequence race for user %d (try %d/%d)", user_id, attempt, attempts,
                )
                continue
            except CoachError as exc:
                if exc.kind is not ErrorKind.CONFLICT:
                    raise
                logger.warning(
                    "Stale balance for user %d (try %d/%d)", user_id, attempt, attempts,
                )
                continue
            break
        else:
            raise CoachError(
                ErrorKind.CONFLICT,
                f"Could not post XP after {attempts} attempts",
                user_id=user_id,
            )

        old_level = compute_level(stored.balance_before)
        new_level = compute_level(stored.balance_after)
        logger.info(
            "XP %+d for user %d (%s%s): %d → %d",
            stored.amount, user_id, stored.source.value,
            f":{stored.source_id}" if stored.source_id else "",
            stored.balance_before, stored.balance_after,
        )
        if new_level.level > old_level.level:
            logger.info("User %d levelled up: %d → %d", user_id, old_level.level, new_level.level)
            outbox.level_up(user_id, old_level.level, new_level.level, new_level.title)
        return stored

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    @as_result
    def post(
        self,
        user_id: int,
        amount: int,
        source: XPSource | str,
        source_id: str | None = None,
        reason: str = "",
    ) -> XPTransaction:
        """Post a signed XP amount for *user_id*.

        Failure kinds: ``VALIDATION`` (zero amount, unknown source),
        ``INSUFFICIENT_BALANCE`` (reject policy), ``CONFLICT`` (retries
        exhausted), ``UNAVAILABLE``.
        """
        with self.locks.hold(user_id):
            outbox = Outbox(self.emitter)
            with open_store(self.engine, self.store_factory) as store:
                tx = self.post_in(
                    store, outbox, user_id, amount, source, source_id=source_id, reason=reason,
                )
            outbox.flush()
        return tx

    @as_result
    def balance(self, user_id: int) -> BalanceInfo:
        """Current balance and derived level.  Failure kinds: ``UNAVAILABLE``."""
        with open_store(self.engine, self.store_factory) as store:
            transactions = store.load_transactions(user_id)
        balance = transactions[-1].balance_after if transactions else 0
        return BalanceInfo(
            user_id=user_id,
            balance=balance,
            level=compute_level(balance),
            transactions=len(transactions),
        )

    @as_result
    def history(self, user_id: int) -> list[XPTransaction]:
        with open_store(self.engine, self.store_factory) as store:
            return store.load_transactions(user_id)

    @as_result
    def verify(self, user_id: int) -> int:
        """Replay the user's ledger from zero.

        A broken chain raises :class:`~devcoach.errors.InvariantViolation`
        instead of returning a failure.
        """
        with open_store(self.engine, self.store_factory) as store:
            transactions = store.load_transactions(user_id)
        return replay_ledger(transactions)
