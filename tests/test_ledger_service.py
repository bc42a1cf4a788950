"""
tests/test_ledger_service.py — XP Posting, Policies & Race Retry Tests
=======================================================================
"""

from __future__ import annotations

import dataclasses

from sqlalchemy.exc import IntegrityError

from devcoach.engine.ledger import XPSource
from devcoach.errors import ErrorKind
from devcoach.services.ledger_service import LedgerService
from devcoach.services.locks import UserLocks
from devcoach.services.notifications import NotificationEmitter
from devcoach.services.store import SqlStore


class FlakyStore(SqlStore):
    """Loses the sequence race a fixed number of times before appending."""

    failures = 1

    def append_xp_transaction(self, tx):
        if FlakyStore.failures > 0:
            FlakyStore.failures -= 1
            raise IntegrityError("INSERT INTO xp_transactions", {}, Exception("duplicate sequence"))
        return super().append_xp_transaction(tx)


def _flaky_ledger(db_engine, config, failures: int) -> LedgerService:
    FlakyStore.failures = failures
    return LedgerService(
        db_engine, config, locks=UserLocks(), emitter=NotificationEmitter(),
        store_factory=FlakyStore,
    )


class TestPosting:
    def test_sequence_and_chain(self, services):
        services.ledger.post(1, 50, XPSource.BONUS).unwrap()
        services.ledger.post(1, -20, XPSource.PENALTY, reason="late").unwrap()
        history = services.ledger.history(1).unwrap()
        assert [tx.sequence for tx in history] == [1, 2]
        assert history[1].balance_before == history[0].balance_after
        assert services.ledger.verify(1).unwrap() == 30

    def test_users_are_independent(self, services):
        services.ledger.post(1, 50, XPSource.BONUS).unwrap()
        services.ledger.post(2, 5, XPSource.BONUS).unwrap()
        assert services.ledger.balance(1).unwrap().balance == 50
        assert services.ledger.history(2).unwrap()[0].sequence == 1

    def test_zero_amount(self, services):
        assert services.ledger.post(1, 0, XPSource.BONUS).error.kind is ErrorKind.VALIDATION

    def test_overdraft_rejected(self, services):
        services.ledger.post(1, 10, XPSource.BONUS).unwrap()
        result = services.ledger.post(1, -25, XPSource.PENALTY)
        assert result.error.kind is ErrorKind.INSUFFICIENT_BALANCE
        assert services.ledger.balance(1).unwrap().transactions == 1

    def test_overdraft_clamped(self, db_engine, config):
        ledger = LedgerService(
            db_engine, dataclasses.replace(config, xp_negative_policy="clamp"), locks=UserLocks(),
        )
        ledger.post(1, 10, XPSource.BONUS).unwrap()
        tx = ledger.post(1, -25, XPSource.PENALTY).unwrap()
        assert tx.amount == -10
        assert ledger.balance(1).unwrap().balance == 0

    def test_level_up_notified(self, services, sink, kinds_of):
        services.ledger.post(1, 99, XPSource.BONUS).unwrap()
        assert kinds_of(sink) == []
        services.ledger.post(1, 1, XPSource.BONUS).unwrap()
        assert kinds_of(sink) == ["LEVEL_UP"]
        assert services.ledger.balance(1).unwrap().level.title == "Apprentice"


class TestRaceRetry:
    def test_lost_race_is_retried(self, db_engine, config):
        ledger = _flaky_ledger(db_engine, config, failures=1)
        tx = ledger.post(1, 40, XPSource.BONUS).unwrap()
        assert tx.sequence == 1
        assert ledger.balance(1).unwrap().balance == 40

    def test_retries_exhausted(self, db_engine, config):
        ledger = _flaky_ledger(db_engine, config, failures=config.ledger_max_retries)
        result = ledger.post(1, 40, XPSource.BONUS)
        assert result.error.kind is ErrorKind.CONFLICT
        assert ledger.balance(1).unwrap().transactions == 0
