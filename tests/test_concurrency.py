"""
tests/test_concurrency.py — Per-User Locking & Concurrent Posting Tests
========================================================================

Concurrent runs use a file-backed SQLite database so every worker thread
gets its own connection, as it would against PostgreSQL.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from devcoach.database.engine import create_db_engine
from devcoach.database.models import Base
from devcoach.database.seed import seed_default_badges
from devcoach.engine.events import TestResult
from devcoach.engine.ledger import XPSource
from devcoach.errors import ErrorKind
from devcoach.services.locks import UserLocks, get_default_locks
from devcoach.services.scoring_service import build_services

WORKERS = 4


@pytest.fixture
def file_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'devcoach.db'}")
    Base.metadata.create_all(engine)
    seed_default_badges(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_services(file_engine, config, sink, secrets):
    return build_services(file_engine, config, sink=sink, secrets=secrets, locks=UserLocks())


# ===========================================================================
# UserLocks
# ===========================================================================
class TestUserLocks:
    def test_injected_instance_is_used_everywhere(self, db_engine, config, sink, secrets):
        locks = UserLocks()
        services = build_services(db_engine, config, sink=sink, secrets=secrets, locks=locks)
        assert locks is not get_default_locks()
        for service in (services.scoring, services.ledger, services.badges, services.streaks):
            assert service.locks is locks

    def test_entries_released_after_use(self):
        locks = UserLocks()
        with locks.hold(1):
            with locks.hold(1):
                with locks.hold(2):
                    assert len(locks) == 2
            assert len(locks) == 1
        assert len(locks) == 0

    def test_entry_released_when_body_raises(self):
        locks = UserLocks()
        with pytest.raises(RuntimeError):
            with locks.hold(7):
                raise RuntimeError("boom")
        assert len(locks) == 0


# ===========================================================================
# Attempt writes wait for the user's lock
# ===========================================================================
class TestAttemptWritesSerialised:
    @pytest.fixture
    def attempt_id(self, services, challenge_factory):
        services.scoring.register_challenge(challenge_factory()).unwrap()
        return services.scoring.start_attempt(1, "fizzbuzz").unwrap().attempt_id

    @pytest.mark.parametrize("operation", ["record_event", "compute_snapshot"])
    def test_waits_while_user_is_busy(self, services, attempt_id, operation):
        scoring = services.scoring
        calls = {
            "record_event": lambda: scoring.record_event(attempt_id, TestResult("t1", True, 5)),
            "compute_snapshot": lambda: scoring.compute_snapshot(attempt_id, 5),
        }
        results = []
        worker = threading.Thread(target=lambda: results.append(calls[operation]()))

        with scoring.locks.hold(1):
            worker.start()
            worker.join(timeout=0.3)
            assert worker.is_alive()
            assert results == []

        worker.join(timeout=5)
        assert not worker.is_alive()
        assert results[0].ok


# ===========================================================================
# Concurrent ledger posts & completions
# ===========================================================================
class TestConcurrentPosting:
    def test_posts_for_one_user_keep_the_chain(self, file_services):
        ledger = file_services.ledger
        posts = 40
        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            results = list(pool.map(lambda _: ledger.post(1, 5, XPSource.BONUS), range(posts)))

        assert all(r.ok for r in results)
        history = ledger.history(1).unwrap()
        assert [tx.sequence for tx in history] == list(range(1, posts + 1))
        assert ledger.verify(1).unwrap() == 5 * posts
        assert ledger.balance(1).unwrap().balance == 5 * posts

    def test_attempt_completes_once(self, file_services, challenge_factory):
        scoring = file_services.scoring
        scoring.register_challenge(challenge_factory()).unwrap()
        attempt_id = scoring.start_attempt(1, "fizzbuzz").unwrap().attempt_id
        for test_id in ("t1", "t2"):
            scoring.record_event(attempt_id, TestResult(test_id, True, 30)).unwrap()

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            results = list(pool.map(lambda _: scoring.complete_attempt(attempt_id), range(WORKERS)))

        winners = [r.value for r in results if r.ok]
        assert len(winners) == 1
        assert all(r.error.kind is ErrorKind.CONFLICT for r in results if not r.ok)
        assert file_services.ledger.verify(1).unwrap() == winners[0].xp_earned
