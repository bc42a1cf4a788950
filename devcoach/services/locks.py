"""
devcoach.services.locks — Per-User Mutual Exclusion
=====================================================

A user's XP balance and streak are shared mutable state: two browser tabs
can complete attempts at the same moment.  :class:`UserLocks` serialises
the read-then-append sequences for one user inside this process while
leaving different users fully independent.

Across processes the ledger additionally relies on the
``(user_id, sequence)`` unique constraint plus retry in
:mod:`devcoach.services.ledger_service`.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock, RLock


class UserLocks:
    """Re-entrant lock per user id, alive only while someone holds or waits on it.

    Thread-safe.  Re-entrant so that an operation holding a user's lock
    (attempt completion) can call another that takes it again (ledger post).
    Each entry counts its holders and waiters; the last one out removes it,
    so the table stays as small as the number of users currently busy.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[int, tuple[RLock, int]] = {}

    def _acquire_entry(self, user_id: int) -> RLock:
        with self._guard:
            lock, users = self._locks.get(user_id, (None, 0))
            if lock is None:
                lock = RLock()
            self._locks[user_id] = (lock, users + 1)
            return lock

    def _release_entry(self, user_id: int) -> None:
        with self._guard:
            lock, users = self._locks[user_id]
            if users <= 1:
                del self._locks[user_id]
            else:
                self._locks[user_id] = (lock, users - 1)

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        lock = self._acquire_entry(user_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(user_id)

    def __len__(self) -> int:
        """Number of users with a live lock entry."""
        with self._guard:
            return len(self._locks)


# Module-level default instance (tests can inject their own)
_default_locks = UserLocks()


def get_default_locks() -> UserLocks:
    """Return the process-wide :class:`UserLocks` used in production."""
    return _default_locks
