"""
devcoach.errors — Error Kinds & Result Values
===============================================

Every failure the core can report is one of a closed set of
:class:`ErrorKind` values.  Engine code raises :class:`CoachError` at the
point of detection; public service operations are wrapped with
:func:`as_result` and hand back a :class:`Result` instead of raising.

Kinds and the situations that produce them:

* ``VALIDATION`` — malformed or out-of-range input (weights not summing to
  1.0, a score outside [0, 100], an ineligible certificate).
* ``CONFLICT`` — explicit duplicate unlock, out-of-order streak activity,
  stale snapshot, mutation of a finished attempt, lost ledger race.
* ``NOT_FOUND`` — unknown attempt, challenge, badge or certificate.
* ``CONFIGURATION`` — a badge requirement shape with no registered handler.
* ``INSUFFICIENT_BALANCE`` — an XP debit that would make the balance negative.
* ``UNAVAILABLE`` — store or secret provider could not be reached.

:class:`InvariantViolation` is *not* a kind: it signals a state that must be
impossible and is allowed to abort the operation loudly.
"""

from __future__ import annotations

import enum
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, ParamSpec, TypeVar

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class ErrorKind(enum.StrEnum):
    """Semantic failure categories surfaced to callers."""
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    CONFIGURATION = "configuration"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    UNAVAILABLE = "unavailable"


class CoachError(Exception):
    """A failure with a known :class:`ErrorKind`."""

    def __init__(self, kind: ErrorKind, message: str, **details: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"<CoachError kind={self.kind.value} message={self.message!r}>"


class InvariantViolation(RuntimeError):
    """An internal consistency rule was broken (e.g. a corrupt ledger chain)."""


# ---------------------------------------------------------------------------
# Result: tagged success/failure value
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Outcome of a public operation: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **details: Any) -> Result[T]:
        return cls(error=Failure(kind=kind, message=message, details=details))

    def unwrap(self) -> T:
        """Return the value or re-raise the failure as a :class:`CoachError`."""
        if self.error is not None:
            raise CoachError(self.error.kind, self.error.message, **self.error.details)
        return self.value  # type: ignore[return-value]


def as_result(func: Callable[P, T]) -> Callable[P, Result[T]]:
    """Wrap *func* so known failures come back as :class:`Result` values.

    Store errors are mapped here: connection-level SQLAlchemy errors become
    ``UNAVAILABLE`` and unique-constraint violations become ``CONFLICT``.
    :class:`InvariantViolation` and any other exception propagate.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
        try:
            return Result.success(func(*args, **kwargs))
        except CoachError as exc:
            logger.info("%s failed: %s (%s)", func.__qualname__, exc.message, exc.kind.value)
            return Result.fail(exc.kind, exc.message, **exc.details)
        except IntegrityError as exc:
            logger.warning("%s hit a uniqueness conflict: %s", func.__qualname__, exc.orig)
            return Result.fail(ErrorKind.CONFLICT, "Concurrent modification detected")
        except (OperationalError, InterfaceError):
            logger.error("%s: store unavailable", func.__qualname__, exc_info=True)
            return Result.fail(ErrorKind.UNAVAILABLE, "Store unavailable")

    return wrapper
