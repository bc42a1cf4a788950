"""
tests/conftest.py — Shared Test Fixtures
=========================================

Every test gets a fresh in-memory SQLite database built by the same
:func:`create_db_engine` the application uses, plus a service bundle whose
notification sink is a :class:`MagicMock`.
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# The API resolves its signing secret from the environment; give it one.
# ---------------------------------------------------------------------------
os.environ.setdefault("CERTIFICATE_SECRET", "test-secret-for-pytest-only-" + "x" * 40)

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import BigInteger, Engine  # noqa: E402
from sqlalchemy.dialects.postgresql import JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402

from devcoach.config import DevCoachConfig  # noqa: E402
from devcoach.database.engine import create_db_engine  # noqa: E402
from devcoach.database.models import Base  # noqa: E402
from devcoach.database.seed import seed_default_badges  # noqa: E402
from devcoach.engine.events import (  # noqa: E402
    ChecklistItem,
    Difficulty,
    TestCase,
    build_challenge,
)
from devcoach.services.locks import UserLocks  # noqa: E402
from devcoach.services.scoring_service import build_services  # noqa: E402
from devcoach.services.secrets import StaticSecretProvider  # noqa: E402


# ---------------------------------------------------------------------------
# SQLite renders JSONB as TEXT and BigInteger as INTEGER (for autoincrement)
# ---------------------------------------------------------------------------
@compiles(JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


SIGNING_SECRET = "fixture-signing-secret-" + "s" * 32


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite with all DevCoach tables and the badge catalogue."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    seed_default_badges(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def config() -> DevCoachConfig:
    return DevCoachConfig()


@pytest.fixture
def secrets() -> StaticSecretProvider:
    return StaticSecretProvider(SIGNING_SECRET)


@pytest.fixture
def sink() -> MagicMock:
    """Recording notification sink."""
    return MagicMock()


@pytest.fixture
def services(db_engine, config, sink, secrets):
    return build_services(db_engine, config, sink=sink, secrets=secrets, locks=UserLocks())


def make_challenge(
    challenge_id: str = "fizzbuzz",
    *,
    category: str = "algorithms",
    difficulty: Difficulty = Difficulty.EASY,
    base_xp: int = 100,
    tests: int = 2,
    checklist: tuple[ChecklistItem, ...] = (),
    trap_ids: tuple[str, ...] = (),
):
    """A challenge with *tests* equally weighted test cases t1..tN."""
    weight = 1 / tests
    return build_challenge(
        challenge_id,
        challenge_id.replace("-", " ").title(),
        category,
        difficulty,
        base_xp=base_xp,
        test_cases=[TestCase(f"t{i}", weight) for i in range(1, tests + 1)],
        checklist=checklist,
        trap_ids=trap_ids,
    )


def sink_kinds(sink: MagicMock) -> list[str]:
    """Notification kinds delivered to a MagicMock sink, in order."""
    return [c.args[1].value for c in sink.emit.call_args_list]


@pytest.fixture
def challenge_factory():
    return make_challenge


@pytest.fixture
def kinds_of():
    return sink_kinds
