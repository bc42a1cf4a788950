"""
Alembic environment for the DevCoach schema.

The target URL comes from ``DATABASE_URL`` (via ``.env``) and falls back
to ``sqlalchemy.url`` in ``alembic.ini``.  Online runs go through
:func:`devcoach.database.engine.create_db_engine` so migrations connect
with the same settings as the service.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from dotenv import load_dotenv

from alembic import context
from devcoach.database.engine import create_db_engine
from devcoach.database.models import Base

load_dotenv()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No database URL: set DATABASE_URL or sqlalchemy.url in alembic.ini")
    return url


def _configure(**kwargs) -> None:
    # Column type changes (e.g. Float -> Numeric) are picked up by autogenerate.
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of executing it."""
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_db_engine(_database_url())
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
