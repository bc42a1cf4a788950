"""
devcoach.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import TypeVar

from fastapi import HTTPException, status
from sqlalchemy import Engine

from devcoach.config import DevCoachConfig, load_config
from devcoach.database.engine import create_db_engine
from devcoach.errors import ErrorKind, Result
from devcoach.services.notifications import LoggingSink
from devcoach.services.scoring_service import Services, build_services
from devcoach.services.secrets import EnvSecretProvider

T = TypeVar("T")

# The core never picks HTTP codes; this table is the transport's decision.
ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_BALANCE: status.HTTP_409_CONFLICT,
    ErrorKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> DevCoachConfig:
    return load_config(os.getenv("DEVCOACH_CONFIG", "config.yaml"))


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(
        get_engine(),
        get_config(),
        sink=LoggingSink(),
        secrets=EnvSecretProvider(),
    )


def http_error(kind: ErrorKind, message: str) -> HTTPException:
    return HTTPException(
        ERROR_STATUS.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        {"kind": kind.value, "message": message},
    )


def unwrap(result: Result[T]) -> T:
    """Return the value of *result* or raise the matching HTTP error."""
    if result.error is None:
        return result.value  # type: ignore[return-value]
    raise http_error(result.error.kind, result.error.message)
