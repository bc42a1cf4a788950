"""
devcoach.services.secrets — Certificate Signing Secret
========================================================

The certificate service never reads the environment itself; it is given a
:class:`SecretProvider`.  :class:`EnvSecretProvider` is the production
implementation and validates ``CERTIFICATE_SECRET`` on every read:
missing, blank, a known weak default, or shorter than 32 characters is
refused with ``CoachError(UNAVAILABLE)``.
"""

from __future__ import annotations

import os
from typing import Protocol

from devcoach.errors import CoachError, ErrorKind

_WEAK_SECRETS = frozenset({
    "devcoach-dev-secret-change-me",
    "change-me",
    "changeme",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32


class SecretProvider(Protocol):
    def signing_secret(self) -> str: ...


def validate_secret(secret: str, name: str = "CERTIFICATE_SECRET") -> str:
    """Return *secret* if it is strong enough, otherwise raise UNAVAILABLE."""
    if not secret:
        raise CoachError(
            ErrorKind.UNAVAILABLE,
            f"{name} is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\"",
        )
    if secret in _WEAK_SECRETS:
        raise CoachError(
            ErrorKind.UNAVAILABLE,
            f"{name} is set to a known weak default. Please set a strong, unique secret.",
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise CoachError(
            ErrorKind.UNAVAILABLE,
            f"{name} is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters.",
        )
    return secret


class EnvSecretProvider:
    """Reads the signing secret from an environment variable."""

    def __init__(self, var: str = "CERTIFICATE_SECRET") -> None:
        self.var = var

    def signing_secret(self) -> str:
        return validate_secret(os.getenv(self.var, "").strip(), self.var)


class StaticSecretProvider:
    """Fixed secret, validated once at construction."""

    def __init__(self, secret: str) -> None:
        self._secret = validate_secret(secret, "secret")

    def signing_secret(self) -> str:
        return self._secret
