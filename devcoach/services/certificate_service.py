"""
devcoach.services.certificate_service — Certificate Issuance & Verification
=============================================================================

Issuance scores the three components, signs the code with the secret from
the injected :class:`~devcoach.services.secrets.SecretProvider` and stores
a new row; earlier certificates are kept.  Verification never reveals more
than :func:`~devcoach.engine.certificates.public_view`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from devcoach.config import DevCoachConfig
from devcoach.engine import certificates
from devcoach.engine.certificates import Certificate, CertificateLevel, VerificationStatus
from devcoach.engine.metrics import cs_to_ten_scale
from devcoach.errors import CoachError, ErrorKind, as_result
from devcoach.services.notifications import NotificationEmitter, Outbox
from devcoach.services.secrets import SecretProvider
from devcoach.services.store import SqlStore, StoreFactory, open_store

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Retries for the (astronomically unlikely) case of a duplicate code.
_CODE_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class VerificationResult:
    code: str
    status: VerificationStatus
    details: dict | None = None

    @property
    def valid(self) -> bool:
        return self.status is VerificationStatus.VALID


class CertificateService:
    def __init__(
        self,
        engine: Engine,
        secrets: SecretProvider,
        config: DevCoachConfig | None = None,
        *,
        emitter: NotificationEmitter | None = None,
        store_factory: StoreFactory = SqlStore,
    ) -> None:
        self.engine = engine
        self.secrets = secrets
        self.config = config or DevCoachConfig()
        self.emitter = emitter or NotificationEmitter()
        self.store_factory = store_factory

    @as_result
    def issue(
        self,
        user_id: int,
        level: CertificateLevel | str,
        theory: float,
        practical: float,
        portfolio: float,
        skills: Sequence[str] = (),
        stats: dict | None = None,
        now: datetime | None = None,
    ) -> Certificate:
        """Issue a certificate for *user_id* at *level*.

        The user's metric averages and passed-challenge count are copied
        onto the certificate; CS is stored on the 0–10 display scale.

        Failure kinds: ``VALIDATION`` (unknown level, component outside
        [0, 100], final score below the passing mark), ``UNAVAILABLE``
        (store or signing secret).
        """
        secret = self.secrets.signing_secret()
        now = now or datetime.now(timezone.utc)
        stats = dict(stats or {})
        outbox = Outbox(self.emitter)

        with open_store(self.engine, self.store_factory) as store:
            metrics = store.load_user_metrics(user_id)
            passed = sum(1 for a in store.load_completed_attempts(user_id) if a.passed)

            for attempt in range(1, _CODE_ATTEMPTS + 1):
                certificate = certificates.build_certificate(
                    user_id,
                    level,
                    theory,
                    practical,
                    portfolio,
                    secret=secret,
                    issued_at=now,
                    code_prefix=self.config.certificate_code_prefix,
                    validity_days=self.config.certificate_validity_days,
                    verification_base_url=self.config.verification_base_url,
                    skills=skills,
                    challenges_completed=passed,
                    total_hours=float(stats.get("total_hours", 0.0)),
                    average_di=metrics.average_di if metrics else 0.0,
                    average_pr=metrics.average_pr if metrics else 0.0,
                    average_cs=cs_to_ten_scale(metrics.average_cs) if metrics else 0.0,
                    stats=stats,
                )
                try:
                    store.save_certificate(certificate)
                except IntegrityError:
                    logger.warning("Certificate code collision (try %d/%d)", attempt, _CODE_ATTEMPTS)
                    continue
                break
            else:
                raise CoachError(ErrorKind.CONFLICT, "Could not allocate a unique certificate code")

            outbox.certificate_issued(
                user_id,
                certificate.code,
                certificate.level.value,
                certificate.grade,
                certificate.verification_url,
            )

        outbox.flush()
        logger.info(
            "Certificate %s issued to user %d (%s, grade %s)",
            certificate.code, user_id, certificate.level.value, certificate.grade,
        )
        return certificate

    @as_result
    def verify(self, code: str, now: datetime | None = None) -> VerificationResult:
        """Failure kinds: ``UNAVAILABLE``.  Unknown codes are ``INVALID``, not a failure."""
        secret = self.secrets.signing_secret()
        now = now or datetime.now(timezone.utc)
        code = code.strip()
        with open_store(self.engine, self.store_factory) as store:
            certificate = store.find_certificate_by_code(code)

        status = certificates.verify_certificate(certificate, code, secret, now)
        logger.info("Certificate %s verified: %s", code, status.value)
        if certificate is None or status is VerificationStatus.INVALID:
            return VerificationResult(code=code, status=status)
        return VerificationResult(
            code=code, status=status, details=certificates.public_view(certificate, status),
        )

    @as_result
    def current(self, user_id: int, level: CertificateLevel | str) -> Certificate:
        """Latest certificate issued to *user_id* at *level*.

        Failure kinds: ``VALIDATION`` (unknown level), ``NOT_FOUND``,
        ``UNAVAILABLE``.
        """
        try:
            level = CertificateLevel(str(level).upper())
        except ValueError:
            raise CoachError(ErrorKind.VALIDATION, f"Unknown certificate level {level!r}") from None
        with open_store(self.engine, self.store_factory) as store:
            issued = store.load_certificates(user_id, level)
        if not issued:
            raise CoachError(
                ErrorKind.NOT_FOUND, "No certificate issued", user_id=user_id, level=level.value,
            )
        return issued[0]
