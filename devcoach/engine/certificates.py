"""
devcoach.engine.certificates — Certificate Scoring & Verification
===================================================================

Weighted final score, grade letter, unguessable code and keyed verification
hash for issued certificates.

The signing secret is always passed in; nothing here reads the
environment.  ``verification_hash`` is HMAC-SHA256 over the code, so a
verifier recomputes it from the presented code and compares in constant
time.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import logging
import secrets
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from devcoach.constants import (
    CODE_ALPHABET,
    FAILING_GRADE,
    GRADE_STEPS,
    MIN_PASSING_SCORE,
    PORTFOLIO_WEIGHT,
    PRACTICAL_WEIGHT,
    THEORY_WEIGHT,
)
from devcoach.errors import CoachError, ErrorKind

logger = logging.getLogger(__name__)

CODE_GROUP_SIZE = 4
CODE_GROUPS = 2


class CertificateLevel(enum.StrEnum):
    FOUNDATION = "FOUNDATION"
    PROFESSIONAL = "PROFESSIONAL"
    EXPERT = "EXPERT"

    @property
    def title(self) -> str:
        return LEVEL_TITLES[self]


LEVEL_TITLES: dict[CertificateLevel, str] = {
    CertificateLevel.FOUNDATION: "Foundation Developer",
    CertificateLevel.PROFESSIONAL: "Professional Developer",
    CertificateLevel.EXPERT: "Expert Architect",
}


class VerificationStatus(enum.StrEnum):
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True, slots=True)
class Certificate:
    """An issued credential.  Immutable; validity is derived from ``expires_at``."""

    code: str
    user_id: int
    level: CertificateLevel
    theory_score: float
    practical_score: float
    portfolio_score: float
    final_score: float
    grade: str
    issued_at: datetime
    expires_at: datetime
    verification_hash: str
    verification_url: str = ""
    skills: tuple[str, ...] = ()
    challenges_completed: int = 0
    total_hours: float = 0.0
    average_di: float = 0.0
    average_pr: float = 0.0
    average_cs: float = 0.0   # 0–10 scale
    stats: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------
def final_score(theory: float, practical: float, portfolio: float) -> float:
    """Weighted final score (theory 30 %, practical 50 %, portfolio 20 %).

    Raises
    ------
    CoachError(VALIDATION)
        Any component outside [0, 100].
    """
    for name, value in (("theory", theory), ("practical", practical), ("portfolio", portfolio)):
        if value != value or not 0.0 <= value <= 100.0:
            raise CoachError(
                ErrorKind.VALIDATION, f"{name} score must be within [0, 100]",
                field=name, value=value,
            )
    score = theory * THEORY_WEIGHT + practical * PRACTICAL_WEIGHT + portfolio * PORTFOLIO_WEIGHT
    return round(score, 2)


def grade_for(score: float) -> str:
    for minimum, grade in GRADE_STEPS:
        if score >= minimum:
            return grade
    return FAILING_GRADE


def is_eligible(score: float) -> bool:
    return score >= MIN_PASSING_SCORE


# ---------------------------------------------------------------------------
# Code & hash
# ---------------------------------------------------------------------------
def generate_code(prefix: str) -> str:
    """Random code such as ``DEVC-7Q2M-K9XA``."""
    groups = [
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_GROUP_SIZE))
        for _ in range(CODE_GROUPS)
    ]
    return "-".join([prefix, *groups])


def verification_hash(code: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Issuance & verification
# ---------------------------------------------------------------------------
def build_certificate(
    user_id: int,
    level: CertificateLevel | str,
    theory: float,
    practical: float,
    portfolio: float,
    *,
    secret: str,
    issued_at: datetime,
    code_prefix: str = "DEVC",
    validity_days: int = 730,
    verification_base_url: str = "",
    skills: Sequence[str] = (),
    challenges_completed: int = 0,
    total_hours: float = 0.0,
    average_di: float = 0.0,
    average_pr: float = 0.0,
    average_cs: float = 0.0,
    stats: dict | None = None,
) -> Certificate:
    """Score and sign a new certificate.

    Raises
    ------
    CoachError(VALIDATION)
        Unknown level, a component outside [0, 100], or a final score below
        the passing mark.
    """
    try:
        level = CertificateLevel(str(level).upper())
    except ValueError:
        raise CoachError(ErrorKind.VALIDATION, f"Unknown certificate level {level!r}") from None

    score = final_score(theory, practical, portfolio)
    if not is_eligible(score):
        raise CoachError(
            ErrorKind.VALIDATION,
            f"Final score {score:.2f} is below the passing mark of {MIN_PASSING_SCORE:g}",
            user_id=user_id,
            final_score=score,
        )

    code = generate_code(code_prefix)
    certificate = Certificate(
        code=code,
        user_id=user_id,
        level=level,
        theory_score=theory,
        practical_score=practical,
        portfolio_score=portfolio,
        final_score=score,
        grade=grade_for(score),
        issued_at=issued_at,
        expires_at=issued_at + timedelta(days=validity_days),
        verification_hash=verification_hash(code, secret),
        verification_url=f"{verification_base_url}/{code}" if verification_base_url else "",
        skills=tuple(skills),
        challenges_completed=challenges_completed,
        total_hours=total_hours,
        average_di=average_di,
        average_pr=average_pr,
        average_cs=average_cs,
        stats=dict(stats or {}),
    )
    logger.debug("Certificate scored: user=%d level=%s score=%.2f", user_id, level, score)
    return certificate


def verify_certificate(
    certificate: Certificate | None, code: str, secret: str, now: datetime
) -> VerificationStatus:
    """Tri-state verification of a presented *code*.

    Not found and hash mismatch are both ``INVALID``; a genuine certificate
    past its ``expires_at`` is ``EXPIRED``.
    """
    if certificate is None:
        return VerificationStatus.INVALID
    if not hmac.compare_digest(verification_hash(code, secret), certificate.verification_hash):
        logger.warning("Certificate verification failed - hash mismatch for %s", code)
        return VerificationStatus.INVALID
    if now >= certificate.expires_at:
        return VerificationStatus.EXPIRED
    return VerificationStatus.VALID


def public_view(certificate: Certificate, status: VerificationStatus) -> dict:
    """The fields a third-party verifier may see."""
    return {
        "code": certificate.code,
        "level": certificate.level.value,
        "title": certificate.level.title,
        "grade": certificate.grade,
        "final_score": certificate.final_score,
        "issued_at": certificate.issued_at.isoformat(),
        "expires_at": certificate.expires_at.isoformat(),
        "skills": list(certificate.skills),
        "status": status.value,
        "verification_url": certificate.verification_url,
    }
