"""
devcoach.api.routes.certificates — Certificate issuance & public verification
================================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from devcoach.api.deps import get_services, unwrap
from devcoach.engine.certificates import Certificate, CertificateLevel
from devcoach.services.scoring_service import Services

router = APIRouter(tags=["certificates"])


class CertificateRequest(BaseModel):
    level: CertificateLevel
    theory: float = Field(..., ge=0, le=100)
    practical: float = Field(..., ge=0, le=100)
    portfolio: float = Field(..., ge=0, le=100)
    skills: list[str] = Field(default_factory=list)
    stats: dict = Field(default_factory=dict)


def _owner_view(certificate: Certificate) -> dict:
    return {
        "code": certificate.code,
        "level": certificate.level.value,
        "title": certificate.level.title,
        "final_score": certificate.final_score,
        "grade": certificate.grade,
        "scores": {
            "theory": certificate.theory_score,
            "practical": certificate.practical_score,
            "portfolio": certificate.portfolio_score,
        },
        "averages": {
            "di": certificate.average_di,
            "pr": certificate.average_pr,
            "cs": certificate.average_cs,
        },
        "challenges_completed": certificate.challenges_completed,
        "total_hours": certificate.total_hours,
        "skills": list(certificate.skills),
        "issued_at": certificate.issued_at.isoformat(),
        "expires_at": certificate.expires_at.isoformat(),
        "verification_url": certificate.verification_url,
    }


@router.post("/users/{user_id}/certificates", status_code=status.HTTP_201_CREATED)
def issue_certificate(
    user_id: int, body: CertificateRequest, services: Services = Depends(get_services)
):
    certificate = unwrap(services.certificates.issue(
        user_id,
        body.level,
        body.theory,
        body.practical,
        body.portfolio,
        skills=body.skills,
        stats=body.stats,
    ))
    return _owner_view(certificate)


@router.get("/users/{user_id}/certificates/{level}")
def current_certificate(user_id: int, level: str, services: Services = Depends(get_services)):
    return _owner_view(unwrap(services.certificates.current(user_id, level)))


@router.get("/certificates/verify/{code}")
def verify_certificate(code: str, services: Services = Depends(get_services)):
    """Public verification: anyone holding a code may check it."""
    result = unwrap(services.certificates.verify(code))
    return {"code": result.code, "status": result.status.value, "certificate": result.details}
