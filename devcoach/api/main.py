"""
devcoach.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn devcoach.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from devcoach.api.deps import get_engine, get_services, http_error  # noqa: E402
from devcoach.api.routes.attempts import router as attempts_router  # noqa: E402
from devcoach.api.routes.certificates import router as certificates_router  # noqa: E402
from devcoach.api.routes.users import router as users_router  # noqa: E402
from devcoach.database.engine import init_db  # noqa: E402
from devcoach.errors import CoachError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Comma-separated ``CORS_ALLOW_ORIGINS``; empty means same-origin only."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "")
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables, seed badges and resolve the signing secret.

    A missing or weak ``CERTIFICATE_SECRET`` stops startup here rather than
    failing the first certificate request.
    """
    engine = get_engine()
    init_db(engine)
    services = get_services()
    services.certificates.secrets.signing_secret()
    logger.info("DevCoach API started (database %s)", engine.url.database)
    yield
    logger.info("DevCoach API shutting down")


app = FastAPI(
    title="DevCoach API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for _router in (attempts_router, users_router, certificates_router):
    app.include_router(_router, prefix="/api")


@app.exception_handler(CoachError)
async def coach_error_handler(request: Request, exc: CoachError) -> JSONResponse:
    """Errors raised outside a Result (secret lookup, config) keep their kind."""
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    error = http_error(exc.kind, exc.message)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


@app.get("/api/health")
def health():
    return {"status": "ok"}
