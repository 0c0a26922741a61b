"""
Health endpoints for the CareerMentor backend.

Lightweight liveness and readiness checks; no secrets are exposed.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from careermentor.core.database import check_connection, get_engine

logger = logging.getLogger("careermentor")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "user_profiles",
    "billing_events",
    "audit_logs",
]


def _unready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return _unready("database unreachable")

    try:
        inspector = inspect(get_engine())
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    except SQLAlchemyError as e:
        logger.error(f"[readyz] schema inspection failed: {e}")
        return _unready("database unreachable")

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return _unready(detail)

    return {"status": "ok"}
