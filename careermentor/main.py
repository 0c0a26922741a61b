import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load .env before settings are read (tests configure the environment themselves)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from careermentor.core.config import settings, validate_config, cors_origins
from careermentor.core.database import create_all_tables, get_database_url
from careermentor.core.logging import configure_logging
from careermentor.core.middleware.request_id import RequestIdMiddleware
from careermentor.core.validation import validate_env
from careermentor.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from careermentor.api import admin, billing, health
from careermentor.features.credits.gate import CreditGate
from careermentor.features.plans.catalog import load_plan_catalog

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "cache-control",
    "stripe-signature",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("careermentor")
    logger.info("Starting CareerMentor backend...")
    app.state.startup_time = time.time()
    app.state.plan_catalog = load_plan_catalog(settings)
    app.state.credit_gate = CreditGate(app.state.plan_catalog)
    if get_database_url():
        create_all_tables()
    else:
        logger.warning("DATABASE_URL not set; entitlement store unavailable")
    try:
        yield
    finally:
        app.state.credit_gate.close()
        logger.info("Stopping CareerMentor backend...")


app = FastAPI(title="CareerMentor - Entitlements", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Outermost, so preflight is answered before auth or routing
origins = cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=CORS_ALLOW_HEADERS,
    expose_headers=["x-request-id"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
