"""Entry point for the FastAPI application.

This module constructs the FastAPI app, registers exception handlers and
routers and initialises Sentry and the database on startup. Run with:

    uvicorn expensor.api.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from expensor.api.error_handlers import (
    expensor_error_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from expensor.api.routes.billing import router as billing_router
from expensor.api.routes.categories import router as categories_router
from expensor.api.routes.dashboard import router as dashboard_router
from expensor.api.routes.receipts import router as receipts_router
from expensor.api.routes.stripe_webhooks import router as stripe_webhooks_router
from expensor.api.routes.users import router as users_router
from expensor.core.config import settings
from expensor.core.database import get_db_debug_info, init_db
from expensor.core.errors import ExpensorError
from expensor.core.observability import init_sentry, sentry_set_tags

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):  # type: ignore
    sentry_set_tags({"path": request.url.path, "method": request.method})
    return await call_next(request)


# Development allows any origin; elsewhere only the configured list.
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(dict.fromkeys(settings.BACKEND_CORS_ORIGINS or []))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=not env_is_dev,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register custom exception handlers
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ExpensorError, expensor_error_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include routers
app.include_router(receipts_router)
app.include_router(categories_router)
app.include_router(users_router)
app.include_router(billing_router)
app.include_router(stripe_webhooks_router)
app.include_router(dashboard_router)


@app.get("/")
async def root():
    return {"message": f"Welcome to the {settings.PROJECT_NAME} API"}


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD)."""
    return {"status": "healthy"}


@app.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (development only)."""
    if not env_is_dev:
        return {"ok": False, "message": "disabled in non-development env"}
    return get_db_debug_info()
