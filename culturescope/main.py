"""
FastAPI application entry point.

Run with:
    uvicorn culturescope.main:app --reload --port 8000
"""

import uuid
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from culturescope.config import settings
from culturescope.logging.config import setup_logging, request_id_var
from culturescope.api.dependencies import (
    get_collaborator_factory,
    get_database,
    get_demo_service,
    get_result_store,
)
from culturescope.api.routes_analysis import router as analysis_router
from culturescope.api.routes_system import router as system_router
from culturescope.storage.database import StoreError

# --- Initialize logging FIRST ---
setup_logging(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed the demo result before serving; close clients after."""
    get_database().create_all()
    if settings.seed_demo_data:
        get_demo_service().seed_initial_result(get_result_store())
    logger.info(
        "app.started",
        extra={"action": "app.started", "app_env": settings.app_env},
    )
    yield
    await get_collaborator_factory().aclose()
    get_database().dispose()


# --- Create the FastAPI app ---
app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.app_env == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)


# --- Middleware: Request context + logging ---
@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Set up request ID and request timing."""
    req_id = str(uuid.uuid4())[:8]
    request_id_var.set(req_id)

    start = time.monotonic()
    response = await call_next(request)

    response.headers["X-Request-ID"] = req_id

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "http.request",
        extra={
            "action": "http.request",
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": latency_ms,
        },
    )

    return response


# --- Error handlers ---
@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(
        "http.store_error",
        extra={"action": "http.store_error", "path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Storage operation failed", "details": str(exc)},
    )


# --- Register route modules ---
app.include_router(analysis_router)
app.include_router(system_router)


# --- Health check endpoints ---
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    checks = {
        "config_loaded": True,
        "database_url_set": bool(settings.database_url),
        "encryption_key_set": bool(settings.config_encryption_key),
    }
    all_ok = all(checks.values())
    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
        # Informational: without these, analyses run in demonstration mode
        "anthropic_key_set": bool(settings.anthropic_api_key),
        "azure_client_id_set": bool(settings.azure_client_id),
    }
