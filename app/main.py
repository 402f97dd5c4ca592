"""
FastAPI application entry point.

Run with:
    uvicorn app.main:app --reload --port 8000
"""

import uuid
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db import close_client, ping
from app.logging.config import setup_logging, request_id_var, session_id_var
from app.api.dependencies import close_clients
from app.api.routes_chat import router as chat_router
from app.api.routes_query import router as query_router

# --- Initialize logging FIRST ---
setup_logging(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "app.started",
        extra={"action": "app.started", "app_env": settings.app_env},
    )
    yield
    await close_clients()
    await close_client()
    logger.info("app.stopped", extra={"action": "app.stopped"})


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
    """Set up request ID, session context, and request timing."""
    req_id = str(uuid.uuid4())[:8]
    request_id_var.set(req_id)
    session_id_var.set("-")

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


# --- Register route modules ---
app.include_router(chat_router)
app.include_router(query_router)


# --- Health check endpoints ---
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    checks = {
        "config_loaded": True,
        "anthropic_key_set": bool(settings.anthropic_api_key),
        "mail_sender_set": bool(settings.mail_sender),
        "azure_client_id_set": bool(settings.azure_client_id),
        "mongodb_reachable": await ping(),
    }
    all_ok = all(checks.values())
    return {"status": "ready" if all_ok else "not_ready", "checks": checks}
