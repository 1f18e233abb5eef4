"""imgscout FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /health router — delegated to imgscout/health.py
  - /        route  — service discovery root (inline, not health-critical)
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()           → app.state.config
  2. startup_scan_worker()   → app.state.worker (None if the smoke test fails)
  3. SessionRegistry()       → app.state.sessions (only with a live worker)
  4. create_http_client()    → app.state.http_client
  5. app.state.ready = True  → log "imgscout ready"

Shutdown sequence (reverse):
  app.state.ready = False → close sessions → shutdown worker → close http client

Uvicorn hardened defaults (see imgscout/run.py):
  uvicorn imgscout.main:app \\
    --host 127.0.0.1 \\
    --port 4343 \\
    --limit-concurrency 100 \\
    --backlog 50 \\
    --timeout-keep-alive 5
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from imgscout import __version__
from imgscout.api.inspect import create_http_client
from imgscout.api.inspect import router as inspect_router
from imgscout.api.middleware import BodySizeLimitMiddleware
from imgscout.api.sessions import router as sessions_router
from imgscout.config import Config, load_config
from imgscout.health import router as health_router
from imgscout.scanner.coordinator import SessionRegistry
from imgscout.scanner.pool import shutdown_scan_worker, startup_scan_worker
from imgscout.utils.health import ScanLatencyTracker
from imgscout.utils.logger import clear_session_id, configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Routers ──────────────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True.

    All /v1 routes consume this dependency.
    The /health endpoint handles the 503 case itself (to return a richer body).
    """
    clear_session_id()
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "worker": "initializing",
                "message": "imgscout is starting up...",
            },
        )


# ─── Root Endpoint ────────────────────────────────────────────────────────────


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "imgscout",
        "tagline": "Find the images hiding in HTTP response bodies",
        "version": __version__,
        "health": "/health",
        "inspect": "/v1/inspect",
        "sessions": "/v1/sessions",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence.

    A worker that fails its smoke test leaves ``app.state.sessions`` unset
    and the service not-ready: /health and every /v1 route answer 503.
    """
    logger.info("imgscout starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on parse error or missing version field.
    config: Config = load_config()
    app.state.config = config
    logger.info(
        "Config loaded",
        max_candidates=config.extractor.max_candidates,
        scan_timeout_s=config.worker.scan_timeout_s,
    )

    # ── Step 2: Start the scan worker ─────────────────────────────────────────
    worker = await startup_scan_worker()
    app.state.worker = worker

    # ── Step 3: Session registry on the shared worker ─────────────────────────
    registry: Optional[SessionRegistry] = None
    if worker is not None:
        registry = SessionRegistry(
            worker,
            config.limits(),
            max_sessions=config.worker.max_sessions,
            timeout_s=config.worker.scan_timeout_s,
            slow_scan_ms=config.worker.slow_scan_ms,
            latency_tracker=ScanLatencyTracker(),
        )
    app.state.sessions = registry

    # ── Step 4: Shared HTTP client for /v1/inspect/fetch ──────────────────────
    http_client: httpx.AsyncClient = create_http_client(config.fetch.timeout_s)
    app.state.http_client = http_client
    logger.info("HTTP fetch client created", timeout_s=config.fetch.timeout_s)

    # ── Step 5: Mark as ready ─────────────────────────────────────────────────
    if registry is not None:
        app.state.ready = True
        logger.info("imgscout ready", version=__version__)
    else:
        logger.error("imgscout not ready: scan worker unavailable")

    # ── Server runs here ──────────────────────────────────────────────────────
    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("imgscout shutting down...")
    app.state.ready = False

    if registry is not None:
        await registry.close_all()
    app.state.sessions = None

    await shutdown_scan_worker(worker)

    try:
        await app.state.http_client.aclose()
        logger.info("HTTP fetch client closed")
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP fetch client close error (non-fatal)", error=str(exc))

    logger.info("imgscout shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the imgscout FastAPI application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app()

    The module-level `app` is created at import time for uvicorn:
        uvicorn imgscout.main:app --host 127.0.0.1 --port 4343

    Returns:
        Configured FastAPI application with lifespan, routers, and middleware.
    """
    # API schema and docs are only served with DEBUG=true.
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="imgscout",
        description="Image extraction for HTTP response bodies",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # /health returns 503 for any request that arrives before startup completes.
    application.state.ready = False

    # Enforces server.max_request_body_bytes; 413 before any body is scanned.
    application.add_middleware(BodySizeLimitMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(inspect_router, dependencies=[Depends(require_ready)])
    application.include_router(sessions_router, dependencies=[Depends(require_ready)])

    # Global exception handlers
    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
