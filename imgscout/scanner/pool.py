"""Scan worker management.

Provides:
  - startup_scan_worker():  creates the single-thread worker and smoke-tests it.
  - shutdown_scan_worker(): graceful worker shutdown.
  - get_session_registry(): FastAPI dependency — returns the live registry or HTTP 503.

Non-negotiables:
  - Exactly one worker thread (max_workers=1): scans run strictly one at a time.
  - The smoke test runs the real pipeline on a known PNG signature so a broken
    codec stack is caught at startup, not on the first user request.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from fastapi import HTTPException, Request

from imgscout.scanner.coordinator import ScanRequest, SessionRegistry, create_worker, run_pipeline
from imgscout.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)

# Generous timeout for the smoke test; the first Pillow import is slow on a cold start.
_SMOKE_TEST_TIMEOUT_S: float = 30.0

# Minimal body that exercises decompression (identity), sniffing and extraction.
_SMOKE_TEST_BODY: bytes = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


async def _run_smoke_test(worker: ThreadPoolExecutor) -> None:
    """Run one scan through the worker to verify it is alive.

    Raises:
        Any exception from the pipeline (timeout, import failure, ...) — caller handles it.
    """
    loop = asyncio.get_running_loop()
    with PerformanceLogger("Scan worker smoke test", logger, slow_ms=1000.0):
        await asyncio.wait_for(
            loop.run_in_executor(
                worker,
                run_pipeline,
                ScanRequest(_SMOKE_TEST_BODY, "application/octet-stream"),
            ),
            timeout=_SMOKE_TEST_TIMEOUT_S,
        )


async def startup_scan_worker() -> Optional[ThreadPoolExecutor]:
    """Create the scan worker and smoke-test it.

    Never raises — returns None when the worker cannot be created or fails
    its smoke test; the lifespan then leaves the service not-ready.
    """
    logger.info("Creating scan worker (max_workers=1)")
    try:
        worker = create_worker()
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "Failed to create scan worker",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return None

    try:
        await _run_smoke_test(worker)
        logger.info("Scan worker smoke test passed")
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "Scan worker smoke test failed — worker unavailable",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        worker.shutdown(wait=False, cancel_futures=True)
        return None

    return worker


async def shutdown_scan_worker(worker: Optional[ThreadPoolExecutor]) -> None:
    """Graceful worker shutdown; queued scans are cancelled, the running one may finish."""
    if worker is None:
        logger.debug("Scan worker shutdown: no worker to shut down")
        return
    logger.info("Shutting down scan worker...")
    worker.shutdown(wait=False, cancel_futures=True)
    logger.info("Scan worker shutdown complete")


# ── FastAPI Dependency ────────────────────────────────────────────────────────


async def get_session_registry(request: Request) -> SessionRegistry:
    """FastAPI dependency — returns the session registry or raises HTTP 503."""
    registry: Optional[SessionRegistry] = getattr(request.app.state, "sessions", None)
    if registry is None:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "worker": "initializing",
                "message": "Scan worker not ready",
            },
        )
    return registry
