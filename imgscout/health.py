"""Health endpoint for imgscout.

Implements:
  GET /health — 503 before the lifespan marks the service ready, 200 after.

The body reports the worker and session counters so a monitor can see
whether scans are keeping up (``scanning``) and how often a newer request
superseded an older one (``stale_discards``).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request

from imgscout import __version__
from imgscout.scanner.coordinator import SessionRegistry
from imgscout.utils.health import WorkerHealth

router = APIRouter(tags=["health"])


def check_worker_health(registry: Optional[SessionRegistry]) -> WorkerHealth:
    """Snapshot the worker counters (zeros when no registry exists yet)."""
    if registry is None:
        return WorkerHealth(
            active_sessions=0,
            scanning=0,
            avg_latency_ms=0.0,
            p99_latency_ms=0.0,
            stale_discards=0,
        )
    tracker = registry.latency_tracker
    return WorkerHealth(
        active_sessions=len(registry),
        scanning=registry.scanning_count,
        avg_latency_ms=round(tracker.avg_ms, 2),
        p99_latency_ms=round(tracker.p99_ms, 2),
        stale_discards=tracker.stale_discards,
    )


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok",
          "version": "1.0.0",
          "worker": "running",
          "active_sessions": 0,
          "scanning": 0,
          "avg_scan_ms": 0.0,
          "p99_scan_ms": 0.0,
          "stale_discards": 0,
          "max_candidates": 24
        }
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "worker": "initializing",
                "message": "imgscout is starting up...",
            },
        )

    snapshot = check_worker_health(getattr(request.app.state, "sessions", None))
    config = request.app.state.config
    return {
        "status": "ok",
        "version": __version__,
        "worker": "running",
        "active_sessions": snapshot.active_sessions,
        "scanning": snapshot.scanning,
        "avg_scan_ms": snapshot.avg_latency_ms,
        "p99_scan_ms": snapshot.p99_latency_ms,
        "stale_discards": snapshot.stale_discards,
        "max_candidates": config.extractor.max_candidates,
    }
