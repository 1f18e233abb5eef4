"""One-shot endpoints: probe, inspect, fetch.

  POST /v1/probe          — cheap "deserves an image view" predicate
  POST /v1/inspect        — full scan of a submitted body; waits for the result
  POST /v1/inspect/fetch  — fetch a URL with httpx, then inspect its raw body

Every scan goes through a throwaway ScanSession on the shared worker, so
decompression, pattern scanning and decoding never run on the event loop.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlsplit

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from imgscout.api.headers import FETCH_ACCEPT_ENCODING, declared_headers, response_headers
from imgscout.constants import DEFAULT_FETCH_TIMEOUT_S
from imgscout.models.responses import (
    build_error_response,
    build_fetch_failed_response,
    state_payload,
)
from imgscout.scanner.coordinator import SessionRegistry
from imgscout.scanner.extractor import is_enabled_for
from imgscout.scanner.pool import get_session_registry
from imgscout.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["inspect"])

_ALLOWED_FETCH_SCHEMES: frozenset[str] = frozenset({"http", "https"})

# Shared client pool sizing; matches uvicorn limit_concurrency in imgscout.run.
POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0


def create_http_client(timeout_s: float = DEFAULT_FETCH_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used by ``/v1/inspect/fetch``.

    Created once at lifespan startup and stored in app.state.http_client.
    Redirects are followed so the inspected body is the final one.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=True,
    )


class FetchRequest(BaseModel):
    url: str
    include_pixels: bool = False


async def _inspect(
    registry: SessionRegistry,
    body: bytes,
    content_type: Optional[str],
    content_encoding: Optional[str],
    include_pixels: bool,
) -> dict[str, Any]:
    session = registry.new_session()
    try:
        session.submit(body if body else None, content_type, content_encoding)
        state = await session.wait()
    finally:
        await session.close()
    if include_pixels:
        # PNG re-encoding is CPU-bound; runs off the event loop.
        return await run_in_threadpool(state_payload, state, None, True)
    return state_payload(state)


@router.post("/probe")
async def probe(request: Request) -> dict[str, Any]:
    """Return ``{"enabled": bool}`` for the submitted body and declared headers."""
    body = await request.body()
    content_type, content_encoding = declared_headers(request.headers)
    limits = request.app.state.config.limits()
    enabled = await run_in_threadpool(is_enabled_for, body, content_type, content_encoding, limits)
    return {"enabled": enabled}


@router.post("/inspect")
async def inspect_body(
    request: Request,
    include_pixels: bool = False,
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict[str, Any]:
    """Scan the request body as an HTTP response body and return its images."""
    body = await request.body()
    content_type, content_encoding = declared_headers(request.headers)
    return await _inspect(registry, body, content_type, content_encoding, include_pixels)


@router.post("/inspect/fetch", response_model=None)
async def inspect_url(
    fetch: FetchRequest,
    request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Any:
    """Fetch ``url`` and inspect its raw (still content-encoded) body."""
    parts = urlsplit(fetch.url)
    if parts.scheme.lower() not in _ALLOWED_FETCH_SCHEMES or not parts.netloc:
        return build_error_response(400, "Only absolute http(s) URLs can be fetched", "invalid_url")

    config = request.app.state.config
    client: httpx.AsyncClient = request.app.state.http_client
    limit = config.fetch.max_body_bytes

    try:
        async with client.stream(
            "GET",
            fetch.url,
            headers={"Accept-Encoding": FETCH_ACCEPT_ENCODING},
        ) as response:
            chunks: list[bytes] = []
            total = 0
            async for chunk in response.aiter_raw():
                total += len(chunk)
                if total > limit:
                    logger.warning("Fetched body too large", url=fetch.url, limit=limit)
                    return build_error_response(
                        413,
                        f"Fetched body exceeds {limit} bytes",
                        "payload_too_large",
                    )
                chunks.append(chunk)
            content_type, content_encoding = response_headers(response.headers)
            status_code = response.status_code
    except httpx.HTTPError as exc:
        logger.warning("Fetch failed", url=fetch.url, error_type=type(exc).__name__)
        return build_fetch_failed_response(fetch.url, type(exc).__name__)

    logger.info(
        "Fetched remote body",
        url=fetch.url,
        status_code=status_code,
        body_bytes=total,
        content_type=content_type,
        content_encoding=content_encoding,
    )
    payload = await _inspect(
        registry,
        b"".join(chunks),
        content_type,
        content_encoding,
        fetch.include_pixels,
    )
    payload["fetch"] = {
        "url": fetch.url,
        "status_code": status_code,
        "content_type": content_type,
        "content_encoding": content_encoding,
        "body_bytes": total,
    }
    return JSONResponse(content=payload)
