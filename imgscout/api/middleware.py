"""Request body size limit middleware for imgscout.

Enforces the request body hard cap before any scan is scheduled:
  - HTTP 413 is returned for bodies exceeding the limit.
  - Two-phase check:
      1. Content-Length fast path: reject immediately on an oversized header value.
      2. Chunked/streaming slow path: accumulate body with a rolling cap; reject
         as soon as the limit is exceeded.

The limit comes from ``app.state.config.server.max_request_body_bytes`` once the
lifespan has loaded config, and from ``MAX_REQUEST_BODY_BYTES`` before that.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from imgscout.constants import MAX_REQUEST_BODY_BYTES
from imgscout.utils.logger import get_logger

logger = get_logger(__name__)

_INVALID_CONTENT_LENGTH_BODY: dict = {
    "error": {
        "message": "Invalid Content-Length header",
        "code": "bad_request",
    }
}


def _payload_too_large(limit: int) -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={
            "error": {
                "message": f"Request body too large. Maximum size: {limit} bytes",
                "code": "payload_too_large",
            }
        },
    )


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware enforcing the request body hard cap.

    Registration (in create_app() in imgscout/main.py):
        application.add_middleware(BodySizeLimitMiddleware)
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        config = getattr(request.app.state, "config", None)
        limit = config.server.max_request_body_bytes if config is not None else MAX_REQUEST_BODY_BYTES

        content_length_header = request.headers.get("content-length")

        # ── Phase 1: Content-Length fast path ─────────────────────────────────
        if content_length_header is not None:
            try:
                declared_size = int(content_length_header)
            except ValueError:
                logger.warning(
                    "Invalid Content-Length header",
                    value=content_length_header,
                    path=request.url.path,
                )
                return JSONResponse(status_code=400, content=_INVALID_CONTENT_LENGTH_BODY)

            if declared_size > limit:
                logger.warning(
                    "Request body too large (Content-Length)",
                    declared_size=declared_size,
                    limit=limit,
                    path=request.url.path,
                )
                return _payload_too_large(limit)

            return await call_next(request)

        # ── Phase 2: Chunked / no Content-Length: rolling cap ───────────────
        body_chunks: list[bytes] = []
        total_size: int = 0

        async for chunk in request.stream():
            total_size += len(chunk)
            if total_size > limit:
                logger.warning(
                    "Request body too large (chunked)",
                    accumulated_size=total_size,
                    limit=limit,
                    path=request.url.path,
                )
                return _payload_too_large(limit)
            body_chunks.append(chunk)

        # Starlette's Request.body() returns request._body when set, so the
        # handler reads the cached bytes instead of the consumed stream.
        request._body = b"".join(body_chunks)  # type: ignore[attr-defined]

        return await call_next(request)
