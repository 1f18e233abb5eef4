"""JSON payload builders for the HTTP surface.

Two failure shapes are never confused:
  - ``build_error_response()``  — client/service errors (400/404/413/503).
  - ``build_fetch_failed_response()`` — the remote URL could not be fetched (502).
A body that merely contains no images is NOT an error: it is a 200 with an
empty ``images`` list and a diagnostic ``message``.
"""

from __future__ import annotations

import base64
from typing import Any, Optional

from fastapi.responses import JSONResponse

from imgscout.models.view import RenderedImage, ViewState
from imgscout.scanner.render import encode_png


def image_payload(index: int, rendered: RenderedImage, include_pixels: bool = False) -> dict[str, Any]:
    """Serialize one rendered image (metadata, optionally the PNG re-encoding)."""
    candidate = rendered.candidate
    payload: dict[str, Any] = {
        "index": index,
        "label": rendered.label,
        "details": rendered.details,
        "source": candidate.label,
        "strategy": candidate.strategy,
        "offset": candidate.offset,
        "content_type": candidate.content_type,
        "format": rendered.image_format,
        "width": rendered.width,
        "height": rendered.height,
        "size": candidate.size,
    }
    if include_pixels:
        payload["png_base64"] = base64.b64encode(encode_png(rendered.image)).decode("ascii")
    return payload


def state_payload(
    state: ViewState,
    session_id: Optional[str] = None,
    include_pixels: bool = False,
) -> dict[str, Any]:
    """Serialize a ViewState."""
    payload: dict[str, Any] = {
        "version": state.version,
        "status": state.status.value,
        "message": state.message,
        "error": state.error,
        "images": [
            image_payload(index, rendered, include_pixels)
            for index, rendered in enumerate(state.images)
        ],
    }
    if session_id is not None:
        payload = {"session_id": session_id, **payload}
    return payload


def build_error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "code": code}},
    )


def build_fetch_failed_response(url: str, reason: str = "") -> JSONResponse:
    """HTTP 502 — the remote URL was unreachable or answered with a transport error.

    ``reason`` is a short exception class name; it never carries response content.
    """
    return JSONResponse(
        status_code=502,
        content={
            "error": {
                "message": "Remote fetch failed",
                "code": "fetch_failed",
                "url": url,
                "detail": reason if reason else None,
            }
        },
    )
