"""Viewer session endpoints.

  POST   /v1/sessions                     — open a session
  POST   /v1/sessions/{id}/scan           — submit a body; supersedes any scan in flight
  GET    /v1/sessions/{id}                — visible state (``?wait=true`` blocks until idle)
  GET    /v1/sessions/{id}/images/{index} — pixel source of one image, as PNG
  DELETE /v1/sessions/{id}                — close the session

A session shows exactly one scan's result at a time: the latest submitted.
Results of superseded scans are dropped by the session's version check.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from imgscout.api.headers import declared_headers
from imgscout.models.responses import state_payload
from imgscout.scanner.coordinator import ScanSession, SessionRegistry
from imgscout.scanner.pool import get_session_registry
from imgscout.scanner.render import encode_png
from imgscout.utils.logger import set_session_id

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


def _require_session(registry: SessionRegistry, session_id: str) -> ScanSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail={"message": f"Unknown session: {session_id}", "code": "session_not_found"},
        )
    set_session_id(session_id)
    return session


@router.post("", status_code=201)
async def create_session(
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict[str, Any]:
    session = await registry.create()
    return state_payload(session.state, session.session_id)


@router.post("/{session_id}/scan", status_code=202)
async def submit_scan(
    session_id: str,
    request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict[str, Any]:
    """Submit the request body for scanning.

    An empty body clears the session ("No response to render.") without scanning.
    The session is looked up once the body is in, so a session closed while
    the upload was arriving answers 404.
    """
    body = await request.body()
    session = _require_session(registry, session_id)
    content_type, content_encoding = declared_headers(request.headers)
    version = session.submit(body if body else None, content_type, content_encoding)
    return {
        "session_id": session.session_id,
        "version": version,
        "status": session.state.status.value,
    }


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    wait: bool = False,
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict[str, Any]:
    session = _require_session(registry, session_id)
    state = await session.wait() if wait else session.state
    return state_payload(state, session.session_id)


@router.get("/{session_id}/images/{index}")
async def get_image(
    session_id: str,
    index: int,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    session = _require_session(registry, session_id)
    state = session.state
    images = state.images
    if index < 0 or index >= len(images):
        raise HTTPException(
            status_code=404,
            detail={"message": f"No image at index {index}", "code": "image_not_found"},
        )
    png = await run_in_threadpool(encode_png, images[index].image)
    return Response(
        content=png,
        media_type="image/png",
        headers={"X-Image-Label": images[index].label, "X-Scan-Version": str(state.version)},
    )


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    if not await registry.close(session_id):
        raise HTTPException(
            status_code=404,
            detail={"message": f"Unknown session: {session_id}", "code": "session_not_found"},
        )
    return Response(status_code=204)
