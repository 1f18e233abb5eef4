"""Integration tests for the viewer-session endpoints under /v1/sessions."""

from __future__ import annotations

from typing import Any, Callable

import pytest
from fastapi import HTTPException
from starlette.testclient import TestClient

from imgscout.api.sessions import submit_scan
from imgscout.config import Config
from imgscout.main import create_app
from imgscout.scanner.coordinator import SessionRegistry, create_worker

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _build_app(monkeypatch: pytest.MonkeyPatch) -> Any:
    monkeypatch.setattr("imgscout.main.load_config", lambda: Config.defaults())
    return create_app()


class TestSessionLifecycle:
    def test_create_session(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TestClient(_build_app(monkeypatch)) as client:
            resp = client.post("/v1/sessions")
        assert resp.status_code == 201
        data = resp.json()
        assert len(data["session_id"]) == 26
        assert data["version"] == 0
        assert data["status"] == "idle"
        assert data["message"] == "No response to render."
        assert data["images"] == []

    def test_scan_then_wait(self, monkeypatch: pytest.MonkeyPatch, png_bytes: bytes) -> None:
        with TestClient(_build_app(monkeypatch)) as client:
            session_id = client.post("/v1/sessions").json()["session_id"]

            submitted = client.post(
                f"/v1/sessions/{session_id}/scan",
                content=png_bytes,
                headers={"x-declared-content-type": "image/png"},
            )
            assert submitted.status_code == 202
            assert submitted.json()["version"] == 1

            state = client.get(f"/v1/sessions/{session_id}", params={"wait": "true"}).json()

        assert state["session_id"] == session_id
        assert state["version"] == 1
        assert state["status"] == "idle"
        assert state["message"] == "Found 1 image(s)."
        assert state["images"][0]["content_type"] == "image/png"

    def test_newer_scan_replaces_older(
        self, monkeypatch: pytest.MonkeyPatch, make_png: Callable[..., bytes]
    ) -> None:
        first, second = make_png(size=(16, 16), seed=1), make_png(size=(8, 4), seed=2)
        with TestClient(_build_app(monkeypatch)) as client:
            session_id = client.post("/v1/sessions").json()["session_id"]
            client.post(f"/v1/sessions/{session_id}/scan", content=first)
            client.post(f"/v1/sessions/{session_id}/scan", content=second)
            state = client.get(f"/v1/sessions/{session_id}?wait=true").json()

        assert state["version"] == 2
        assert [image["label"] for image in state["images"]] == ["Body image (8x4)"]

    def test_empty_scan_clears_view(self, monkeypatch: pytest.MonkeyPatch, png_bytes: bytes) -> None:
        with TestClient(_build_app(monkeypatch)) as client:
            session_id = client.post("/v1/sessions").json()["session_id"]
            client.post(f"/v1/sessions/{session_id}/scan", content=png_bytes)
            cleared = client.post(f"/v1/sessions/{session_id}/scan", content=b"")
            state = client.get(f"/v1/sessions/{session_id}?wait=true").json()

        assert cleared.json()["status"] == "idle"
        assert state["version"] == 2
        assert state["message"] == "No response to render."
        assert state["images"] == []

    def test_delete_session(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TestClient(_build_app(monkeypatch)) as client:
            session_id = client.post("/v1/sessions").json()["session_id"]
            assert client.delete(f"/v1/sessions/{session_id}").status_code == 204
            assert client.get(f"/v1/sessions/{session_id}").status_code == 404
            assert client.delete(f"/v1/sessions/{session_id}").status_code == 404


class TestSessionImages:
    def test_image_as_png(self, monkeypatch: pytest.MonkeyPatch, make_image: Callable[..., bytes]) -> None:
        gif = make_image("GIF", size=(6, 6))
        with TestClient(_build_app(monkeypatch)) as client:
            session_id = client.post("/v1/sessions").json()["session_id"]
            client.post(f"/v1/sessions/{session_id}/scan", content=gif)
            client.get(f"/v1/sessions/{session_id}?wait=true")
            resp = client.get(f"/v1/sessions/{session_id}/images/0")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.headers["x-image-label"] == "Body image (6x6)"
        assert resp.headers["x-scan-version"] == "1"
        assert resp.content.startswith(PNG_SIGNATURE)

    def test_image_index_out_of_range(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TestClient(_build_app(monkeypatch)) as client:
            session_id = client.post("/v1/sessions").json()["session_id"]
            resp = client.get(f"/v1/sessions/{session_id}/images/0")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "image_not_found"


class TestUnknownSession:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/v1/sessions/missing"),
            ("post", "/v1/sessions/missing/scan"),
            ("get", "/v1/sessions/missing/images/0"),
        ],
    )
    def test_404(self, monkeypatch: pytest.MonkeyPatch, method: str, path: str) -> None:
        with TestClient(_build_app(monkeypatch)) as client:
            resp = getattr(client, method)(path)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "session_not_found"


class _ClosingUpload:
    """Request stand-in whose session is closed while its body is read."""

    headers: dict[str, str] = {}

    def __init__(self, registry: SessionRegistry, session_id: str, body: bytes) -> None:
        self._registry = registry
        self._session_id = session_id
        self._body = body

    async def body(self) -> bytes:
        await self._registry.close(self._session_id)
        return self._body


class TestSessionClosedDuringUpload:
    @pytest.mark.asyncio
    async def test_scan_answers_404(self, png_bytes: bytes) -> None:
        worker = create_worker()
        try:
            registry = SessionRegistry(worker)
            session = await registry.create()
            upload = _ClosingUpload(registry, session.session_id, png_bytes)

            with pytest.raises(HTTPException) as exc_info:
                await submit_scan(session.session_id, upload, registry)  # type: ignore[arg-type]
        finally:
            worker.shutdown(wait=True, cancel_futures=True)

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail["code"] == "session_not_found"
        assert session.version == 0
