"""Tests for imgscout.scanner.extractor — extract(), text gate, view predicate."""

from __future__ import annotations

import gzip
import json
import threading
from typing import Callable

import pytest

from imgscout.scanner.decompress import decode_body
from imgscout.scanner.definitions import ExtractionLimits
from imgscout.scanner.errors import ScanCancelled
from imgscout.scanner.extractor import (
    extract,
    is_enabled_for,
    is_likely_text,
    looks_like_embedded_image_payload,
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


# ─── is_likely_text ───────────────────────────────────────────────────────────


class TestIsLikelyText:
    @pytest.mark.parametrize(
        "content_type",
        [
            "application/json",
            "text/plain; charset=utf-8",
            "TEXT/CSV",
            "application/xhtml+xml",
            "application/javascript",
            "application/x-www-form-urlencoded",
            "text/html",
        ],
    )
    def test_declared_text_types_win(self, content_type: str) -> None:
        """Declared text types pass even for a binary body."""
        assert is_likely_text(content_type, b"\x00\x01\x02") is True

    def test_nul_byte_means_binary(self) -> None:
        assert is_likely_text("application/octet-stream", b"hello\x00world") is False

    def test_plain_ascii_is_text(self) -> None:
        assert is_likely_text(None, b"just some words\r\n\tindented") is True

    def test_utf8_is_text(self) -> None:
        assert is_likely_text(None, "héllo wörld ✓".encode("utf-8")) is True

    def test_control_byte_ratio_boundary(self) -> None:
        """More than 1/8 control bytes in the sample means binary."""
        at_limit = b"\x01" * 128 + b"a" * 896
        over_limit = b"\x01" * 129 + b"a" * 895
        assert is_likely_text(None, at_limit) is True
        assert is_likely_text(None, over_limit) is False

    def test_only_first_1024_bytes_sampled(self) -> None:
        assert is_likely_text(None, b"a" * 1024 + b"\x00") is True

    def test_empty_body(self) -> None:
        assert is_likely_text(None, b"") is False


class TestEmbeddedMarkers:
    @pytest.mark.parametrize(
        "body",
        [
            b'<img src="DATA:IMAGE/png;base64,xyz">',
            b'{"logo": "iVBORw0KGgoAAAANSUhEUg"}',
            b'{"photo": "/9j/4AAQSkZJRgABAQ"}',
            b'{"anim": "R0lGODlhAQABAIAAAP"}',
        ],
    )
    def test_markers_detected(self, body: bytes) -> None:
        assert looks_like_embedded_image_payload(body, "application/json") is True

    def test_no_marker(self) -> None:
        assert looks_like_embedded_image_payload(b'{"a": 1}', "application/json") is False

    def test_binary_body_is_not_checked(self) -> None:
        assert looks_like_embedded_image_payload(b"\x00data:image/png", None) is False


# ─── extract() ────────────────────────────────────────────────────────────────


class TestExtractEmpty:
    @pytest.mark.parametrize(
        "body,content_type",
        [
            (b"", None),
            (b"plain text with nothing in it", "text/plain"),
            (b'{"name": "value", "list": [1, 2, 3]}', "application/json"),
            (b"\x00\x01\x02\x03" * 100, "application/octet-stream"),
        ],
    )
    def test_nothing_recognizable(self, body: bytes, content_type: str) -> None:
        assert extract(body, content_type) == []

    def test_none_body(self) -> None:
        assert extract(None) == []

    def test_zero_cap(self, png_bytes: bytes) -> None:
        assert extract(png_bytes, "image/png", max_candidates=0) == []


class TestExtractScenarios:
    def test_data_uri_in_html(self, b64: Callable[[bytes], str]) -> None:
        """A synthetic PNG-signature buffer in a data URI yields exactly one candidate."""
        synthetic = PNG_SIGNATURE + bytes(range(40))
        body = f'<html><body><img src="data:image/png;base64,{b64(synthetic)}"></body></html>'
        candidates = extract(body.encode(), "text/html")
        assert [c.label for c in candidates] == ["Data URI #1"]
        assert candidates[0].content_type == "image/png"
        assert candidates[0].data == synthetic

    def test_long_data_uri_not_double_counted(
        self, png_bytes: bytes, b64: Callable[[bytes], str]
    ) -> None:
        """The embedded strategy sees the same run but dedup drops it."""
        body = f'<img src="data:image/png;base64,{b64(png_bytes)}">'.encode()
        assert [c.label for c in extract(body, "text/html")] == ["Data URI #1"]

    def test_raw_png_body(self) -> None:
        body = PNG_SIGNATURE + bytes(range(256)) * 4
        candidates = extract(body, "application/octet-stream")
        assert [c.label for c in candidates] == ["Body image"]
        assert candidates[0].content_type == "application/octet-stream"

    def test_gzip_json_with_two_embedded_pngs(
        self, make_png: Callable[..., bytes], b64: Callable[[bytes], str]
    ) -> None:
        first, second = make_png(seed=3), make_png(seed=4)
        document = {"items": [{"thumb": b64(first)}, {"thumb": b64(second)}]}
        raw = gzip.compress(json.dumps(document).encode())

        body = decode_body(raw, "gzip")
        candidates = extract(body, "application/json")

        assert [c.label for c in candidates] == ["Embedded base64 #1", "Embedded base64 #2"]
        assert [c.data for c in candidates] == [first, second]
        assert all(c.content_type is None for c in candidates)

    def test_strategy_priority_order(
        self, make_png: Callable[..., bytes], b64: Callable[[bytes], str]
    ) -> None:
        """Body first, then data URIs, then raw data URIs, then bare runs."""
        embedded, uri = make_png(seed=5), make_png(seed=6)
        body = (
            "GIF89a "
            f'{{"bare": "{b64(embedded)}", '
            f'"raw": "data:image/gif,GIF89a%01%00%01%00%00%00%00", '
            f'"uri": "data:image/png;base64,{b64(uri)}"}}'
        ).encode()
        labels = [c.label for c in extract(body, None)]
        assert labels == ["Body image", "Data URI #1", "Data URI (raw) #1", "Embedded base64 #1"]

    def test_binary_body_skips_text_strategies(self, b64: Callable[[bytes], str]) -> None:
        synthetic = PNG_SIGNATURE + bytes(range(40))
        body = b"\x00\x00" + f"data:image/png;base64,{b64(synthetic)}".encode()
        assert extract(body, "application/octet-stream") == []

    def test_scan_prefix_limit(self, b64: Callable[[bytes], str]) -> None:
        synthetic = PNG_SIGNATURE + bytes(range(40))
        body = (" " * 200 + f'"data:image/png;base64,{b64(synthetic)}"').encode()
        limits = ExtractionLimits(max_text_scan_bytes=100)
        assert extract(body, "text/plain", limits=limits) == []
        assert len(extract(body, "text/plain")) == 1


class TestExtractInvariants:
    def _many_uris(self, make_png: Callable[..., bytes], b64: Callable[[bytes], str], count: int) -> bytes:
        return " ".join(
            f'"data:image/png;base64,{b64(make_png(size=(4, 4), seed=seed))}"'
            for seed in range(count)
        ).encode()

    def test_cap_respected(self, make_png: Callable[..., bytes], b64: Callable[[bytes], str]) -> None:
        body = self._many_uris(make_png, b64, 30)
        assert len(extract(body, "text/html")) == 24
        assert len(extract(body, "text/html", max_candidates=5)) == 5

    def test_no_duplicate_fingerprints(
        self, make_png: Callable[..., bytes], b64: Callable[[bytes], str]
    ) -> None:
        same = b64(make_png(seed=9))
        body = " ".join([f'"data:image/png;base64,{same}"'] * 4 + [same, same]).encode()
        candidates = extract(body, "text/html")
        assert len(candidates) == 1
        assert len({c.fingerprint for c in candidates}) == len(candidates)

    def test_idempotent(self, make_png: Callable[..., bytes], b64: Callable[[bytes], str]) -> None:
        body = self._many_uris(make_png, b64, 6)
        assert extract(body, "text/html") == extract(body, "text/html")

    def test_oversized_candidates_skipped(self, png_bytes: bytes, b64: Callable[[bytes], str]) -> None:
        body = f'"data:image/png;base64,{b64(png_bytes)}"'.encode()
        limits = ExtractionLimits(max_decoded_image_bytes=len(png_bytes) - 1)
        assert extract(body, "text/html", limits=limits) == []

    def test_cancelled_scan_raises(self, png_bytes: bytes) -> None:
        event = threading.Event()
        event.set()
        with pytest.raises(ScanCancelled):
            extract(png_bytes, "image/png", cancel_event=event)

    def test_refused_candidates_do_not_fill_the_cap(
        self, make_png: Callable[..., bytes], b64: Callable[[bytes], str]
    ) -> None:
        body = self._many_uris(make_png, b64, 4)
        refused = {"Data URI #1", "Data URI #2"}
        candidates = extract(
            body,
            "text/html",
            max_candidates=2,
            accept=lambda candidate: candidate.label not in refused,
        )
        assert [c.label for c in candidates] == ["Data URI #3", "Data URI #4"]


# ─── is_enabled_for() ─────────────────────────────────────────────────────────


class TestIsEnabledFor:
    def test_declared_image_type(self) -> None:
        assert is_enabled_for(b"", "image/webp") is True

    def test_image_signature(self, png_bytes: bytes) -> None:
        assert is_enabled_for(png_bytes, "application/octet-stream") is True

    def test_gzipped_image(self, png_bytes: bytes) -> None:
        assert is_enabled_for(gzip.compress(png_bytes), None, "gzip") is True

    def test_embedded_marker(self) -> None:
        body = gzip.compress(b'{"img": "data:image/png;base64,iVBORw0KGgo"}')
        assert is_enabled_for(body, "application/json", "gzip") is True

    def test_plain_json(self) -> None:
        assert is_enabled_for(b'{"a": 1}', "application/json") is False

    def test_empty_body(self) -> None:
        assert is_enabled_for(b"", "text/html") is False

    def test_decode_failure_falls_back_to_raw_sniff(self) -> None:
        assert is_enabled_for(PNG_SIGNATURE + b"\x00" * 8, None, "gzip") is True
        assert is_enabled_for(b"not gzip at all", None, "gzip") is False
