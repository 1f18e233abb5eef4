"""Root test configuration for imgscout.

Provides image factories shared by the unit and integration suites:
real Pillow-encoded images where rendering matters, and bare
signature-prefixed buffers where only sniffing and extraction do.
"""

from __future__ import annotations

import base64
import gzip
import io
from typing import Callable

import pytest
from PIL import Image

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def encode_image(
    size: tuple[int, int] = (16, 16),
    seed: int = 0,
    image_format: str = "PNG",
) -> bytes:
    """Encode a small gradient image; distinct seeds give distinct bytes."""
    width, height = size
    image = Image.new("RGB", size)
    image.putdata(
        [
            ((x * 16 + seed) % 256, (y * 16 + seed * 7) % 256, (x * y + seed * 31) % 256)
            for y in range(height)
            for x in range(width)
        ]
    )
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    """Factory: ``make_png(size=(16, 16), seed=0)`` → PNG bytes."""

    def _make(size: tuple[int, int] = (16, 16), seed: int = 0) -> bytes:
        return encode_image(size, seed, "PNG")

    return _make


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Factory: ``make_image("GIF", size=(8, 8))`` → encoded bytes in any Pillow format."""

    def _make(image_format: str, size: tuple[int, int] = (8, 8), seed: int = 0) -> bytes:
        return encode_image(size, seed, image_format)

    return _make


@pytest.fixture
def png_bytes(make_png: Callable[..., bytes]) -> bytes:
    return make_png()


@pytest.fixture
def b64() -> Callable[[bytes], str]:
    return lambda data: base64.b64encode(data).decode("ascii")


@pytest.fixture
def gzip_bytes() -> Callable[[bytes], bytes]:
    return gzip.compress
