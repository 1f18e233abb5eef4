"""Magic-number sniffing for raster image containers.

Lets the pipeline recognize an image even when the declared Content-Type is
missing or wrong. Signatures are checked in table order against at most the
12 bytes starting at ``offset``; each pattern only needs its own prefix length.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class ImageFormat(str, enum.Enum):
    """Raster formats recognized by the sniffer."""

    PNG = "png"
    JPEG = "jpeg"
    GIF = "gif"
    BMP = "bmp"
    WEBP = "webp"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"


@dataclass(frozen=True)
class Signature:
    """One magic-number rule: ``parts`` are (relative offset, bytes) pairs."""

    image_format: ImageFormat
    parts: tuple[tuple[int, bytes], ...]

    @property
    def min_bytes(self) -> int:
        return max(start + len(magic) for start, magic in self.parts)

    def matches(self, probe: bytes) -> bool:
        if len(probe) < self.min_bytes:
            return False
        return all(probe[start:start + len(magic)] == magic for start, magic in self.parts)


#: Checked in this order; first match wins.
SIGNATURES: tuple[Signature, ...] = (
    Signature(ImageFormat.PNG, ((0, b"\x89PNG"),)),
    Signature(ImageFormat.JPEG, ((0, b"\xff\xd8\xff"),)),
    Signature(ImageFormat.GIF, ((0, b"GIF"),)),
    Signature(ImageFormat.BMP, ((0, b"BM"),)),
    Signature(ImageFormat.WEBP, ((0, b"RIFF"), (8, b"WEBP"))),
)

#: Longest prefix any signature needs.
MAX_PROBE_BYTES: int = max(sig.min_bytes for sig in SIGNATURES)


def sniff_format(content: Optional[bytes], offset: int = 0) -> Optional[ImageFormat]:
    """Return the format whose signature starts at ``offset``, or None.

    Out-of-range offsets and buffers too short for every signature yield None.
    """
    if not content or offset < 0 or offset >= len(content):
        return None
    probe = bytes(content[offset:offset + MAX_PROBE_BYTES])
    for signature in SIGNATURES:
        if signature.matches(probe):
            return signature.image_format
    return None


def looks_like_image(content: Optional[bytes], offset: int = 0) -> bool:
    """Boolean gate: does a raster image plausibly start at ``offset``?"""
    return sniff_format(content, offset) is not None
