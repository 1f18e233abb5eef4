"""Content-encoding normalization.

``decode_body()`` turns a raw HTTP body plus its declared ``Content-Encoding``
into canonical bytes. Unknown or absent encodings are identity. gzip and
deflate are inflated in bounded chunks so a decompression bomb surfaces as
``DecodeError`` instead of exhausting memory.
"""

from __future__ import annotations

import logging
import zlib
from typing import Optional

from imgscout.constants import INFLATE_CHUNK_BYTES, MAX_INFLATED_BYTES
from imgscout.scanner.errors import DecodeError

logger = logging.getLogger(__name__)

_GZIP_MAGIC: bytes = b"\x1f\x8b"

# wbits selectors for zlib.decompressobj()
_WBITS_GZIP: int = 16 + zlib.MAX_WBITS
_WBITS_ZLIB: int = zlib.MAX_WBITS
_WBITS_RAW: int = -zlib.MAX_WBITS


def decode_body(
    body: bytes,
    content_encoding: Optional[str] = None,
    max_inflated_bytes: int = MAX_INFLATED_BYTES,
) -> bytes:
    """Normalize ``body`` according to its declared content encoding.

    Matching is a case-insensitive substring test, not an exact token match:
    ``"x-gzip"`` and ``"gzip, identity"`` both select gzip. gzip wins when a
    header names both.

    Args:
        body:               Raw response body.
        content_encoding:   Declared ``Content-Encoding`` value, or None.
        max_inflated_bytes: Ceiling on the inflated size.

    Returns:
        The decompressed body, or ``body`` unchanged for identity/unknown encodings.

    Raises:
        DecodeError: Corrupt or truncated stream, or output above the ceiling.
    """
    if not content_encoding:
        return body

    lowered = content_encoding.lower()
    if "gzip" in lowered:
        return _gunzip(body, max_inflated_bytes)
    if "deflate" in lowered:
        return _inflate_deflate(body, max_inflated_bytes)

    logger.debug("Unrecognized content-encoding %r treated as identity", content_encoding)
    return body


def _gunzip(body: bytes, limit: int) -> bytes:
    """Inflate a gzip body, following concatenated members."""
    if not body.startswith(_GZIP_MAGIC):
        raise DecodeError("Not in gzip format")

    out = bytearray()
    data = body
    while True:
        decompressor = zlib.decompressobj(_WBITS_GZIP)
        _drain(decompressor, data, out, limit)
        if not decompressor.eof:
            raise DecodeError("Unexpected end of gzip stream")
        data = decompressor.unused_data
        # Trailing bytes that do not start another member are ignored.
        if not data.startswith(_GZIP_MAGIC):
            break
    return bytes(out)


def _inflate_deflate(body: bytes, limit: int) -> bytes:
    """Inflate a deflate body, accepting both zlib-wrapped and raw streams."""
    wbits = _WBITS_ZLIB if _has_zlib_header(body) else _WBITS_RAW
    out = bytearray()
    decompressor = zlib.decompressobj(wbits)
    _drain(decompressor, body, out, limit)
    if not decompressor.eof:
        raise DecodeError("Unexpected end of deflate stream")
    return bytes(out)


def _has_zlib_header(body: bytes) -> bool:
    if len(body) < 2:
        return False
    cmf, flg = body[0], body[1]
    return cmf & 0x0F == 8 and (cmf << 8 | flg) % 31 == 0


def _drain(decompressor, data: bytes, out: bytearray, limit: int) -> None:
    """Feed ``data`` through ``decompressor`` into ``out`` without exceeding ``limit``."""
    try:
        while data and not decompressor.eof:
            chunk = decompressor.decompress(data, INFLATE_CHUNK_BYTES)
            out += chunk
            if len(out) > limit:
                raise DecodeError(f"Inflated body exceeds {limit} bytes")
            data = decompressor.unconsumed_tail
        if not decompressor.eof:
            out += decompressor.flush()
            if len(out) > limit:
                raise DecodeError(f"Inflated body exceeds {limit} bytes")
    except zlib.error as exc:
        raise DecodeError(str(exc)) from exc
