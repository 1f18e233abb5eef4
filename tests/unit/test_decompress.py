"""Tests for imgscout.scanner.decompress.decode_body()."""

from __future__ import annotations

import gzip
import zlib

import pytest

from imgscout.scanner.decompress import decode_body
from imgscout.scanner.errors import DecodeError

PAYLOAD = b'{"items": ["alpha", "beta", "gamma"]}' * 20


def _raw_deflate(data: bytes) -> bytes:
    compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


class TestIdentity:
    def test_no_encoding_returns_body_unchanged(self) -> None:
        assert decode_body(PAYLOAD) is PAYLOAD

    def test_empty_encoding_is_identity(self) -> None:
        assert decode_body(PAYLOAD, "") == PAYLOAD

    @pytest.mark.parametrize("encoding", ["br", "identity", "zstd", "x-custom"])
    def test_unknown_encoding_is_identity(self, encoding: str) -> None:
        """Unknown encodings never fail."""
        assert decode_body(PAYLOAD, encoding) == PAYLOAD


class TestGzip:
    def test_gzip_roundtrip(self) -> None:
        assert decode_body(gzip.compress(PAYLOAD), "gzip") == PAYLOAD

    @pytest.mark.parametrize("encoding", ["GZIP", "x-gzip", "gzip, identity", " Gzip "])
    def test_substring_match_case_insensitive(self, encoding: str) -> None:
        assert decode_body(gzip.compress(PAYLOAD), encoding) == PAYLOAD

    def test_gzip_wins_over_deflate(self) -> None:
        assert decode_body(gzip.compress(PAYLOAD), "deflate, gzip") == PAYLOAD

    def test_concatenated_members(self) -> None:
        body = gzip.compress(b"first;") + gzip.compress(b"second")
        assert decode_body(body, "gzip") == b"first;second"

    def test_not_gzip_raises_decode_error(self) -> None:
        with pytest.raises(DecodeError, match="Not in gzip format"):
            decode_body(b"this is plain text", "gzip")

    def test_truncated_stream_raises_decode_error(self) -> None:
        body = gzip.compress(PAYLOAD)
        with pytest.raises(DecodeError):
            decode_body(body[: len(body) // 2], "gzip")

    def test_corrupt_stream_raises_decode_error(self) -> None:
        body = bytearray(gzip.compress(PAYLOAD))
        body[12:20] = b"\xff" * 8
        with pytest.raises(DecodeError):
            decode_body(bytes(body), "gzip")

    def test_empty_body_with_gzip_raises(self) -> None:
        with pytest.raises(DecodeError):
            decode_body(b"", "gzip")


class TestDeflate:
    def test_zlib_wrapped(self) -> None:
        assert decode_body(zlib.compress(PAYLOAD), "deflate") == PAYLOAD

    def test_raw_deflate(self) -> None:
        assert decode_body(_raw_deflate(PAYLOAD), "Deflate") == PAYLOAD

    def test_garbage_raises_decode_error(self) -> None:
        with pytest.raises(DecodeError):
            decode_body(b"\xff\xfe\xfd\xfc not deflate", "deflate")

    def test_truncated_raises_decode_error(self) -> None:
        body = zlib.compress(PAYLOAD)
        with pytest.raises(DecodeError):
            decode_body(body[:-8], "deflate")


class TestInflateCeiling:
    """Decompression bombs surface as DecodeError."""

    def test_gzip_over_ceiling(self) -> None:
        bomb = gzip.compress(b"\x00" * 200_000)
        with pytest.raises(DecodeError, match="exceeds 100000 bytes"):
            decode_body(bomb, "gzip", max_inflated_bytes=100_000)

    def test_deflate_over_ceiling(self) -> None:
        bomb = zlib.compress(b"A" * 200_000)
        with pytest.raises(DecodeError, match="exceeds"):
            decode_body(bomb, "deflate", max_inflated_bytes=1_000)

    def test_exactly_at_ceiling_is_accepted(self) -> None:
        data = b"B" * 4096
        assert decode_body(gzip.compress(data), "gzip", max_inflated_bytes=4096) == data
