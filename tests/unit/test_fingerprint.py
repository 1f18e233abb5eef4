"""Tests for imgscout.scanner.fingerprint."""

from __future__ import annotations

import zlib

from imgscout.scanner.fingerprint import Fingerprint, FingerprintIndex


class TestFingerprint:
    def test_length_and_crc32(self) -> None:
        data = b"\x89PNG payload"
        fp = Fingerprint.of(data)
        assert fp.length == len(data)
        assert fp.checksum == zlib.crc32(data) & 0xFFFFFFFF

    def test_str(self) -> None:
        assert str(Fingerprint.of(b"")) == "0:0"

    def test_same_bytes_same_fingerprint(self) -> None:
        assert Fingerprint.of(b"abc") == Fingerprint.of(bytes(bytearray(b"abc")))


class TestFingerprintIndex:
    def test_first_add_true_then_false(self) -> None:
        index = FingerprintIndex()
        assert index.add(b"image-one") is True
        assert index.add(b"image-one") is False
        assert len(index) == 1

    def test_distinct_bytes(self) -> None:
        index = FingerprintIndex()
        assert index.add(b"one")
        assert index.add(b"two")
        assert len(index) == 2

    def test_contains(self) -> None:
        index = FingerprintIndex()
        index.add(b"seen")
        assert b"seen" in index
        assert b"unseen" not in index
        assert "seen" not in index

    def test_indexes_are_independent(self) -> None:
        first, second = FingerprintIndex(), FingerprintIndex()
        first.add(b"data")
        assert second.add(b"data") is True
