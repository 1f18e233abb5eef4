"""Per-scan content-addressed dedup set.

A fingerprint is ``(length, crc32)``. It is a cheap same-run duplicate guard,
not a security digest; one index lives for exactly one extraction.
"""

from __future__ import annotations

import zlib
from typing import NamedTuple


class Fingerprint(NamedTuple):
    """Dedup key for a candidate's bytes."""

    length: int
    checksum: int

    @classmethod
    def of(cls, data: bytes) -> "Fingerprint":
        return cls(len(data), zlib.crc32(data) & 0xFFFFFFFF)

    def __str__(self) -> str:
        return f"{self.length}:{self.checksum}"


class FingerprintIndex:
    """Set of fingerprints seen during one scan."""

    def __init__(self) -> None:
        self._seen: set[Fingerprint] = set()

    def add(self, data: bytes) -> bool:
        """Record ``data``; True only the first time its fingerprint is seen."""
        fingerprint = Fingerprint.of(data)
        if fingerprint in self._seen:
            return False
        self._seen.add(fingerprint)
        return True

    def __contains__(self, data: object) -> bool:
        if not isinstance(data, (bytes, bytearray)):
            return False
        return Fingerprint.of(bytes(data)) in self._seen

    def __len__(self) -> int:
        return len(self._seen)
