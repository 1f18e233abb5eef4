"""Candidate — one discovered image span.

A Candidate owns its bytes: base64 and percent-decoding materialize new
buffers, so nothing here aliases the scanned body. Candidates are created by
the extractor, handed to the caller, and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from imgscout.scanner.fingerprint import Fingerprint
from imgscout.scanner.sniffer import ImageFormat, sniff_format


@dataclass(frozen=True)
class Candidate:
    """A byte span that is almost certainly an image container.

    Fields:
        data:         Decoded image bytes (owned copy).
        label:        Provenance label, e.g. ``"Body image"``, ``"Data URI #2"``.
        content_type: Declared type (``image/<subtype>`` from a data URI marker or the
                      response Content-Type); None when the strategy has no marker.
        strategy:     Name of the strategy that found it.
        offset:       Offset of the match in the scanned body (0 for the whole body).
    """

    data: bytes
    label: str
    content_type: Optional[str]
    strategy: str
    offset: int = 0

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint.of(self.data)

    @property
    def sniffed_format(self) -> Optional[ImageFormat]:
        return sniff_format(self.data, 0)

    def __repr__(self) -> str:
        return (
            f"Candidate(label={self.label!r}, content_type={self.content_type!r}, "
            f"strategy={self.strategy!r}, offset={self.offset}, size={self.size})"
        )
