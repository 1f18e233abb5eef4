"""Exception taxonomy for the extraction pipeline.

Only ``DecodeError`` (and unexpected internal faults) ever leave the pipeline.
``MalformedCandidate`` and ``CandidateRejected`` are raised and absorbed
per-match inside the strategies so that one bad match never blocks the rest.
"""

from __future__ import annotations


class ImgScoutError(Exception):
    """Base class for all imgscout pipeline errors."""


class DecodeError(ImgScoutError):
    """The body could not be decompressed (corrupt, truncated, or over the inflate ceiling)."""


class MalformedCandidate(ImgScoutError):
    """A pattern match could not be base64/percent-decoded."""


class CandidateRejected(ImgScoutError):
    """A decoded span failed the acceptance gate (empty, oversized, duplicate, cap reached)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ScanCancelled(ImgScoutError):
    """The scan's cancel token was set; the worker stopped early."""
