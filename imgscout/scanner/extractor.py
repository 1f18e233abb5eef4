"""Candidate extractor — the multi-strategy discovery pipeline.

Provides:
  - ``extract()``: run every strategy over a canonical body; capped, ordered, deduplicated.
  - ``is_likely_text()``: the text-likelihood gate in front of the text strategies.
  - ``looks_like_embedded_image_payload()``: cheap marker scan used by the view predicate.
  - ``is_enabled_for()``: "does this response deserve an image view at all".

INVARIANTS:
  - Synchronous, CPU-bound — callers run it off the interactive path.
  - Results are in strategy-priority order, then discovery order within a strategy.
  - At most ``limits.max_candidates`` results; no two share a fingerprint.
  - Per-match failures never propagate; only ``ScanCancelled`` (cooperative
    cancellation) and unexpected faults leave this module.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Iterable, Optional

from imgscout.constants import QUICK_CHECK_SCAN_BYTES, TEXT_SAMPLE_BYTES
from imgscout.models.candidate import Candidate
from imgscout.scanner.decompress import decode_body
from imgscout.scanner.definitions import (
    DEFAULT_LIMITS,
    EMBEDDED_IMAGE_MARKERS,
    TEXT_CONTENT_TYPE_TOKENS,
    ExtractionLimits,
)
from imgscout.scanner.errors import DecodeError
from imgscout.scanner.sniffer import looks_like_image
from imgscout.scanner.strategies import (
    DEFAULT_STRATEGIES,
    AcceptHook,
    ExtractionContext,
    ExtractionStrategy,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Text heuristics
# ---------------------------------------------------------------------------


def is_likely_text(content_type: Optional[str], body: bytes) -> bool:
    """Decide whether ``body`` is text-shaped enough for the pattern strategies.

    A declared json/html/xml/javascript/urlencoded or ``text/*`` type wins
    immediately. Otherwise the first ``TEXT_SAMPLE_BYTES`` are sampled: any
    NUL byte means binary, and so does a sample in which more than one byte
    in eight is a control byte outside ``0x09-0x0D``. Bytes at or above 0x20
    (including high UTF-8/Latin-1 bytes) never count against the body.
    """
    if content_type:
        lowered = content_type.lower()
        if lowered.startswith("text/") or any(token in lowered for token in TEXT_CONTENT_TYPE_TOKENS):
            return True

    sample = body[:TEXT_SAMPLE_BYTES]
    if not sample:
        return False
    suspicious = 0
    for b in sample:
        if b == 0:
            return False
        if b < 0x09 or 0x0D < b < 0x20:
            suspicious += 1
    return suspicious * 8 <= len(sample)


def looks_like_embedded_image_payload(body: bytes, content_type: Optional[str]) -> bool:
    """Quick check: a text body mentioning a data URI or base64 image magic."""
    if not body or not is_likely_text(content_type, body):
        return False
    sample = body[:QUICK_CHECK_SCAN_BYTES].decode("latin-1").lower()
    return any(marker in sample for marker in EMBEDDED_IMAGE_MARKERS)


# ---------------------------------------------------------------------------
# extract()
# ---------------------------------------------------------------------------


def extract(
    body: Optional[bytes],
    content_type: Optional[str] = None,
    max_candidates: Optional[int] = None,
    *,
    limits: ExtractionLimits = DEFAULT_LIMITS,
    strategies: Iterable[ExtractionStrategy] = DEFAULT_STRATEGIES,
    cancel_event: Optional[threading.Event] = None,
    accept: Optional[AcceptHook] = None,
) -> list[Candidate]:
    """Discover image candidates in a canonical (already decompressed) body.

    Strategies run in order and short-circuit once the cap is reached. The
    first text-requiring strategy triggers the ``is_likely_text`` gate; a
    body that fails it stops the scan there.

    Args:
        body:           Canonical body bytes.
        content_type:   Declared Content-Type, or None.
        max_candidates: Cap override; defaults to ``limits.max_candidates``.
        limits:         Size and length limits for this run.
        strategies:     Strategy passes, in priority order.
        cancel_event:   Cooperative cancel token checked between matches.
        accept:         Final per-candidate check; refused candidates leave
                        room under the cap for later ones.

    Returns:
        Ordered list of accepted candidates (possibly empty).

    Raises:
        ScanCancelled: ``cancel_event`` was set while scanning.
    """
    if not body:
        return []

    if max_candidates is not None and max_candidates != limits.max_candidates:
        limits = dataclasses.replace(limits, max_candidates=max_candidates)
    if limits.max_candidates <= 0:
        return []

    context = ExtractionContext(body, content_type, limits, cancel_event, accept)
    text_checked = False

    for strategy in strategies:
        if context.full:
            break
        context.check_cancelled()

        if strategy.requires_text and not text_checked:
            if not is_likely_text(content_type, body):
                logger.debug("Body is not text-shaped; skipping text strategies")
                break
            text_checked = True

        strategy.run(context)

    logger.debug(
        "Extraction finished: %d candidate(s) from %d byte body",
        len(context.candidates),
        len(body),
    )
    return context.candidates


# ---------------------------------------------------------------------------
# is_enabled_for(): the cheap "deserves a view" predicate
# ---------------------------------------------------------------------------


def is_enabled_for(
    body: Optional[bytes],
    content_type: Optional[str] = None,
    content_encoding: Optional[str] = None,
    limits: ExtractionLimits = DEFAULT_LIMITS,
) -> bool:
    """Return True when a response is worth showing an image view for.

    True for a declared ``image/*`` type. Otherwise the body is decompressed
    and accepted when it starts with an image signature or passes the
    embedded-marker quick check. If decompression fails, the raw body is
    sniffed instead.
    """
    if content_type and content_type.lower().startswith("image/"):
        return True
    if not body:
        return False

    try:
        decoded = decode_body(body, content_encoding, limits.max_inflated_bytes)
    except DecodeError:
        return looks_like_image(body, 0)

    return looks_like_image(decoded, 0) or looks_like_embedded_image_payload(decoded, content_type)
