"""Discovery strategies for embedded images.

Each strategy is an independent, order-preserving pass over one extraction
context. The extractor runs them in priority order:

  1. BodyStrategy           — the whole canonical body          ("Body image")
  2. DataUriBase64Strategy  — ``data:image/<t>;base64,<payload>`` ("Data URI #n")
  3. DataUriRawStrategy     — ``data:image/<t>,<payload>``        ("Data URI (raw) #n")
  4. EmbeddedBase64Strategy — bare base64 runs, sniff-verified   ("Embedded base64 #n")

Every decoded span goes through ``ExtractionContext.admit()``, the single
acceptance gate (non-empty, size ceiling, fingerprint, optional
accept hook, cap). Per-match
failures raise ``MalformedCandidate``/``CandidateRejected`` and are absorbed
inside ``run()`` so one bad match never aborts the scan.

IMPORT RULES:
  - ``import re2`` ONLY (via definitions.py) — no stdlib ``re``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import Any, Callable, Optional

from imgscout.models.candidate import Candidate
from imgscout.scanner.definitions import (
    BASE64_RUN_CHARS,
    DEFAULT_LIMITS,
    ExtractionLimits,
    StrategyPatterns,
    patterns_for,
)
from imgscout.scanner.errors import CandidateRejected, MalformedCandidate, ScanCancelled
from imgscout.scanner.fingerprint import FingerprintIndex
from imgscout.scanner.sniffer import looks_like_image

logger = logging.getLogger(__name__)

AcceptHook = Callable[[Candidate], bool]

_HEX_DIGITS: frozenset[str] = frozenset("0123456789abcdefABCDEF")

# Applied in order: JSON-escaped slashes first, then escaped and literal whitespace.
_BASE64_STRIP: tuple[tuple[str, str], ...] = (
    ("\\/", "/"),
    ("\\n", ""),
    ("\\r", ""),
    ("\\t", ""),
    ("\r", ""),
    ("\n", ""),
    ("\t", ""),
    (" ", ""),
)

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


# ---------------------------------------------------------------------------
# Payload decoding helpers
# ---------------------------------------------------------------------------


def percent_decode(value: str) -> bytes:
    """Decode ``%XX`` escapes; every other character maps to its single byte.

    Raises:
        MalformedCandidate: On a truncated or non-hex escape, or a character
                            outside the single-byte range.
    """
    out = bytearray()
    pos = 0
    try:
        while True:
            idx = value.find("%", pos)
            if idx < 0:
                out += value[pos:].encode("latin-1")
                return bytes(out)
            out += value[pos:idx].encode("latin-1")
            escape = value[idx + 1:idx + 3]
            if len(escape) != 2 or not all(ch in _HEX_DIGITS for ch in escape):
                raise MalformedCandidate(f"Malformed percent escape at offset {idx}")
            out.append(int(escape, 16))
            pos = idx + 3
    except UnicodeEncodeError as exc:
        raise MalformedCandidate("Payload contains multi-byte characters") from exc


def normalize_base64(payload: str) -> str:
    """Strip escape sequences and whitespace; percent-decode when ``%`` is present.

    A payload whose percent escapes are malformed is kept as-is and left for
    the base64 decoder to reject.
    """
    normalized = payload
    for old, new in _BASE64_STRIP:
        normalized = normalized.replace(old, new)

    if "%" in normalized:
        try:
            normalized = percent_decode(normalized).decode("latin-1")
        except MalformedCandidate:
            pass
    return normalized


def decode_base64_payload(
    payload: str,
    min_length: int,
    max_decoded_bytes: int,
) -> bytes:
    """Normalize, re-pad and decode a base64 payload.

    The URL-safe alphabet is selected when ``-`` or ``_`` is present; the
    standard alphabet otherwise. Mixing the two is malformed.

    Raises:
        MalformedCandidate: Too short/long after normalization, or not valid base64.
    """
    normalized = normalize_base64(payload)

    if len(normalized) < min_length or len(normalized) > max_decoded_bytes * 2:
        raise MalformedCandidate(f"Normalized payload length {len(normalized)} out of range")

    remainder = len(normalized) % 4
    if remainder:
        normalized += "=" * (4 - remainder)

    if "-" in normalized or "_" in normalized:
        if "+" in normalized or "/" in normalized:
            raise MalformedCandidate("Payload mixes standard and URL-safe base64 alphabets")
        normalized = normalized.translate(_URLSAFE_TO_STANDARD)

    try:
        return base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedCandidate(f"Invalid base64: {exc}") from exc


# ---------------------------------------------------------------------------
# ExtractionContext: per-scan state shared by the strategies
# ---------------------------------------------------------------------------


class ExtractionContext:
    """State for one extraction run.

    Owns the fingerprint index and the accepted candidates. Never shared
    across scans and never touched by the interactive path.

    ``accept`` is a last check on a fully built candidate (the pipeline
    passes its pixel decoder). Candidates it refuses do not count toward
    the cap.
    """

    def __init__(
        self,
        body: bytes,
        content_type: Optional[str] = None,
        limits: ExtractionLimits = DEFAULT_LIMITS,
        cancel_event: Optional[threading.Event] = None,
        accept: Optional[AcceptHook] = None,
    ) -> None:
        self.body = body
        self.content_type = content_type
        self.limits = limits
        self.patterns: StrategyPatterns = patterns_for(limits)
        self.candidates: list[Candidate] = []
        self.fingerprints = FingerprintIndex()
        self._cancel_event = cancel_event
        self._accept = accept
        self._text: Optional[str] = None

    @property
    def full(self) -> bool:
        return len(self.candidates) >= self.limits.max_candidates

    @property
    def text(self) -> str:
        """The scanned prefix of the body, one character per byte."""
        if self._text is None:
            self._text = self.body[:self.limits.max_text_scan_bytes].decode("latin-1")
        return self._text

    def check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise ScanCancelled("Scan superseded")

    def admit(
        self,
        data: bytes,
        label: str,
        content_type: Optional[str],
        strategy: str,
        offset: int = 0,
    ) -> Candidate:
        """The shared acceptance gate.

        Raises:
            CandidateRejected: cap reached, empty, oversized, duplicate
                fingerprint, or refused by the accept hook.
        """
        if self.full:
            raise CandidateRejected("candidate cap reached")
        if not data:
            raise CandidateRejected("empty")
        if len(data) > self.limits.max_decoded_image_bytes:
            raise CandidateRejected(f"oversized ({len(data)} bytes)")
        if not self.fingerprints.add(data):
            raise CandidateRejected("duplicate fingerprint")

        candidate = Candidate(
            data=bytes(data),
            label=label,
            content_type=content_type,
            strategy=strategy,
            offset=offset,
        )
        if self._accept is not None and not self._accept(candidate):
            raise CandidateRejected("not accepted")
        self.candidates.append(candidate)
        return candidate


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class ExtractionStrategy:
    """Base class: one discovery pass over an ExtractionContext.

    ``requires_text`` strategies only run when the body passes the
    text-likelihood gate.
    """

    name: str = "strategy"
    requires_text: bool = True

    def run(self, context: ExtractionContext) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class BodyStrategy(ExtractionStrategy):
    """The whole canonical body as a single candidate.

    Always attempted first, regardless of content type. The body is only
    admitted when it carries a known image signature at offset 0.
    """

    name = "body"
    requires_text = False
    label = "Body image"

    def run(self, context: ExtractionContext) -> None:
        if not looks_like_image(context.body, 0):
            return
        try:
            context.admit(context.body, self.label, context.content_type, self.name)
        except CandidateRejected as exc:
            logger.debug("Body candidate rejected: %s", exc.reason)


class _MatchStrategy(ExtractionStrategy):
    """Shared loop for the pattern-driven strategies.

    The label counter advances once per successfully decoded match, whether
    or not the gate then accepts it.
    """

    label_prefix: str = ""

    def pattern(self, patterns: StrategyPatterns) -> Any:
        raise NotImplementedError

    def decode(self, match: Any, context: ExtractionContext) -> tuple[Optional[str], bytes]:
        """Return ``(content_type, data)`` for a match or raise MalformedCandidate."""
        raise NotImplementedError

    def run(self, context: ExtractionContext) -> None:
        counter = 1
        for match in self.pattern(context.patterns).finditer(context.text):
            if context.full:
                break
            context.check_cancelled()

            try:
                content_type, data = self.decode(match, context)
            except MalformedCandidate as exc:
                logger.debug("%s match at %d skipped: %s", self.name, match.start(), exc)
                continue

            label = f"{self.label_prefix} #{counter}"
            counter += 1
            try:
                context.admit(data, label, content_type, self.name, match.start())
            except CandidateRejected as exc:
                logger.debug("%s rejected: %s", label, exc.reason)


class DataUriBase64Strategy(_MatchStrategy):
    """``data:image/<subtype>;base64,<payload>`` markers."""

    name = "data-uri-base64"
    label_prefix = "Data URI"

    def pattern(self, patterns: StrategyPatterns) -> Any:
        return patterns.data_uri_base64

    def decode(self, match: Any, context: ExtractionContext) -> tuple[Optional[str], bytes]:
        content_type = "image/" + match.group(1).lower()
        data = decode_base64_payload(
            match.group(2),
            context.limits.min_data_uri_base64_length,
            context.limits.max_decoded_image_bytes,
        )
        return content_type, data


class DataUriRawStrategy(_MatchStrategy):
    """``data:image/<subtype>,<payload>`` markers with a percent-encoded payload."""

    name = "data-uri-raw"
    label_prefix = "Data URI (raw)"

    def pattern(self, patterns: StrategyPatterns) -> Any:
        return patterns.data_uri_raw

    def decode(self, match: Any, context: ExtractionContext) -> tuple[Optional[str], bytes]:
        return "image/" + match.group(1).lower(), percent_decode(match.group(2))


class EmbeddedBase64Strategy(_MatchStrategy):
    """Bare base64 runs with no marker.

    Only maximal runs count: a match touching another base64-alphabet
    character on either side is skipped. With no declared type to trust,
    the decoded bytes must pass the sniffer at offset 0.
    """

    name = "embedded-base64"
    label_prefix = "Embedded base64"

    def pattern(self, patterns: StrategyPatterns) -> Any:
        return patterns.embedded_base64

    def decode(self, match: Any, context: ExtractionContext) -> tuple[Optional[str], bytes]:
        text = context.text
        start, end = match.start(), match.end()
        if (start > 0 and text[start - 1] in BASE64_RUN_CHARS) or (
            end < len(text) and text[end] in BASE64_RUN_CHARS
        ):
            raise MalformedCandidate("not a maximal base64 run")

        data = decode_base64_payload(
            match.group(0),
            context.limits.min_embedded_base64_length,
            context.limits.max_decoded_image_bytes,
        )
        if not looks_like_image(data, 0):
            raise MalformedCandidate("decoded bytes carry no image signature")
        return None, data


#: Fixed priority order; results keep this order, then discovery order.
DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    BodyStrategy(),
    DataUriBase64Strategy(),
    DataUriRawStrategy(),
    EmbeddedBase64Strategy(),
)
