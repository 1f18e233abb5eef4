"""Pattern definitions and limits for the extraction strategies.

All default patterns are pre-compiled at module load time using google-re2,
which guarantees linear-time matching on hostile input. Non-default minimum
lengths (from config) compile once per distinct value via ``patterns_for()``.

IMPORT RULES:
  - ``import re2`` ONLY — ``import re`` is not used anywhere in imgscout/scanner/.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import re2  # google-re2, NOT stdlib re

from imgscout.constants import (
    MAX_DECODED_IMAGE_BYTES,
    MAX_EXTRACTED_IMAGES,
    MAX_INFLATED_BYTES,
    MAX_TEXT_SCAN_BYTES,
    MIN_DATA_URI_BASE64_LENGTH,
    MIN_DATA_URI_RAW_LENGTH,
    MIN_EMBEDDED_BASE64_LENGTH,
)

#: RE2 rejects counted repetitions above this bound.
MAX_PATTERN_REPEAT: int = 1000


# ---------------------------------------------------------------------------
# ExtractionLimits
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtractionLimits:
    """Numeric limits for one extraction run.

    Built from ``Config.limits()`` in the service; the defaults mirror
    ``imgscout.constants`` so library callers need not pass anything.
    """

    max_candidates: int = MAX_EXTRACTED_IMAGES
    max_text_scan_bytes: int = MAX_TEXT_SCAN_BYTES
    max_decoded_image_bytes: int = MAX_DECODED_IMAGE_BYTES
    min_data_uri_base64_length: int = MIN_DATA_URI_BASE64_LENGTH
    min_data_uri_raw_length: int = MIN_DATA_URI_RAW_LENGTH
    min_embedded_base64_length: int = MIN_EMBEDDED_BASE64_LENGTH
    max_inflated_bytes: int = MAX_INFLATED_BYTES


DEFAULT_LIMITS = ExtractionLimits()


# ---------------------------------------------------------------------------
# Character classes
# ---------------------------------------------------------------------------

#: Characters that extend a base64 run (standard + URL-safe + padding).
BASE64_RUN_CHARS: frozenset[str] = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/=_-"
)

#: Content-Type fragments that mark a body as text without sampling it.
TEXT_CONTENT_TYPE_TOKENS: tuple[str, ...] = (
    "json",
    "html",
    "xml",
    "javascript",
    "x-www-form-urlencoded",
)

#: Lower-cased substrings that suggest an embedded image in a text body:
#: the data URI marker plus the base64 encodings of the PNG, JPEG and GIF magic.
EMBEDDED_IMAGE_MARKERS: tuple[str, ...] = (
    "data:image/",
    "ivborw0kggo",  # base64("\x89PNG\r\n\x1a\n")
    "/9j/",         # base64("\xff\xd8\xff")
    "r0lgod",       # base64("GIF8")
)


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyPatterns:
    """Compiled patterns for the three text strategies.

    Fields:
        data_uri_base64: ``data:image/<subtype>;base64,<payload>``; group 1 = subtype,
                         group 2 = payload (base64 alphabet, escapes, whitespace, ``%``).
        data_uri_raw:    ``data:image/<subtype>,<payload>``; group 2 = percent-encoded payload.
        embedded_base64: bare base64 run; boundaries are verified by the strategy
                         because RE2 has no look-around.
    """

    data_uri_base64: Any  # re2._Regexp
    data_uri_raw: Any
    embedded_base64: Any


@lru_cache(maxsize=8)
def _compile(min_base64: int, min_raw: int, min_embedded: int) -> StrategyPatterns:
    return StrategyPatterns(
        data_uri_base64=re2.compile(
            r"(?i)data:image/([a-z0-9.+-]+);base64,([A-Za-z0-9+/=_%%\\\s-]{%d,})" % min_base64
        ),
        data_uri_raw=re2.compile(
            r"(?i)data:image/([a-z0-9.+-]+),([A-Za-z0-9%%._~!$&'()*+,;=:@/?-]{%d,})" % min_raw
        ),
        embedded_base64=re2.compile(
            r"[A-Za-z0-9+/_-]{%d,}={0,2}" % min_embedded
        ),
    )


def patterns_for(limits: ExtractionLimits = DEFAULT_LIMITS) -> StrategyPatterns:
    """Return compiled patterns for the minimum lengths in ``limits``."""
    return _compile(
        limits.min_data_uri_base64_length,
        limits.min_data_uri_raw_length,
        limits.min_embedded_base64_length,
    )


# COMPILED AT MODULE LOAD, never per-request
DEFAULT_PATTERNS: StrategyPatterns = patterns_for(DEFAULT_LIMITS)
