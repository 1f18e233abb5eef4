"""Pixel decoding for extracted candidates (Pillow).

The extractor stops at "these bytes are almost certainly an image". This
module does the final decode and builds the ``(label, details, image)``
triples shown to the user. Candidates Pillow cannot decode are dropped.
"""

from __future__ import annotations

import io
import logging
import threading
import warnings
from typing import Iterable, Optional

from PIL import Image, UnidentifiedImageError

from imgscout.models.candidate import Candidate
from imgscout.models.view import RenderedImage
from imgscout.scanner.errors import ScanCancelled

logger = logging.getLogger(__name__)


def render_candidate(candidate: Candidate) -> Optional[RenderedImage]:
    """Decode one candidate; None when Pillow rejects it."""
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(candidate.data)) as opened:
                opened.load()
                image_format = opened.format
                image = opened.copy()
    except (UnidentifiedImageError, Image.DecompressionBombWarning, Image.DecompressionBombError) as exc:
        logger.debug("%s not decodable: %s", candidate.label, exc)
        return None
    except (OSError, ValueError, SyntaxError) as exc:
        # Truncated or corrupt containers surface as OSError/SyntaxError from plugins.
        logger.debug("%s not decodable: %s: %s", candidate.label, type(exc).__name__, exc)
        return None

    return RenderedImage(
        label=f"{candidate.label} ({image.width}x{image.height})",
        details=describe(candidate, image.width, image.height),
        image=image,
        candidate=candidate,
        image_format=image_format.lower() if image_format else None,
    )


def describe(candidate: Candidate, width: int, height: int) -> str:
    """Provenance line: ``source | type | WxH | N bytes``."""
    return " | ".join(
        (
            candidate.label,
            candidate.content_type or "unknown type",
            f"{width}x{height}",
            f"{candidate.size} bytes",
        )
    )


def render_candidates(
    candidates: Iterable[Candidate],
    cancel_event: Optional[threading.Event] = None,
) -> tuple[RenderedImage, ...]:
    """Decode candidates in order, skipping the undecodable ones.

    Raises:
        ScanCancelled: ``cancel_event`` was set between two decodes.
    """
    rendered: list[RenderedImage] = []
    for candidate in candidates:
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelled("Scan superseded")
        image = render_candidate(candidate)
        if image is not None:
            rendered.append(image)
    return tuple(rendered)


_PNG_MODES: frozenset[str] = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})


def encode_png(image: "Image.Image") -> bytes:
    """Re-encode a decoded image as PNG for delivery over HTTP."""
    if image.mode not in _PNG_MODES:
        image = image.convert("RGBA")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
