"""Visible session state.

``ViewState`` is what a viewer session shows. It is replaced wholesale on every
publish, never mutated, so a reader always sees one scan's complete result.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from imgscout.models.candidate import Candidate

if TYPE_CHECKING:
    from PIL import Image

MSG_NO_RESPONSE = "No response to render."
MSG_RENDERING = "Rendering images..."
MSG_NO_IMAGES = "No supported image found in response body."


class SessionStatus(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"


@dataclass(frozen=True)
class RenderedImage:
    """One decoded candidate: label, provenance details and the pixel source."""

    label: str
    details: str
    image: "Image.Image"
    candidate: Candidate
    image_format: Optional[str] = None

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass(frozen=True)
class ViewState:
    """Snapshot of a viewer session.

    Fields:
        version: ScanVersion this state belongs to (0 before any scan).
        status:  IDLE or SCANNING.
        message: Status line (diagnostic when ``images`` is empty).
        images:  Rendered images in extraction order.
        error:   True when ``message`` reports a failure.
    """

    version: int
    status: SessionStatus
    message: str
    images: tuple[RenderedImage, ...] = field(default_factory=tuple)
    error: bool = False

    @classmethod
    def empty(cls, version: int = 0, message: str = MSG_NO_RESPONSE) -> "ViewState":
        return cls(version=version, status=SessionStatus.IDLE, message=message)

    @classmethod
    def scanning(cls, version: int) -> "ViewState":
        return cls(version=version, status=SessionStatus.SCANNING, message=MSG_RENDERING)

    @classmethod
    def failed(cls, version: int, reason: str) -> "ViewState":
        return cls(
            version=version,
            status=SessionStatus.IDLE,
            message=f"Unable to render images: {reason}",
            error=True,
        )

    @classmethod
    def found(cls, version: int, images: tuple[RenderedImage, ...]) -> "ViewState":
        if not images:
            return cls.empty(version, MSG_NO_IMAGES)
        return cls(
            version=version,
            status=SessionStatus.IDLE,
            message=f"Found {len(images)} image(s).",
            images=images,
        )
