"""Object detector contract.

Implementations: YOLOv5 via ONNX Runtime (``photodetect.ml.yolov5``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from photodetect.imaging.normalizer import NormalizedImage


@dataclass(frozen=True)
class Detection:
    """A single detected object.

    Coordinates are in pixels of the image the detection refers to: the
    normalized image as returned by a detector, the display image once the
    session has rescaled it.
    """

    x: float
    y: float
    w: float
    h: float
    label: str
    confidence: float

    def __post_init__(self) -> None:
        if self.w < 0 or self.h < 0:
            raise ValueError(f"Detection size must be non-negative, got {self.w}x{self.h}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Detection confidence must be within [0, 1], got {self.confidence}")

    def scaled(self, sx: float, sy: float) -> Detection:
        """Return a copy with the box scaled by ``sx`` horizontally and ``sy`` vertically."""
        return Detection(
            x=self.x * sx,
            y=self.y * sy,
            w=self.w * sx,
            h=self.h * sy,
            label=self.label,
            confidence=self.confidence,
        )


class Detector(Protocol):
    """Protocol for object detection models."""

    def initialize(self) -> bool:
        """Load the model. Must be called once before ``detect``.

        Returns:
            False if detection is unavailable for the rest of the session.
        """
        ...

    def detect(self, image: NormalizedImage, use_acceleration: bool) -> list[Detection] | None:
        """Detect objects in an upright normalized image.

        Args:
            image: Normalized RGB image.
            use_acceleration: Run on the accelerated execution provider.

        Returns:
            Detections in the image's pixel space, ordered by descending
            confidence; an empty list when nothing was found; None when
            detection did not run.
        """
        ...
