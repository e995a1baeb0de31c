"""Detection session: the current image, its buffers, and its detections.

A session holds at most one selected image. Selecting a new image replaces
the source, both decoded buffers and the detection list together, or leaves
everything untouched when decoding fails.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from photodetect.errors import DetectorUnavailable, NoImageSelected
from photodetect.imaging.normalizer import DEFAULT_TARGET_MIN_DIMENSION, SourceImage, normalize
from photodetect.imaging.overlay import LabelStyle, render

if TYPE_CHECKING:
    from PIL import Image

    from photodetect.config import Settings
    from photodetect.imaging.normalizer import DisplayImage, NormalizedImage
    from photodetect.ml.detector import Detection, Detector

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SessionState:
    """Everything derived from one selected image.

    ``detections`` is None until detection runs on this image, and an empty
    tuple when it ran and found nothing.
    """

    source: SourceImage
    normalized: NormalizedImage
    display: DisplayImage
    detections: tuple[Detection, ...] | None = None


class DetectionSession:
    """Owns the current image state and serializes operations on it."""

    def __init__(
        self,
        detector: Detector,
        target_min_dimension: int = DEFAULT_TARGET_MIN_DIMENSION,
        max_image_pixels: int | None = None,
        style: LabelStyle | None = None,
    ) -> None:
        self._detector = detector
        self._target_min_dimension = target_min_dimension
        self._max_image_pixels = max_image_pixels
        self._style = style or LabelStyle()
        self._state: SessionState | None = None
        self._detector_ready: bool | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, detector: Detector, settings: Settings) -> DetectionSession:
        return cls(
            detector,
            target_min_dimension=settings.target_min_dimension,
            max_image_pixels=settings.max_image_pixels,
            style=LabelStyle.from_settings(settings),
        )

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def detector_ready(self) -> bool:
        return bool(self._detector_ready)

    def initialize_detector(self) -> bool:
        """Initialize the detector once; later calls return the first result."""
        with self._lock:
            if self._detector_ready is None:
                self._detector_ready = self._detector.initialize()
                if not self._detector_ready:
                    logger.error("Detector initialization failed, detection disabled")
            return self._detector_ready

    def select_image(self, data: bytes) -> SessionState:
        """Decode ``data`` and make it the current image.

        Raises:
            DecodeError: If ``data`` is not a decodable image. The previous
                state is kept.
        """
        source = SourceImage.from_bytes(data, max_pixels=self._max_image_pixels)
        normalized, display = normalize(source, self._target_min_dimension)
        state = SessionState(source=source, normalized=normalized, display=display)
        with self._lock:
            self._state = state
        logger.info(
            "Selected %dx%d image (factor=%d, rotation=%d)",
            source.width,
            source.height,
            normalized.factor,
            display.rotation,
        )
        return state

    def run_detection(self, use_acceleration: bool = False) -> list[Detection] | None:
        """Detect objects in the current image and remember the result.

        Returns:
            Detections in display-image pixels, or None when the detector did
            not run or raised.

        Raises:
            NoImageSelected: If no image has been selected.
            DetectorUnavailable: If the detector failed to initialize.
        """
        with self._lock:
            state = self._require_state()
            if self._detector_ready is False:
                raise DetectorUnavailable("Detector failed to initialize")

            try:
                found = self._detector.detect(state.normalized, use_acceleration)
            except Exception:
                logger.exception("Detector raised, treating detection as not run")
                found = None
            detections = None if found is None else tuple(self._to_display(state, found))
            self._state = replace(state, detections=detections)

        if detections is None:
            logger.warning("Detection did not run, showing the plain image")
            return None
        return list(detections)

    def annotated(self) -> Image.Image:
        """Render the current detections onto the display image.

        Raises:
            NoImageSelected: If no image has been selected.
        """
        with self._lock:
            state = self._require_state()
        return render(state.display.image, state.detections, self._style)

    def _require_state(self) -> SessionState:
        if self._state is None:
            raise NoImageSelected("No image selected")
        return self._state

    @staticmethod
    def _to_display(state: SessionState, detections: list[Detection]) -> list[Detection]:
        sx = state.display.width / state.normalized.width
        sy = state.display.height / state.normalized.height
        return [detection.scaled(sx, sy) for detection in detections]
