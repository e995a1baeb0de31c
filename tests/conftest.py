"""Shared test helpers: synthetic images and a detector double."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

if TYPE_CHECKING:
    from photodetect.imaging.normalizer import NormalizedImage
    from photodetect.ml.detector import Detection


def encode_image(
    image: Image.Image,
    image_format: str = "PNG",
    orientation: int | None = None,
) -> bytes:
    """Encode ``image``, optionally tagging it with an EXIF orientation."""
    buffer = io.BytesIO()
    params: dict[str, object] = {}
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        params["exif"] = exif.tobytes()
    image.save(buffer, format=image_format, **params)
    return buffer.getvalue()


def solid_image_bytes(
    width: int,
    height: int,
    color: tuple[int, int, int] = (30, 120, 200),
    image_format: str = "PNG",
    orientation: int | None = None,
) -> bytes:
    return encode_image(Image.new("RGB", (width, height), color), image_format, orientation)


def split_image(width: int = 40, height: int = 20) -> Image.Image:
    """Left half red, right half blue."""
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[:, : width // 2] = (255, 0, 0)
    pixels[:, width // 2 :] = (0, 0, 255)
    return Image.fromarray(pixels)


class FakeDetector:
    """Detector double returning a canned result."""

    def __init__(
        self,
        result: list[Detection] | None = None,
        ready: bool = True,
        error: Exception | None = None,
    ) -> None:
        self.result = result
        self.ready = ready
        self.error = error
        self.init_calls = 0
        self.calls: list[tuple[NormalizedImage, bool]] = []

    def initialize(self) -> bool:
        self.init_calls += 1
        return self.ready

    def detect(self, image: NormalizedImage, use_acceleration: bool) -> list[Detection] | None:
        self.calls.append((image, use_acceleration))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture()
def fake_detector() -> FakeDetector:
    return FakeDetector(result=[])
