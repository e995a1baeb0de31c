"""Image acquisition and normalization.

Turns arbitrary user-selected image bytes into two independent buffers:

* a NormalizedImage: RGB uint8 array downsampled by a power-of-two factor so
  that neither side drops below the target dimension, fed to the detector;
* a DisplayImage: the full-resolution picture used as the rendering canvas.

Both are rotated upright according to the EXIF orientation tag.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import ExifTags, Image, UnidentifiedImageError

from photodetect.errors import DecodeError, MetadataReadError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_TARGET_MIN_DIMENSION: int = 640

# EXIF orientation value -> clockwise rotation in degrees. Mirrored variants
# (2, 4, 5, 7) are deliberately absent: only rotation is corrected.
ORIENTATION_ROTATIONS: dict[int, int] = {
    1: 0,
    6: 90,
    3: 180,
    8: 270,
}

# Pillow's ROTATE_* transposes turn counter-clockwise.
_CLOCKWISE_TRANSPOSE: dict[int, Image.Transpose] = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


@dataclass(frozen=True)
class SourceImage:
    """Encoded image bytes with the dimensions reported by the header."""

    data: bytes
    width: int
    height: int
    format: str | None = None

    @classmethod
    def from_bytes(cls, data: bytes, max_pixels: int | None = None) -> SourceImage:
        """Probe the image header without decoding pixel data.

        Raises:
            DecodeError: If the bytes are not a recognized image, or the
                reported size exceeds ``max_pixels``.
        """
        with _open(data) as probe:
            width, height = probe.size
            image_format = probe.format

        if width <= 0 or height <= 0:
            raise DecodeError(f"Image reports invalid size {width}x{height}")
        if max_pixels is not None and width * height > max_pixels:
            raise DecodeError(f"Image is {width}x{height}, exceeding the {max_pixels} pixel limit")
        return cls(data=data, width=width, height=height, format=image_format)


@dataclass(frozen=True, eq=False)
class NormalizedImage:
    """Reduced-resolution, upright RGB buffer for inference."""

    pixels: NDArray[np.uint8]
    factor: int
    rotation: int = 0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True, eq=False)
class DisplayImage:
    """Full-resolution, upright RGB canvas for presentation."""

    image: Image.Image
    rotation: int = 0

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


def compute_downsample_factor(width: int, height: int, target_min_dimension: int = DEFAULT_TARGET_MIN_DIMENSION) -> int:
    """Return the largest power-of-two factor keeping both sides >= the target.

    Halving stops as soon as either side's next halving would fall under
    ``target_min_dimension``; images already below twice the target in either
    dimension get a factor of 1.
    """
    factor = 1
    while width // 2 >= target_min_dimension and height // 2 >= target_min_dimension:
        width //= 2
        height //= 2
        factor *= 2
    return factor


def rotation_for_orientation(orientation: object) -> int:
    """Map an EXIF orientation value to a clockwise rotation in degrees."""
    if not isinstance(orientation, int):
        return 0
    return ORIENTATION_ROTATIONS.get(orientation, 0)


def read_orientation(image: Image.Image) -> int | None:
    """Return the raw EXIF orientation value, or None if the tag is absent.

    Raises:
        MetadataReadError: If the EXIF block cannot be parsed.
    """
    try:
        exif = image.getexif()
        return exif.get(ExifTags.Base.Orientation)
    except Exception as exc:
        raise MetadataReadError(f"Unreadable EXIF metadata: {exc}") from exc


def rotate(image: Image.Image, degrees: int) -> Image.Image:
    """Rotate clockwise by 0/90/180/270 degrees without resampling."""
    transpose = _CLOCKWISE_TRANSPOSE.get(degrees)
    if transpose is None:
        return image
    return image.transpose(transpose)


def normalize(
    source: SourceImage,
    target_min_dimension: int = DEFAULT_TARGET_MIN_DIMENSION,
) -> tuple[NormalizedImage, DisplayImage]:
    """Decode ``source`` into an inference buffer and a display canvas.

    Args:
        source: Probed source image.
        target_min_dimension: Smallest side length the inference buffer may
            be reduced to.

    Returns:
        The downsampled NormalizedImage and the full-resolution DisplayImage,
        both rotated upright.

    Raises:
        DecodeError: If the pixel data cannot be decoded. No partial result
            is produced.
    """
    factor = compute_downsample_factor(source.width, source.height, target_min_dimension)
    reduced_size = (source.width // factor, source.height // factor)

    with _open(source.data) as handle:
        if factor > 1:
            # JPEG decodes directly at a reduced scale; other formats ignore this.
            handle.draft("RGB", reduced_size)
        reduced = _decode_rgb(handle)
        if reduced.size != reduced_size:
            reduced = reduced.resize(reduced_size, Image.Resampling.BOX)

    with _open(source.data) as handle:
        display = _decode_rgb(handle)
        rotation = _orientation_rotation(handle)

    logger.debug(
        "Normalized %dx%d %s image (factor=%d, rotation=%d)",
        source.width,
        source.height,
        source.format,
        factor,
        rotation,
    )

    normalized = NormalizedImage(
        pixels=np.asarray(rotate(reduced, rotation), dtype=np.uint8),
        factor=factor,
        rotation=rotation,
    )
    return normalized, DisplayImage(image=rotate(display, rotation), rotation=rotation)


def _open(data: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Cannot identify image: {exc}") from exc
    except (OSError, ValueError) as exc:
        raise DecodeError(f"Cannot read image header: {exc}") from exc


def _decode_rgb(image: Image.Image) -> Image.Image:
    try:
        image.load()
    except (OSError, ValueError, SyntaxError, EOFError) as exc:
        raise DecodeError(f"Cannot decode image data: {exc}") from exc
    if image.mode != "RGB":
        return image.convert("RGB")
    return image.copy()


def _orientation_rotation(image: Image.Image) -> int:
    try:
        orientation = read_orientation(image)
    except MetadataReadError:
        logger.warning("Could not read orientation metadata, assuming upright", exc_info=True)
        return 0
    return rotation_for_orientation(orientation)
