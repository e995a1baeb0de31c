"""Exception types raised by the PhotoDetect core."""

from __future__ import annotations


class PhotoDetectError(Exception):
    """Base class for all PhotoDetect errors."""


class DecodeError(PhotoDetectError):
    """The source bytes could not be interpreted as an image."""


class MetadataReadError(PhotoDetectError):
    """Orientation metadata is missing or unreadable.

    Recovered locally by the normalizer (rotation defaults to 0); never
    surfaced to callers.
    """


class DetectorUnavailable(PhotoDetectError):
    """The detector failed to initialize and cannot run."""


class NoImageSelected(PhotoDetectError):
    """An operation needs a selected image but the session has none."""
