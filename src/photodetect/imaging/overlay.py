"""Detection overlay rendering.

Draws boxes and "<label> = <confidence>%" captions onto a copy of the
display image. Captions sit just above their box and are clamped so they
never start above the top edge nor run past the right edge of the canvas.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from PIL import Image, ImageDraw, ImageFont

from photodetect.imaging.palette import color_for

if TYPE_CHECKING:
    from collections.abc import Sequence

    from photodetect.config import Settings
    from photodetect.ml.detector import Detection

Color = tuple[int, int, int]


@dataclass(frozen=True)
class LabelStyle:
    """Stroke and caption styling shared by every overlay."""

    stroke_width: int = 4
    font_size: int = 26
    text_color: Color = (0, 0, 0)
    background_color: Color = (255, 255, 255)

    @classmethod
    def from_settings(cls, settings: Settings) -> LabelStyle:
        return cls(stroke_width=settings.box_stroke_width, font_size=settings.label_font_size)


@dataclass(frozen=True)
class LabelBox:
    """Placement of a caption's background rectangle on the canvas."""

    x: float
    y: float
    width: float
    height: float
    ascent: float


@lru_cache(maxsize=8)
def load_font(size: int) -> ImageFont.FreeTypeFont:
    """Return Pillow's bundled default font at ``size`` points."""
    return ImageFont.load_default(size=size)


def format_label(detection: Detection) -> str:
    """Return the caption text, e.g. ``"person = 87.6%"``."""
    return f"{detection.label} = {detection.confidence * 100:.1f}%"


def place_label(
    x: float,
    y: float,
    text_width: float,
    text_height: float,
    canvas_width: int,
) -> tuple[float, float]:
    """Return the top-left corner of a caption anchored above ``(x, y)``.

    The caption is pushed down to the top edge when it would start above the
    canvas, and shifted left when it would overflow the right edge. A caption
    wider than the canvas ends up with a negative x; that is left as is.
    """
    label_x = x
    label_y = y - text_height
    if label_y < 0:
        label_y = 0
    if label_x + text_width > canvas_width:
        label_x = canvas_width - text_width
    return label_x, label_y


def measure_label(
    detection: Detection,
    font: ImageFont.FreeTypeFont,
    canvas_width: int,
) -> LabelBox:
    """Measure the caption for ``detection`` and place it on the canvas."""
    text = format_label(detection)
    ascent, descent = font.getmetrics()
    text_width = font.getlength(text)
    text_height = ascent + descent
    label_x, label_y = place_label(detection.x, detection.y, text_width, text_height, canvas_width)
    return LabelBox(x=label_x, y=label_y, width=text_width, height=text_height, ascent=ascent)


def render(
    canvas: Image.Image,
    detections: Sequence[Detection] | None,
    style: LabelStyle | None = None,
) -> Image.Image:
    """Draw ``detections`` onto a copy of ``canvas``.

    Args:
        canvas: Display image. Never modified.
        detections: Detections in detector order, or None when detection has
            not run; None returns ``canvas`` itself.
        style: Overlay styling; defaults to ``LabelStyle()``.

    Returns:
        The annotated copy (or ``canvas`` when ``detections`` is None).
    """
    if detections is None:
        return canvas

    style = style or LabelStyle()
    font = load_font(style.font_size)

    annotated = canvas.copy()
    draw = ImageDraw.Draw(annotated)

    for index, detection in enumerate(detections):
        draw.rectangle(
            (detection.x, detection.y, detection.x + detection.w, detection.y + detection.h),
            outline=color_for(index),
            width=style.stroke_width,
        )

        label = measure_label(detection, font, annotated.width)
        draw.rectangle(
            (label.x, label.y, label.x + label.width, label.y + label.height),
            fill=style.background_color,
        )
        draw.text(
            (label.x, label.y + label.ascent),
            format_label(detection),
            fill=style.text_color,
            font=font,
            anchor="ls",
        )

    return annotated
