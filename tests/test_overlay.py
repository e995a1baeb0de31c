"""Tests for the detection overlay renderer and palette."""

from __future__ import annotations

import pytest
from PIL import Image

from photodetect.imaging.overlay import (
    LabelStyle,
    format_label,
    load_font,
    measure_label,
    place_label,
    render,
)
from photodetect.imaging.palette import PALETTE, color_for
from photodetect.ml.detector import Detection

GREEN = (0, 128, 0)
WHITE = (255, 255, 255)


def _canvas(width: int = 400, height: int = 300) -> Image.Image:
    return Image.new("RGB", (width, height), GREEN)


def _detection(x: float, y: float, w: float = 50, h: float = 50, label: str = "person") -> Detection:
    return Detection(x=x, y=y, w=w, h=h, label=label, confidence=0.5)


# ---------------------------------------------------------------------------
# Palette
# ---------------------------------------------------------------------------


class TestPalette:
    def test_palette_has_nineteen_colors(self) -> None:
        assert len(PALETTE) == 19

    def test_color_for_cycles(self) -> None:
        assert color_for(0) == PALETTE[0]
        assert color_for(18) == PALETTE[18]
        assert color_for(19) == PALETTE[0]
        assert color_for(40) == PALETTE[2]


# ---------------------------------------------------------------------------
# Label text and placement
# ---------------------------------------------------------------------------


class TestLabel:
    def test_label_text(self) -> None:
        detection = Detection(x=10, y=5, w=50, h=20, label="person", confidence=0.876)
        assert format_label(detection) == "person = 87.6%"

    @pytest.mark.parametrize(
        ("confidence", "text"),
        [(1.0, "dog = 100.0%"), (0.0, "dog = 0.0%"), (0.25, "dog = 25.0%")],
    )
    def test_label_rounding(self, confidence: float, text: str) -> None:
        detection = Detection(x=0, y=0, w=1, h=1, label="dog", confidence=confidence)
        assert format_label(detection) == text

    def test_label_sits_above_box(self) -> None:
        assert place_label(10, 100, text_width=80, text_height=24, canvas_width=400) == (10, 76)

    def test_label_clamped_to_top(self) -> None:
        assert place_label(10, 0, text_width=80, text_height=24, canvas_width=400) == (10, 0)

    def test_label_shifted_left_at_right_edge(self) -> None:
        assert place_label(350, 100, text_width=80, text_height=24, canvas_width=400) == (320, 76)

    def test_label_wider_than_canvas_goes_negative(self) -> None:
        assert place_label(5, 100, text_width=120, text_height=24, canvas_width=100) == (-20, 76)

    def test_measure_label_uses_font_metrics(self) -> None:
        font = load_font(26)
        ascent, descent = font.getmetrics()
        detection = Detection(x=10, y=0, w=50, h=20, label="person", confidence=0.876)

        label = measure_label(detection, font, canvas_width=400)

        assert label.height == ascent + descent
        assert label.ascent == ascent
        assert label.width == pytest.approx(font.getlength("person = 87.6%"))
        assert (label.x, label.y) == (10, 0)

    def test_measure_label_right_edge(self) -> None:
        font = load_font(26)
        label = measure_label(_detection(380, 100), font, canvas_width=400)
        assert label.x == pytest.approx(400 - label.width)


# ---------------------------------------------------------------------------
# render()
# ---------------------------------------------------------------------------


class TestRender:
    def test_none_returns_canvas_unchanged(self) -> None:
        canvas = _canvas()
        assert render(canvas, None) is canvas

    def test_empty_list_matches_none(self) -> None:
        canvas = _canvas()
        assert render(canvas, []).tobytes() == render(canvas, None).tobytes()

    def test_canvas_not_mutated(self) -> None:
        canvas = _canvas()
        before = canvas.tobytes()

        annotated = render(canvas, [_detection(20, 100)])

        assert canvas.tobytes() == before
        assert annotated is not canvas
        assert annotated.tobytes() != before

    def test_render_is_deterministic(self) -> None:
        canvas = _canvas()
        detections = [_detection(20, 100), _detection(150, 10, label="car"), _detection(390, 200, label="dog")]
        assert render(canvas, detections).tobytes() == render(canvas, detections).tobytes()

    def test_box_drawn_in_first_palette_color(self) -> None:
        annotated = render(_canvas(), [_detection(20, 100)])
        assert annotated.getpixel((20, 125)) == PALETTE[0]
        # Interior left untouched.
        assert annotated.getpixel((45, 125)) == GREEN

    def test_stroke_width(self) -> None:
        annotated = render(_canvas(), [_detection(20, 100)], LabelStyle(stroke_width=4))
        assert annotated.getpixel((23, 125)) == PALETTE[0]
        assert annotated.getpixel((25, 125)) == GREEN

    def test_colors_cycle_past_palette_length(self) -> None:
        detections = [_detection(10, 100)]
        detections += [_detection(300, 250, w=5, h=5) for _ in range(len(PALETTE) - 1)]
        detections.append(_detection(200, 100))

        annotated = render(_canvas(), detections)

        assert annotated.getpixel((10, 125)) == PALETTE[0]
        assert annotated.getpixel((200, 125)) == PALETTE[0]

    def test_label_background_drawn_above_box(self) -> None:
        font = load_font(26)
        detection = _detection(20, 100)
        label = measure_label(detection, font, canvas_width=400)

        annotated = render(_canvas(), [detection])

        assert annotated.getpixel((int(label.x) + 1, int(label.y) + 1)) == WHITE
        assert annotated.getpixel((int(label.x) + 1, int(label.y) - 2)) == GREEN

    def test_label_clamped_to_top_edge(self) -> None:
        annotated = render(_canvas(), [Detection(x=10, y=0, w=50, h=20, label="person", confidence=0.876)])
        assert annotated.getpixel((11, 0)) == WHITE

    def test_label_clamped_to_right_edge(self) -> None:
        font = load_font(26)
        detection = _detection(380, 100)
        label = measure_label(detection, font, canvas_width=400)

        annotated = render(_canvas(), [detection])

        assert annotated.getpixel((399, int(label.y) + 1)) == WHITE
        assert annotated.getpixel((int(label.x) - 2, int(label.y) + 1)) == GREEN
