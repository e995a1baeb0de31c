"""Fixed display colors for detection overlays, indexed cyclically."""

from __future__ import annotations

PALETTE: tuple[tuple[int, int, int], ...] = (
    (54, 67, 244),
    (99, 30, 233),
    (176, 39, 156),
    (183, 58, 103),
    (181, 81, 63),
    (243, 150, 33),
    (244, 169, 3),
    (212, 188, 0),
    (136, 150, 0),
    (80, 175, 76),
    (74, 195, 139),
    (57, 220, 205),
    (59, 235, 255),
    (7, 193, 255),
    (0, 152, 255),
    (34, 87, 255),
    (72, 85, 121),
    (158, 158, 158),
    (139, 125, 96),
)


def color_for(index: int) -> tuple[int, int, int]:
    """Return the palette color for the detection at ``index``."""
    return PALETTE[index % len(PALETTE)]
