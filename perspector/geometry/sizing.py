"""
Destination size from the anchors' bounding box and a width:height ratio.
"""

from __future__ import annotations

from typing import Tuple

from perspector.core.contracts import as_pixels
from perspector.core.errors import InvalidRatio


def bounding_box(anchors) -> Tuple[int, int, int, int]:
    """Return (min_x, min_y, max_x, max_y) of *anchors*."""
    pixels = as_pixels(anchors)
    if not pixels:
        raise ValueError("bounding box of an empty anchor set")
    xs = [p.x for p in pixels]
    ys = [p.y for p in pixels]
    return min(xs), min(ys), max(xs), max(ys)


def compute_sink_size(anchors, ratio_width: float = 1.0,
                      ratio_height: float = 1.0) -> Tuple[int, int]:
    """
    Pick (W, H) for the rectified image.

    Starts from the anchors' bounding box and expands the shorter side so that
    W / H matches ratio_width / ratio_height.  Sides are truncated to integers
    and never drop below one pixel.
    """
    try:
        ratio_width = float(ratio_width)
        ratio_height = float(ratio_height)
    except (TypeError, ValueError) as exc:
        raise InvalidRatio(f"ratio must be numeric: {exc}") from exc
    if not (ratio_width > 0 and ratio_height > 0):
        raise InvalidRatio(
            f"ratio must be positive, got {ratio_width}:{ratio_height}")

    min_x, min_y, max_x, max_y = bounding_box(anchors)
    width = max_x - min_x
    height = max_y - min_y
    ratio = ratio_width / ratio_height

    if width < height * ratio:
        width = int(height * ratio)
    elif width > height * ratio:
        height = int(width / ratio)
    return max(1, int(width)), max(1, int(height))
