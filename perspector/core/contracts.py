"""
Core data types shared across the rectification stages.

Pixels are integer image coordinates; points are floating-point positions
used only for intermediate geometry (centroids, direction vectors).  A
``Rect`` names which anchor plays which corner of the target rectangle.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Tuple

# Coordinates are signed 32-bit values.  Negative values express positions
# outside the image during intermediate computation.
COORD_MAX = 2 ** 31 - 1


class Pixel(NamedTuple):
    x: int
    y: int


class Point(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    """
    Corner assignment of the four anchors.

    b = bottom (lower y), t = top (higher y), l = left, r = right.
    Every anchor appears exactly once.
    """
    bl: Pixel
    br: Pixel
    tr: Pixel
    tl: Pixel

    def as_tuple(self) -> Tuple[Pixel, Pixel, Pixel, Pixel]:
        return (self.bl, self.br, self.tr, self.tl)

    def label_of(self, pixel) -> str:
        """Return the corner label ('bl', 'br', 'tr' or 'tl') of *pixel*."""
        p = Pixel(*pixel)
        for label in ("bl", "br", "tr", "tl"):
            if getattr(self, label) == p:
                return label
        raise KeyError(f"{tuple(p)} is not a corner of this rect")


def as_pixels(points) -> Tuple[Pixel, ...]:
    """Coerce an iterable of (x, y) pairs into a tuple of integer pixels."""
    return tuple(Pixel(int(p[0]), int(p[1])) for p in points)
