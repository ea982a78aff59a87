"""
Anchor handling and corner classification.

Four anchors picked on the source image describe the quadrilateral to
rectify.  Before a homography can be estimated, each anchor must be
dispatched to one corner of the target rectangle (bottom-left, bottom-right,
top-right, top-left).  The plane is split on the median x and the median y:

- one anchor per quadrant: the assignment is immediate;
- two anchors on a split axis (e.g. a losange): there is no answer;
- two anchors in two opposite quadrants: both an x-first and a y-first split
  are possible.  The candidate whose corner sequence follows the angular
  (trigonometric) order of the anchors around their centroid is kept, and
  the configuration is rejected when both or neither do.
"""

from __future__ import annotations

from enum import Enum
from functools import cmp_to_key
from typing import Iterator, List, Optional, Sequence, Tuple

from perspector.core.contracts import Pixel, Point, Rect, as_pixels
from perspector.core.errors import AmbiguousAnchors, WrongAnchorCount


class Position(Enum):
    """Relation of a direction vector to a reference direction."""
    LEFT = 1
    RIGHT = 2
    EQUAL = 4
    OPPOSED = 8
    UNDEF = 16


UNRESOLVABLE = (Position.EQUAL, Position.OPPOSED, Position.UNDEF)


class AnchorSet:
    """Up to four distinct anchors, kept in the order they were picked.

    The slot array has a fixed size; removing an anchor moves the last one
    into the freed slot.
    """

    CAPACITY = 4

    def __init__(self, pixels=()):
        self._slots: List[Optional[Pixel]] = [None] * self.CAPACITY
        self._count = 0
        for p in pixels:
            if not self.add(p):
                raise ValueError(f"cannot add anchor {tuple(p)}")

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[Pixel]:
        return iter(self._slots[:self._count])

    def __repr__(self) -> str:
        return f"AnchorSet({[tuple(p) for p in self]})"

    @property
    def full(self) -> bool:
        return self._count >= self.CAPACITY

    def add(self, pixel) -> bool:
        """Append *pixel*; return False when the set is full or already holds it."""
        p = Pixel(int(pixel[0]), int(pixel[1]))
        if self.full or p in self:
            return False
        self._slots[self._count] = p
        self._count += 1
        return True

    def __contains__(self, pixel) -> bool:
        return Pixel(*pixel) in self._slots[:self._count]

    def remove_near(self, pixel, radius: int = 0) -> Optional[Pixel]:
        """Remove the most recent anchor within *radius* of *pixel*.

        The neighbourhood is a square of half-side *radius*.  Anchors are
        scanned from the last added so that stacked anchors are erased in
        reverse order.  Returns the removed anchor, or None.
        """
        x, y = int(pixel[0]), int(pixel[1])
        for i in range(self._count - 1, -1, -1):
            a = self._slots[i]
            if abs(x - a.x) <= radius and abs(y - a.y) <= radius:
                self._count -= 1
                self._slots[i] = self._slots[self._count]
                self._slots[self._count] = None
                return a
        return None

    def clear(self) -> None:
        self._slots = [None] * self.CAPACITY
        self._count = 0

    def as_tuple(self) -> Tuple[Pixel, ...]:
        return tuple(self)


# ---------------------------------------------------------------------------
# Angular order around the centroid
# ---------------------------------------------------------------------------

def centroid(pixels: Sequence[Pixel]) -> Point:
    n = len(pixels)
    return Point(sum(p.x for p in pixels) / n, sum(p.y for p in pixels) / n)


def relative_position(p: Point, ref: Point) -> Position:
    """Return the position of vector *p* with respect to vector *ref*.

    LEFT means *p* is reached from *ref* by a counter-clockwise turn of less
    than half a revolution, RIGHT by a clockwise one.
    """
    if (p.x == 0 and p.y == 0) or (ref.x == 0 and ref.y == 0):
        return Position.UNDEF

    cross = ref.x * p.y - ref.y * p.x
    if cross == 0:
        if p.x * ref.x + p.y * ref.y > 0:
            return Position.EQUAL
        return Position.OPPOSED
    return Position.LEFT if cross > 0 else Position.RIGHT


def _offset(p: Pixel, origin: Point) -> Point:
    return Point(p.x - origin.x, p.y - origin.y)


def compare_angle(a: Pixel, b: Pixel, reference: Pixel, origin: Point) -> int:
    """Three-way comparison of the angles of *a* and *b* around *origin*.

    Angles are measured counter-clockwise starting from the direction of
    *reference*, so *reference* itself sorts first.  Returns 0 when the two
    vectors cannot be told apart (same direction or one of them null).
    """
    refn = _offset(reference, origin)
    an = _offset(a, origin)
    bn = _offset(b, origin)

    an_refn = relative_position(an, refn)
    an_bn = relative_position(an, bn)
    bn_refn = relative_position(bn, refn)

    if an_bn in (Position.EQUAL, Position.UNDEF):
        return 0
    if (an_refn is Position.EQUAL
            or (bn_refn is Position.LEFT and an_refn is Position.LEFT
                and an_bn is Position.RIGHT)
            or (bn_refn is Position.RIGHT
                and (an_bn is Position.RIGHT or an_refn is Position.LEFT))
            or (bn_refn is Position.OPPOSED and an_refn is Position.LEFT)):
        return -1
    return 1


def angular_order(pixels: Sequence[Pixel],
                  reference: Optional[Pixel] = None) -> List[Pixel]:
    """Sort *pixels* in trigonometric order around their centroid.

    The sort starts from *reference* (the first pixel by default).
    """
    pixels = as_pixels(pixels)
    if reference is None:
        reference = pixels[0]
    origin = centroid(pixels)
    key = cmp_to_key(lambda a, b: compare_angle(a, b, reference, origin))
    return sorted(pixels, key=key)


def is_rotation_of(order: Sequence[Pixel], rect: Rect) -> bool:
    """True when (bl, br, tr, tl) is a cyclic rotation of *order*."""
    corners = rect.as_tuple()
    if corners[0] not in order:
        return False
    start = list(order).index(corners[0])
    n = len(order)
    return all(order[(start + k) % n] == corners[k] for k in range(len(corners)))


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _check_anchors(anchors) -> Tuple[Pixel, ...]:
    pixels = as_pixels(anchors)
    if len(pixels) != 4:
        raise WrongAnchorCount(len(pixels))
    if len(set(pixels)) != 4:
        raise AmbiguousAnchors("two anchors share the same coordinates",
                               rule="duplicate-anchors")
    return pixels


def _lower_first(p: Pixel, q: Pixel, axis: str) -> Tuple[Pixel, Pixel]:
    if getattr(p, axis) < getattr(q, axis):
        return p, q
    return q, p


def _split_x_first(xs: Sequence[Pixel]) -> Rect:
    bl, tl = _lower_first(xs[0], xs[1], "y")
    br, tr = _lower_first(xs[2], xs[3], "y")
    return Rect(bl=bl, br=br, tr=tr, tl=tl)


def _split_y_first(ys: Sequence[Pixel]) -> Rect:
    bl, br = _lower_first(ys[0], ys[1], "x")
    tl, tr = _lower_first(ys[2], ys[3], "x")
    return Rect(bl=bl, br=br, tr=tr, tl=tl)


def _one_per_quadrant(xs: Sequence[Pixel], ys: Sequence[Pixel]) -> bool:
    """True when the x/y median split puts one anchor in each quadrant."""
    if xs[1].x == xs[2].x or ys[1].y == ys[2].y:
        return False
    low = (xs[0].y, xs[1].y)
    high = (xs[2].y, xs[3].y)
    some_below = any(l < h for l in low for h in high)
    some_above = any(l > h for l in low for h in high)
    return some_below and some_above


def _classify_diagonal(pixels: Sequence[Pixel], xs: Sequence[Pixel],
                       ys: Sequence[Pixel]) -> Rect:
    origin = centroid(pixels)
    vectors = [_offset(p, origin) for p in pixels]
    for i in range(len(vectors)):
        for j in range(i + 1, len(vectors)):
            relation = relative_position(vectors[i], vectors[j])
            if relation is Position.OPPOSED:
                raise AmbiguousAnchors(
                    f"opposite anchors {tuple(pixels[i])} and "
                    f"{tuple(pixels[j])} pass through the centroid "
                    "(parallelogram or straight line)",
                    rule="centroid-collinear")
            if relation in UNRESOLVABLE:
                raise AmbiguousAnchors(
                    f"anchors {tuple(pixels[i])} and {tuple(pixels[j])} are "
                    "aligned with the centroid",
                    rule="centroid-collinear")

    order = angular_order(pixels, reference=pixels[0])

    candidates = []
    if xs[1].x != xs[2].x and xs[0].y != xs[1].y and xs[2].y != xs[3].y:
        rect = _split_x_first(xs)
        if is_rotation_of(order, rect):
            candidates.append(rect)
    if ys[1].y != ys[2].y and ys[0].x != ys[1].x and ys[2].x != ys[3].x:
        rect = _split_y_first(ys)
        if is_rotation_of(order, rect):
            candidates.append(rect)

    if not candidates:
        raise AmbiguousAnchors("no split follows the anchors' angular order",
                               rule="no-consistent-split")
    if len(candidates) > 1:
        raise AmbiguousAnchors("x-first and y-first splits are both valid",
                               rule="competing-splits")
    return candidates[0]


def classify_anchors(anchors) -> Rect:
    """Assign four unordered anchors to the corners of a rectangle.

    Parameters
    ----------
    anchors : sequence of (x, y)
        Exactly four distinct pixels, in any order.

    Returns
    -------
    Rect
        The unique corner assignment.

    Raises
    ------
    WrongAnchorCount
        If *anchors* does not hold exactly four pixels.
    AmbiguousAnchors
        If no unique assignment exists; ``rule`` tells which check failed.
    """
    pixels = _check_anchors(anchors)
    xs = sorted(pixels, key=lambda p: p.x)
    ys = sorted(pixels, key=lambda p: p.y)

    if _one_per_quadrant(xs, ys):
        return _split_x_first(xs)

    if xs[1].x == xs[2].x or ys[1].y == ys[2].y:
        raise AmbiguousAnchors("two anchors lie on a split axis",
                               rule="degenerate-split")

    return _classify_diagonal(pixels, xs, ys)
