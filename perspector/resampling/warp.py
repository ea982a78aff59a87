"""
Perspective rectification via forward mapping and gap filling.

Every source pixel is pushed through the homography into the destination
raster ("sink").  Several source pixels may land on the same destination
pixel, in which case the last one in scan order (x outer, y inner) wins.
Forward mapping leaves holes wherever the transform stretches the image;
each hole is then filled with the mean colour of the directly mapped pixels
found on the border of the smallest square window around it.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from perspector.core.contracts import COORD_MAX
from perspector.core.errors import (
    AllocationFailure,
    EmptyProjection,
    PerspectiveError,
    SizeOverflow,
)
from perspector.geometry.homography import make_transform_matrix, round_half_away

# Upper bound on the number of source pixels projected per batch.
FORWARD_CHUNK_PIXELS = 1 << 20


def check_sink_size(width: int, height: int) -> None:
    """Reject destination sizes that are empty or overflow coordinate arithmetic."""
    if int(width) != width or int(height) != height:
        raise SizeOverflow(f"sink size must be integral, got {width} x {height}")
    width, height = int(width), int(height)
    if width <= 0 or height <= 0:
        raise SizeOverflow(f"sink size must be positive, got {width} x {height}")
    if COORD_MAX // width < height:
        raise SizeOverflow(
            f"sink of {width} x {height} pixels is too big to be allocated")


def _check_source(source) -> np.ndarray:
    source = np.asarray(source)
    if source.ndim != 3 or source.shape[2] != 4:
        raise ValueError(
            f"source must be an H x W x 4 array, got shape {source.shape}")
    if source.dtype != np.uint8:
        raise ValueError(f"source must be uint8, got {source.dtype}")
    return source


def forward_map(H: np.ndarray, source: np.ndarray, sink_width: int,
                sink_height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Project every pixel of *source* into a new sink raster.

    Parameters
    ----------
    H : np.ndarray
        3 x 3 homography mapping source (x, y) to sink (x, y).
    source : np.ndarray
        H x W x 4 uint8 source raster.
    sink_width, sink_height : int
        Destination size.

    Returns
    -------
    sink : np.ndarray
        sink_height x sink_width x 4 uint8 raster; unmapped pixels are zero.
    mask : np.ndarray
        sink_height x sink_width bool array marking directly mapped pixels.
    """
    try:
        sink = np.zeros((sink_height, sink_width, 4), dtype=np.uint8)
        mask = np.zeros((sink_height, sink_width), dtype=bool)
    except MemoryError as exc:
        raise AllocationFailure("sink buffers could not be allocated") from exc

    bg_h, bg_w = source.shape[:2]
    if bg_h == 0 or bg_w == 0:
        return sink, mask

    flat_sink = sink.reshape(-1, 4)
    flat_mask = mask.reshape(-1)
    cols_per_chunk = max(1, FORWARD_CHUNK_PIXELS // bg_h)

    # Chunks are visited in scan order, so a later chunk overwriting an
    # earlier one keeps the last-write-wins rule.
    for x0 in range(0, bg_w, cols_per_chunk):
        x1 = min(bg_w, x0 + cols_per_chunk)
        xx, yy = np.meshgrid(np.arange(x0, x1), np.arange(bg_h), indexing="ij")
        src_x = xx.ravel()
        src_y = yy.ravel()

        homog = np.vstack([src_x, src_y, np.ones_like(src_x)]).astype(float)
        out = H @ homog
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            dst_x = round_half_away(out[0] / out[2])
            dst_y = round_half_away(out[1] / out[2])

        inside = (
            np.isfinite(dst_x) & np.isfinite(dst_y) &
            (dst_x >= 0) & (dst_x < sink_width) &
            (dst_y >= 0) & (dst_y < sink_height)
        )
        if not np.any(inside):
            continue

        src_x = src_x[inside]
        src_y = src_y[inside]
        dst_index = (dst_y[inside].astype(np.int64) * sink_width +
                     dst_x[inside].astype(np.int64))

        # First occurrence in the reversed sequence is the last in scan order.
        targets, first_rev = np.unique(dst_index[::-1], return_index=True)
        winners = dst_index.size - 1 - first_rev

        flat_sink[targets] = source[src_y[winners], src_x[winners]]
        flat_mask[targets] = True

    return sink, mask


def _prefix_sums(plane: np.ndarray):
    """Cumulative sums of *plane* down columns and along rows, zero-padded."""
    h, w = plane.shape
    col_cum = np.zeros((h + 1, w), dtype=np.int64)
    row_cum = np.zeros((h, w + 1), dtype=np.int64)
    np.cumsum(plane, axis=0, out=col_cum[1:])
    np.cumsum(plane, axis=1, out=row_cum[:, 1:])
    return col_cum, row_cum


def _border_sums(col_cum: np.ndarray, row_cum: np.ndarray,
                 px: np.ndarray, py: np.ndarray, radius,
                 width: int, height: int) -> np.ndarray:
    """Sum a plane over the border of square windows clipped to the raster.

    Left and right columns are summed over the full window height, then top
    and bottom rows over the full window width, so window corners count
    twice.  A window one pixel wide (or tall) samples that column (or row)
    once.
    """
    x_min = np.maximum(px - radius, 0)
    x_max = np.minimum(px + radius, width - 1)
    y_min = np.maximum(py - radius, 0)
    y_max = np.minimum(py + radius, height - 1)

    total = col_cum[y_max + 1, x_min] - col_cum[y_min, x_min]
    total = total + np.where(
        x_max != x_min, col_cum[y_max + 1, x_max] - col_cum[y_min, x_max], 0)
    total = total + row_cum[y_min, x_max + 1] - row_cum[y_min, x_min]
    total = total + np.where(
        y_max != y_min, row_cum[y_max, x_max + 1] - row_cum[y_max, x_min], 0)
    return total


def fill_gaps(sink: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Fill every unmarked pixel of *sink* in place from its marked neighbours.

    For each hole, square windows of radius 1, 2, 3, ... are tried and only
    their border is sampled.  At the first radius where marked pixels are
    found, the hole receives the truncated mean of their colours.  Only
    directly mapped pixels are sampled, never holes filled earlier.

    Returns
    -------
    np.ndarray
        *sink*, for convenience.
    """
    height, width = mask.shape
    py, px = np.nonzero(~mask)
    if px.size == 0:
        return sink
    if not mask.any():
        raise EmptyProjection("no source pixel was mapped into the sink")

    px = px.astype(np.int64)
    py = py.astype(np.int64)

    try:
        marked = mask.astype(np.int64)
        col_cum, row_cum = _prefix_sums(marked)
    except MemoryError as exc:
        raise AllocationFailure("gap filling buffers could not be allocated") from exc

    # Stage 1: smallest radius with at least one marked border pixel.
    radius_found = np.zeros(px.size, dtype=np.int64)
    counts = np.zeros(px.size, dtype=np.int64)
    todo = np.arange(px.size)
    for radius in range(1, max(width, height) + 1):
        if todo.size == 0:
            break
        found = _border_sums(col_cum, row_cum, px[todo], py[todo], radius,
                             width, height)
        hit = found > 0
        radius_found[todo[hit]] = radius
        counts[todo[hit]] = found[hit]
        todo = todo[~hit]

    if todo.size:
        raise EmptyProjection(
            f"{todo.size} sink pixels have no mapped neighbour")

    # Stage 2: channel means at that radius.
    for c in range(sink.shape[2]):
        col_cum, row_cum = _prefix_sums(sink[:, :, c].astype(np.int64) * marked)
        sums = _border_sums(col_cum, row_cum, px, py, radius_found,
                            width, height)
        sink[py, px, c] = (sums // counts).astype(np.uint8)

    return sink


def rectify(source: np.ndarray, anchors, sink_width: int,
            sink_height: int) -> np.ndarray:
    """Rectify the quadrilateral outlined by *anchors* into a new raster.

    Parameters
    ----------
    source : np.ndarray
        H x W x 4 uint8 RGBA raster.
    anchors : sequence of (x, y)
        The four anchors, in source pixel coordinates, in any order.
    sink_width, sink_height : int
        Size of the destination raster.

    Returns
    -------
    np.ndarray
        sink_height x sink_width x 4 uint8 raster owned by the caller.

    Raises
    ------
    PerspectiveError
        Any of its subclasses; no raster is produced in that case.
    """
    source = _check_source(source)
    check_sink_size(sink_width, sink_height)
    sink_width, sink_height = int(sink_width), int(sink_height)
    H = make_transform_matrix(anchors, sink_width, sink_height)

    print(f"  Forward-mapping {source.shape[1]}×{source.shape[0]} source "
          f"onto {sink_width}×{sink_height} sink...")
    try:
        sink, mask = forward_map(H, source, sink_width, sink_height)

        n_mapped = int(np.count_nonzero(mask))
        if n_mapped == 0:
            raise EmptyProjection("no source pixel was mapped into the sink")
        print(f"  {n_mapped} / {mask.size} sink pixels mapped directly")

        if n_mapped < mask.size:
            print("  Filling gaps...")
            fill_gaps(sink, mask)
    except MemoryError as exc:
        # Scratch buffers (index grids, prefix sums) can fail after the sink.
        raise AllocationFailure("out of memory while resampling") from exc

    return sink


def process(source: np.ndarray, anchors, sink_width: int,
            sink_height: int) -> Tuple[bool, Optional[np.ndarray]]:
    """Rectify *source*, reporting failure instead of raising.

    Returns
    -------
    ok : bool
        Whether a raster was produced.
    sink : np.ndarray or None
        The rectified raster on success, *None* otherwise.
    """
    try:
        sink = rectify(source, anchors, sink_width, sink_height)
    except PerspectiveError as exc:
        print(f"  Rectification failed [{exc.rule}]: {exc}")
        return False, None
    return True, sink
