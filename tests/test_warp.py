"""
Pytest for the resampler: forward mapping with last-write-wins collisions,
border-only gap filling, failure modes and determinism.  Rasters are built
on the fly with numpy.
"""
from __future__ import annotations

import numpy as np
import pytest

from perspector.core.errors import (
    AllocationFailure,
    AmbiguousAnchors,
    EmptyProjection,
    SizeOverflow,
)
from perspector.geometry.homography import make_transform_matrix
from perspector.resampling.warp import (
    check_sink_size,
    fill_gaps,
    forward_map,
    process,
    rectify,
)


def _coded_source(w: int, h: int) -> np.ndarray:
    """RGBA raster whose red channel holds x and green channel holds y."""
    img = np.zeros((h, w, 4), np.uint8)
    img[:, :, 0] = np.arange(w)[np.newaxis, :]
    img[:, :, 1] = np.arange(h)[:, np.newaxis]
    img[:, :, 2] = 77
    img[:, :, 3] = 255
    return img


def _random_source(w: int, h: int, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(h, w, 4), dtype=np.uint8)


# ---------- Forward mapping ---------- #

def test_identity_mapping_copies_source():
    src = _random_source(4, 4)
    sink = rectify(src, [(0, 0), (3, 0), (3, 3), (0, 3)], 3, 3)
    np.testing.assert_array_equal(sink, src[:3, :3])


def test_last_source_pixel_in_scan_order_wins():
    src = _coded_source(6, 6)
    H = make_transform_matrix([(0, 0), (6, 0), (6, 6), (0, 6)], 2, 2)
    sink, mask = forward_map(H, src, 2, 2)

    assert mask.all()
    # Destination x = 0 collects source x in {0, 1}, x = 1 collects {2, 3, 4}.
    np.testing.assert_array_equal(sink[0, 0], src[1, 1])
    np.testing.assert_array_equal(sink[0, 1], src[1, 4])
    np.testing.assert_array_equal(sink[1, 0], src[4, 1])
    np.testing.assert_array_equal(sink[1, 1], src[4, 4])


def test_forward_map_leaves_holes_when_upscaling():
    src = _coded_source(3, 3)
    H = make_transform_matrix([(0, 0), (2, 0), (2, 2), (0, 2)], 4, 4)
    _, mask = forward_map(H, src, 4, 4)
    expected = np.zeros((4, 4), bool)
    expected[0::2, 0::2] = True
    np.testing.assert_array_equal(mask, expected)


def test_forward_map_chunks_keep_scan_order(monkeypatch):
    import perspector.resampling.warp as warp

    src = _coded_source(6, 6)
    H = make_transform_matrix([(0, 0), (6, 0), (6, 6), (0, 6)], 2, 2)
    whole, whole_mask = forward_map(H, src, 2, 2)
    monkeypatch.setattr(warp, "FORWARD_CHUNK_PIXELS", 6)
    chunked, chunked_mask = forward_map(H, src, 2, 2)
    np.testing.assert_array_equal(whole, chunked)
    np.testing.assert_array_equal(whole_mask, chunked_mask)


# ---------- Gap filling ---------- #

def test_gap_filling_uses_truncated_border_means():
    src = np.zeros((3, 3, 4), np.uint8)
    src[0, 0] = (10, 20, 30, 255)
    src[0, 1] = (11, 21, 31, 255)
    src[1, 0] = (100, 100, 100, 255)
    src[1, 1] = (50, 60, 70, 255)

    sink = rectify(src, [(0, 0), (2, 0), (2, 2), (0, 2)], 4, 4)

    # Directly mapped pixels keep their colour.
    np.testing.assert_array_equal(sink[0, 0], src[0, 0])
    np.testing.assert_array_equal(sink[0, 2], src[0, 1])
    np.testing.assert_array_equal(sink[2, 0], src[1, 0])
    np.testing.assert_array_equal(sink[2, 2], src[1, 1])
    # (1, 0) sees (0, 0) and (2, 0), each twice: (10 + 11) / 2 truncated.
    np.testing.assert_array_equal(sink[0, 1], [10, 20, 30, 255])
    # (1, 1) sees the four window corners, each twice.
    np.testing.assert_array_equal(sink[1, 1], [42, 50, 57, 255])
    # (3, 3) only reaches (2, 2).
    np.testing.assert_array_equal(sink[3, 3], src[1, 1])
    # (3, 0) only reaches (2, 0).
    np.testing.assert_array_equal(sink[0, 3], src[0, 1])


def test_gap_filling_samples_only_mapped_pixels():
    sink = np.zeros((1, 5, 4), np.uint8)
    mask = np.zeros((1, 5), bool)
    sink[0, 0] = (200, 0, 0, 255)
    mask[0, 0] = True
    fill_gaps(sink, mask)
    # Every hole reaches back to x = 0, never to a freshly filled neighbour.
    for x in range(5):
        np.testing.assert_array_equal(sink[0, x], [200, 0, 0, 255])


def test_gap_filling_single_column():
    sink = np.zeros((3, 1, 4), np.uint8)
    mask = np.zeros((3, 1), bool)
    sink[0, 0] = (9, 8, 7, 6)
    mask[0, 0] = True
    fill_gaps(sink, mask)
    np.testing.assert_array_equal(sink[:, 0], [[9, 8, 7, 6]] * 3)


def test_gap_filling_requires_a_mapped_pixel():
    sink = np.zeros((2, 2, 4), np.uint8)
    with pytest.raises(EmptyProjection):
        fill_gaps(sink, np.zeros((2, 2), bool))


def test_no_pixel_left_unset():
    colour = np.array([200, 100, 50, 255], np.uint8)
    src = np.tile(colour, (60, 80, 1))
    anchors = [(12, 5), (70, 14), (66, 55), (3, 41)]
    sink = rectify(src, anchors, 150, 120)
    assert sink.shape == (120, 150, 4)
    assert np.all(sink == colour)


# ---------- Failures ---------- #

def test_non_classifiable_anchors_produce_no_raster():
    src = _random_source(8, 8)
    ok, sink = process(src, [(0, 0), (1, 1), (2, 2), (3, 3)], 8, 8)
    assert ok is False
    assert sink is None
    with pytest.raises(AmbiguousAnchors):
        rectify(src, [(0, 1), (0, -1), (1, 0), (2, 0)], 8, 8)


def test_out_of_memory_while_filling_gaps_produces_no_raster(monkeypatch):
    import perspector.resampling.warp as warp

    real_prefix_sums = warp._prefix_sums
    calls = []

    def prefix_sums_failing_on_channels(plane):
        calls.append(plane.shape)
        if len(calls) >= 2:
            raise MemoryError
        return real_prefix_sums(plane)

    monkeypatch.setattr(warp, "_prefix_sums", prefix_sums_failing_on_channels)
    src = _random_source(3, 3)
    square = [(0, 0), (2, 0), (2, 2), (0, 2)]

    ok, sink = process(src, square, 4, 4)
    assert ok is False
    assert sink is None

    with pytest.raises(AllocationFailure) as info:
        rectify(src, square, 4, 4)
    assert info.value.rule == "allocation"


def test_size_overflow_is_rejected_before_allocation():
    src = _random_source(8, 8)
    anchors = [(0, 0), (7, 0), (7, 7), (0, 7)]
    with pytest.raises(SizeOverflow):
        rectify(src, anchors, 70000, 70000)
    ok, sink = process(src, anchors, 70000, 70000)
    assert not ok and sink is None


@pytest.mark.parametrize("size", [(0, 10), (10, -1), (2.5, 3)])
def test_invalid_sink_sizes(size):
    with pytest.raises(SizeOverflow):
        check_sink_size(*size)


def test_anchors_outside_source_project_nothing():
    src = _random_source(2, 2)
    with pytest.raises(EmptyProjection):
        rectify(src, [(100, 100), (200, 100), (200, 200), (100, 200)], 10, 10)


def test_source_must_be_rgba():
    with pytest.raises(ValueError):
        rectify(np.zeros((4, 4, 3), np.uint8), [(0, 0), (3, 0), (3, 3), (0, 3)], 3, 3)


# ---------- Determinism ---------- #

def test_repeated_rectification_is_byte_identical():
    src = _random_source(120, 90, seed=3)
    anchors = [(20, 12), (101, 30), (95, 80), (8, 70)]
    ok1, a = process(src, anchors, 140, 100)
    ok2, b = process(src, anchors, 140, 100)
    assert ok1 and ok2
    assert a.tobytes() == b.tobytes()
