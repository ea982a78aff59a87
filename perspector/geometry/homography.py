"""
Homography estimation from the four classified anchors.

A planar homography (projective transformation) maps the anchors'
quadrilateral onto the corners of the target rectangle.  Since the transform
is not linear in 2-D, it is expressed in homogeneous coordinates as a 3x3
matrix defined up to scale, so only 8 coefficients are free.  Each anchor
contributes two linear equations (Direct Linear Transform); the homogeneous
system is solved with SVD.
"""

import numpy as np

from perspector.core.contracts import Rect
from perspector.core.errors import DegenerateTransform
from perspector.geometry.anchors import classify_anchors

# Relative size, against the largest singular value, below which the eighth
# singular value means the system has lost rank.
RANK_TOLERANCE = 1e-12


def rect_targets(width: int, height: int) -> np.ndarray:
    """Destination corners (bl, br, tr, tl) as a 4 x 2 array of (x, y)."""
    return np.array([
        [0,     0     ],
        [width, 0     ],
        [width, height],
        [0,     height],
    ], dtype=float)


def build_system(rect: Rect, width: int, height: int) -> np.ndarray:
    """Build the 9 x 9 DLT system for the corner correspondences of *rect*.

    Rows 0-7 hold two equations per anchor; row 8 is left at zero.  The
    unknowns are the entries of the transform matrix in row-major order.
    """
    A = np.zeros((9, 9), dtype=float)
    targets = rect_targets(width, height)
    for i, (src, dst) in enumerate(zip(rect.as_tuple(), targets)):
        x, y = float(src.x), float(src.y)
        x2, y2 = dst

        A[2 * i]     = [x, y, 1, 0, 0, 0, -x2 * x, -x2 * y, -x2]
        A[2 * i + 1] = [0, 0, 0, x, y, 1, -y2 * x, -y2 * y, -y2]
    return A


def compute_homography(rect: Rect, width: int, height: int) -> np.ndarray:
    """Estimate the 3x3 matrix mapping the anchors of *rect* to a rectangle.

    Parameters
    ----------
    rect : Rect
        Classified anchors.
    width, height : int
        Size of the destination rectangle.

    Returns
    -------
    M : np.ndarray
        3 x 3 matrix, up to scale, such that ``M @ [bl, 1]`` is proportional
        to ``[0, 0, 1]``, ``M @ [br, 1]`` to ``[width, 0, 1]``, ``M @ [tr, 1]``
        to ``[width, height, 1]`` and ``M @ [tl, 1]`` to ``[0, height, 1]``.

    Raises
    ------
    DegenerateTransform
        If the decomposition fails or the system is not of rank 8.
    """
    A = build_system(rect, width, height)
    try:
        _, S, Vt = np.linalg.svd(A)
    except np.linalg.LinAlgError as exc:
        raise DegenerateTransform(f"SVD did not converge: {exc}",
                                  rule="svd-failed") from exc

    if not (np.all(np.isfinite(S)) and np.all(np.isfinite(Vt))):
        raise DegenerateTransform("SVD returned non-finite values",
                                  rule="non-finite")
    # Singular values come sorted in descending order.
    if S[0] == 0 or S[7] <= RANK_TOLERANCE * S[0]:
        raise DegenerateTransform("homography system is rank deficient",
                                  rule="rank-deficient")

    return Vt[-1].reshape(3, 3)


def make_transform_matrix(anchors, width: int, height: int) -> np.ndarray:
    """Classify *anchors* and estimate the transform to a width x height rectangle."""
    return compute_homography(classify_anchors(anchors), width, height)


def apply_homography(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a homography to a set of (x, y) coordinates.

    Parameters
    ----------
    H : np.ndarray
        3 x 3 homography matrix.
    points : np.ndarray
        N x 2 array of (x, y) coordinates.

    Returns
    -------
    np.ndarray
        N x 2 array of transformed (x, y) coordinates.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    ones = np.ones((points.shape[0], 1))
    homog = np.hstack([points, ones]).T

    transformed = H @ homog
    transformed = transformed[:2] / transformed[2:3]
    return transformed.T


def round_half_away(values):
    """Round to the nearest integer, halves away from zero."""
    values = np.asarray(values, dtype=float)
    whole = np.trunc(values)
    # values - trunc(values) is exact, unlike values + 0.5.
    # Infinite inputs stay infinite.
    with np.errstate(invalid="ignore"):
        return whole + np.sign(values) * (np.abs(values - whole) >= 0.5)


def project_pixel(H: np.ndarray, x: int, y: int):
    """Project pixel (x, y) through *H* and round to the nearest pixel."""
    px, py = round_half_away(apply_homography(H, [[x, y]])[0])
    return int(px), int(py)
