"""
Image I/O helpers.

Thin wrappers around PIL so that every raster entering or leaving the
rectification stages is an H x W x 4 uint8 RGBA array.
"""

import os
import numpy as np
from PIL import Image


def load_rgba(path: str) -> np.ndarray:
    """Load an image as a uint8 RGBA array.

    Parameters
    ----------
    path : str
        File path to the image.

    Returns
    -------
    np.ndarray
        H x W x 4 uint8 array.
    """
    with Image.open(path) as img:
        return np.array(img.convert("RGBA"))


def save_png(raster: np.ndarray, path: str) -> None:
    """Encode an H x W x 4 uint8 RGBA raster as PNG."""
    Image.fromarray(np.ascontiguousarray(raster, dtype=np.uint8)).save(
        path, format="PNG")


def ensure_output_dirs(names: list, base: str = "results") -> None:
    """Create output subdirectories for each job name.

    Parameters
    ----------
    names : list of str
        Job identifiers (one subdirectory is created per job).
    base : str
        Root output directory.
    """
    for name in names:
        os.makedirs(os.path.join(base, name), exist_ok=True)
