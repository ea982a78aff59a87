"""
Visualization utilities for the rectification pipeline.

All functions save figures to disk rather than displaying them interactively,
making the module suitable for headless execution.
"""

import os
import numpy as np
import matplotlib
matplotlib.use("Agg")          # non-interactive backend
import matplotlib.pyplot as plt


def _plot_anchors(ax, anchors, rect=None) -> None:
    for x, y in anchors:
        ax.plot(x, y, "r+", markersize=12, markeredgewidth=2)
    if rect is None:
        return
    kw = dict(color="yellow", fontsize=9, weight="bold",
              bbox=dict(boxstyle="round,pad=0.3", facecolor="black", alpha=0.5))
    for label in ("bl", "br", "tr", "tl"):
        p = getattr(rect, label)
        ax.text(p.x + 6, p.y - 6, label, **kw)
    outline = list(rect.as_tuple()) + [rect.bl]
    ax.plot([p.x for p in outline], [p.y for p in outline], "g-",
            linewidth=1, alpha=0.7)


def save_anchor_overlay(source: np.ndarray, anchors, rect, name: str,
                        out_dir: str) -> None:
    """Save the source image with its anchors, labelled by corner when known."""
    fig, ax = plt.subplots(figsize=(10, 8))
    ax.imshow(source)
    _plot_anchors(ax, anchors, rect)
    title = "anchors" if rect is not None else "anchors (not classifiable)"
    ax.set_title(f"{name} – {title}")
    ax.axis("off")
    plt.tight_layout()
    plt.savefig(os.path.join(out_dir, name, "anchors.jpg"), dpi=150, bbox_inches="tight")
    plt.close(fig)


def save_rectification(source: np.ndarray, sink: np.ndarray, anchors, rect,
                       name: str, out_dir: str) -> None:
    """Save a side-by-side figure of the source and the rectified sink."""
    fig, axes = plt.subplots(1, 2, figsize=(16, 8))

    axes[0].imshow(source)
    _plot_anchors(axes[0], anchors, rect)
    axes[0].set_title(f"{name} – source ({source.shape[1]}×{source.shape[0]})")
    axes[0].axis("off")

    axes[1].imshow(sink)
    axes[1].set_title(f"Rectified ({sink.shape[1]}×{sink.shape[0]})")
    axes[1].axis("off")

    plt.tight_layout()
    plt.savefig(os.path.join(out_dir, name, "rectification.jpg"), dpi=150, bbox_inches="tight")
    plt.close(fig)
