#!/usr/bin/env python3
"""
run_perspector.py – Perspective correction batch runner

Loads jobs from configs/default.yaml (or a user-specified file), rectifies the
quadrilateral outlined by each job's four anchors, and writes the corrected
image plus diagnostic figures to the results directory.

Usage
-----
    python run_perspector.py
    python run_perspector.py --config configs/default.yaml
    python run_perspector.py --jobs poster whiteboard
    python run_perspector.py --no-figures
"""

import argparse
import os
import sys
import time

import yaml

# Ensure the project root is on the Python path when invoked directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from perspector.core.errors import PerspectiveError
from perspector.geometry.anchors import AnchorSet, classify_anchors
from perspector.geometry.sizing import compute_sink_size
from perspector.resampling.warp import process
from perspector.utils.image_io import load_rgba, save_png, ensure_output_dirs
from perspector.utils.visualization import save_anchor_overlay, save_rectification


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def load_config(path: str) -> dict:
    with open(path, "r") as fh:
        return yaml.safe_load(fh)


def banner(text: str) -> None:
    width = 60
    print("\n" + "─" * width)
    print(f"  {text}")
    print("─" * width)


def job_anchors(job_cfg: dict) -> AnchorSet:
    """Build the job's anchor set, dropping repeated pixels like the picker does."""
    anchors = AnchorSet()
    for x, y in job_cfg["anchors"]:
        if not anchors.add((x, y)):
            print(f"  Ignoring anchor ({x}, {y}): duplicate or more than "
                  f"{AnchorSet.CAPACITY} anchors")
    return anchors


# ──────────────────────────────────────────────────────────────────────────────
# Per-job pipeline
# ──────────────────────────────────────────────────────────────────────────────

def run_job(job_cfg: dict, cfg: dict, results_dir: str,
            save_figures: bool) -> dict:
    """Rectify a single job and return summary metrics."""
    name = job_cfg["name"]
    banner(f"Job: {name}")

    metrics = {
        "job": name,
        "source": None,
        "sink": None,
        "status": "failed",
    }

    # ── 1. Load image ─────────────────────────────────────────────────────────
    source = load_rgba(job_cfg["image"])
    metrics["source"] = (source.shape[1], source.shape[0])
    print(f"  Loaded image  {source.shape[1]}×{source.shape[0]}")

    # ── 2. Anchors ────────────────────────────────────────────────────────────
    anchors = job_anchors(job_cfg)
    if len(anchors) != AnchorSet.CAPACITY:
        print(f"  {AnchorSet.CAPACITY} anchors required, got {len(anchors)}")
        return metrics

    rect = None
    try:
        rect = classify_anchors(anchors)
        print(f"  Corners  bl={tuple(rect.bl)} br={tuple(rect.br)} "
              f"tr={tuple(rect.tr)} tl={tuple(rect.tl)}")
    except PerspectiveError as exc:
        print(f"  Anchors configuration is not usable [{exc.rule}]: {exc}")

    if save_figures:
        save_anchor_overlay(source, anchors, rect, name, results_dir)
    if rect is None:
        return metrics

    # ── 3. Sink size ──────────────────────────────────────────────────────────
    if job_cfg.get("size"):
        sink_w, sink_h = (int(v) for v in job_cfg["size"])
    else:
        ratio = job_cfg.get("ratio", cfg.get("defaults", {}).get("ratio", [1, 1]))
        try:
            sink_w, sink_h = compute_sink_size(anchors, *ratio)
        except PerspectiveError as exc:
            print(f"  Invalid ratio {ratio}: {exc}")
            return metrics
    print(f"  Sink size  {sink_w}×{sink_h}")

    # ── 4. Rectify ────────────────────────────────────────────────────────────
    ok, sink = process(source, anchors, sink_w, sink_h)
    if not ok:
        return metrics

    out_path = os.path.join(results_dir, name, "rectified.png")
    save_png(sink, out_path)
    print(f"  Saved rectified image → {out_path}")
    if save_figures:
        save_rectification(source, sink, anchors, rect, name, results_dir)

    metrics["sink"] = (sink_w, sink_h)
    metrics["status"] = "ok"
    return metrics


# ──────────────────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────────────────

def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Perspective correction of four-anchor quadrilaterals"
    )
    p.add_argument(
        "--config", default="configs/default.yaml",
        help="Path to YAML configuration file (default: configs/default.yaml)",
    )
    p.add_argument(
        "--jobs", nargs="*", default=None,
        help="Subset of job names to process (default: all jobs in config)",
    )
    p.add_argument(
        "--no-figures", action="store_true",
        help="Skip the anchor overlay and before/after figures",
    )
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    # Load configuration
    if not os.path.exists(args.config):
        print(f"[ERROR] Config file not found: {args.config}")
        sys.exit(1)
    cfg = load_config(args.config)

    results_dir = cfg.get("results_dir", "results")
    jobs = cfg.get("jobs", [])

    # Optionally restrict to a subset of jobs
    if args.jobs:
        jobs = [j for j in jobs if j["name"] in args.jobs]
        if not jobs:
            print(f"[ERROR] No matching jobs found for: {args.jobs}")
            sys.exit(1)

    # Validate that image files exist
    for job in jobs:
        if not os.path.exists(job["image"]):
            print(f"[ERROR] Image not found: {job['image']}")
            sys.exit(1)

    # Create output directories
    ensure_output_dirs([j["name"] for j in jobs], base=results_dir)

    save_figures = not args.no_figures

    banner("Perspective Correction")
    print(f"  Config  : {args.config}")
    print(f"  Jobs    : {[j['name'] for j in jobs]}")
    print(f"  Figures : {'enabled' if save_figures else 'disabled'}")
    print(f"  Output  : {results_dir}/")

    t0 = time.time()
    all_metrics = []

    for job in jobs:
        metrics = run_job(job, cfg, results_dir, save_figures)
        all_metrics.append(metrics)

    # ── Summary table ──────────────────────────────────────────────────────
    banner("Results Summary")
    header = f"{'Job':<14} {'Source':>12} {'Sink':>12} {'Status':>8}"
    print(header)
    print("─" * len(header))
    for m in all_metrics:
        src = f"{m['source'][0]}×{m['source'][1]}" if m["source"] else "–"
        snk = f"{m['sink'][0]}×{m['sink'][1]}" if m["sink"] else "–"
        print(f"{m['job']:<14} {src:>12} {snk:>12} {m['status']:>8}")

    elapsed = time.time() - t0
    print(f"\nDone in {elapsed:.1f}s")
    print(f"Results saved to: {os.path.abspath(results_dir)}/")

    return 0 if all(m["status"] == "ok" for m in all_metrics) else 1


if __name__ == "__main__":
    sys.exit(main())
