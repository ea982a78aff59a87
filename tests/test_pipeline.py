"""
Pytest for image I/O and the batch runner.  Source images are generated on
the fly and written under tmp_path, so no test assets are required.
"""
from __future__ import annotations

import os

import numpy as np
import yaml
from PIL import Image

import run_perspector
from perspector.utils.image_io import ensure_output_dirs, load_rgba, save_png


def _make_scene(path, w: int = 96, h: int = 72) -> None:
    """Checkerboard RGB image: a stand-in for a photographed document."""
    yy, xx = np.mgrid[0:h, 0:w]
    board = (((xx // 8) + (yy // 8)) % 2).astype(np.uint8) * 200 + 30
    rgb = np.stack([board, board // 2, 255 - board], axis=2)
    Image.fromarray(rgb).save(path)


def test_png_round_trip(tmp_path):
    rng = np.random.default_rng(0)
    raster = rng.integers(0, 256, size=(5, 7, 4), dtype=np.uint8)
    path = str(tmp_path / "r.png")
    save_png(raster, path)
    np.testing.assert_array_equal(load_rgba(path), raster)


def test_rgb_images_gain_an_opaque_alpha(tmp_path):
    path = str(tmp_path / "scene.png")
    _make_scene(path)
    img = load_rgba(path)
    assert img.shape == (72, 96, 4)
    assert img.dtype == np.uint8
    assert np.all(img[:, :, 3] == 255)


def test_run_job_writes_outputs(tmp_path):
    image = str(tmp_path / "scene.png")
    _make_scene(image)
    results = str(tmp_path / "results")
    ensure_output_dirs(["doc"], base=results)

    job = {"name": "doc", "image": image,
           "anchors": [[10, 8], [85, 12], [80, 66], [6, 60]], "ratio": [4, 3]}
    metrics = run_perspector.run_job(job, {}, results, save_figures=True)

    assert metrics["status"] == "ok"
    sink_w, sink_h = metrics["sink"]
    out = load_rgba(os.path.join(results, "doc", "rectified.png"))
    assert out.shape == (sink_h, sink_w, 4)
    assert os.path.exists(os.path.join(results, "doc", "anchors.jpg"))
    assert os.path.exists(os.path.join(results, "doc", "rectification.jpg"))


def test_run_job_reports_unusable_anchors(tmp_path):
    image = str(tmp_path / "scene.png")
    _make_scene(image)
    results = str(tmp_path / "results")
    ensure_output_dirs(["line"], base=results)

    job = {"name": "line", "image": image,
           "anchors": [[0, 0], [10, 10], [20, 20], [30, 30]]}
    metrics = run_perspector.run_job(job, {}, results, save_figures=False)

    assert metrics["status"] == "failed"
    assert not os.path.exists(os.path.join(results, "line", "rectified.png"))


def test_run_job_needs_four_distinct_anchors(tmp_path):
    image = str(tmp_path / "scene.png")
    _make_scene(image)
    job = {"name": "few", "image": image,
           "anchors": [[0, 0], [10, 10], [10, 10], [30, 2]]}
    metrics = run_perspector.run_job(job, {}, str(tmp_path), save_figures=False)
    assert metrics["status"] == "failed"


def test_main_runs_selected_jobs(tmp_path):
    image = str(tmp_path / "scene.png")
    _make_scene(image)
    results = str(tmp_path / "out")
    cfg = {
        "results_dir": results,
        "defaults": {"ratio": [1, 1]},
        "jobs": [
            {"name": "square", "image": image,
             "anchors": [[10, 8], [85, 12], [80, 66], [6, 60]]},
            {"name": "fixed", "image": image,
             "anchors": [[10, 8], [85, 12], [80, 66], [6, 60]],
             "size": [40, 30]},
        ],
    }
    config = tmp_path / "jobs.yaml"
    config.write_text(yaml.safe_dump(cfg))

    status = run_perspector.main(["--config", str(config), "--jobs", "fixed",
                                  "--no-figures"])

    assert status == 0
    out = load_rgba(os.path.join(results, "fixed", "rectified.png"))
    assert out.shape == (30, 40, 4)
    assert not os.path.exists(os.path.join(results, "square"))
