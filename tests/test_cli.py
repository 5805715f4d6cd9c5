from __future__ import annotations

import json

import numpy as np
import pytest
import yaml
from PIL import Image

from linescan_app.calibration import save_calibration
from linescan_app.cli import _landmark_from_cfg, build_parser, main
from linescan_app.core.models import ColorClass
from linescan_app.recon.io import save_point_cloud


@pytest.fixture(autouse=True)
def _in_tmp(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def _write_frames(folder, make_frame, rows):
    folder.mkdir()
    Image.fromarray(make_frame(None)).save(folder / "000_ref.png")
    for i, row in enumerate(rows, start=1):
        Image.fromarray(make_frame(row)).save(folder / f"{i:03d}.png")


def _last_json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


def test_parser_knows_all_commands():
    parser = build_parser()
    for cmd in ("reconstruct", "landmark", "session", "find-lines"):
        assert parser.parse_args([cmd] + (["--cloud", "x"] if cmd == "landmark" else [])).cmd == cmd


def test_no_command_prints_help():
    assert main([]) == 0


def test_find_lines_updates_calibration(tmp_path, make_frame, calib, capsys):
    _write_frames(tmp_path / "frames", make_frame, [25, 40, 66])
    save_calibration(calib.with_lines(0, 0), tmp_path / "calib.json")

    code = main(["find-lines", "--frames", "frames", "--write", "calib.json"])
    out = _last_json(capsys)

    assert code == 0
    assert (out["top_line"], out["bottom_line"]) == (25, 67)
    saved = json.loads((tmp_path / "calib.json").read_text())
    assert (saved["top_line"], saved["bottom_line"]) == (25, 67)


def test_reconstruct_writes_cloud(tmp_path, make_frame, calib, capsys):
    _write_frames(tmp_path / "frames", make_frame, [10, 40, 50])
    save_calibration(calib, tmp_path / "calib.json")

    code = main([
        "reconstruct", "--frames", "frames", "--calibration", "calib.json",
        "--max-frames", "5", "--out", "cloud",
    ])
    out = _last_json(capsys)

    assert code == 0
    assert out["valid_points"] == 240
    assert out["status"]["rejections"] == {"row_out_of_range": 1}
    assert (tmp_path / "cloud" / "cloud.ply").exists()


def test_landmark_from_saved_cloud(tmp_path, corner_cloud, capsys):
    save_point_cloud(tmp_path / "cloud", corner_cloud)
    cfg = {
        "landmark": {
            "histogram_scale": 10,
            "refine": {"start": 60, "stop": 4, "step": 1, "order": ["blue", "red", "green"]},
            "cluster_radius": None,
            "disk_radius": 12,
            "cluster_fit": {"iterations": 300, "inlier_threshold": 0.3, "min_inliers": 10},
            "disk_fit": {"iterations": 300, "inlier_threshold": 0.15, "min_inliers": 10,
                         "orthogonality_tolerance": 0.005, "cap_min_inliers": True},
            "disk_fit_by_color": {},
        }
    }
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "default.yaml").write_text(yaml.safe_dump(cfg))

    code = main(["landmark", "--cloud", "cloud", "--seed", "7"])
    out = _last_json(capsys)

    assert code == 0
    assert out["ok"]
    np.testing.assert_allclose(out["cluster"]["point"], [10.0, 20.0, 30.0], atol=1.0)
    assert (tmp_path / "cloud" / "landmarks.json").exists()


def test_missing_calibration_is_bad_input(tmp_path, make_frame, capsys):
    _write_frames(tmp_path / "frames", make_frame, [40])
    code = main(["reconstruct", "--frames", "frames", "--calibration", "missing.json"])
    assert code == 2
    assert _last_json(capsys)["ok"] is False


def test_landmark_config_parsing():
    params = _landmark_from_cfg({"landmark": {"refine": {"order": ["Green", "blue", "RED"]}}}, seed=3)
    assert params.refine_order == (ColorClass.GREEN, ColorClass.BLUE, ColorClass.RED)
    assert params.seed == 3
    assert params.disk_fit.iterations == 200
    with pytest.raises(ValueError):
        _landmark_from_cfg({"landmark": {"refine": {"order": ["blue", "blue", "red"]}}})
    with pytest.raises(ValueError):
        _landmark_from_cfg({"landmark": {"refine": {"order": ["blue", "cyan", "red"]}}})


def test_disk_fits_by_color_config():
    params = _landmark_from_cfg({
        "landmark": {
            "disk_fit": {"iterations": 50},
            "disk_fit_by_color": {"Red": {"min_inliers": 5}},
        }
    })
    red = params.fit_params("disk", ColorClass.RED)
    assert (red.iterations, red.inlier_threshold, red.min_inliers) == (100, 0.005, 5)
    assert params.fit_params("disk", ColorClass.GREEN) is params.disk_fit
    assert params.disk_fit.iterations == 50
    assert not params.disk_fit.cap_min_inliers
    assert params.disk_from_cloud

    defaults = _landmark_from_cfg({})
    assert set(defaults.disk_fit_by_color) == {ColorClass.RED, ColorClass.GREEN}
    with pytest.raises(ValueError):
        _landmark_from_cfg({"landmark": {"disk_fit_by_color": {"cyan": {}}}})
