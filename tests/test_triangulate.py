from __future__ import annotations

import numpy as np
import pytest

from linescan_app.core.models import DetectorParams
from linescan_app.recon.triangulate import (
    PointCloud,
    approximate_ray_plane_intersection,
    detect_line_peaks,
    find_top_bottom_lines,
    is_valid_projector_row,
    map_projector_row,
    projector_light_plane,
    reference_row,
    triangulate_frame,
)


def test_ray_plane_recovers_known_point():
    truth = np.array([0.3, -0.2, 2.0])
    qc = np.zeros(3)
    vc = truth / truth[2]
    qp = np.array([0.5, 0.1, 0.0])
    vp = np.cross(truth - qp, np.array([0.0, 0.0, 1.0]))
    p = approximate_ray_plane_intersection(vc, qc, vp, qp)
    assert p is not None
    np.testing.assert_allclose(p, truth, atol=1e-9)


def test_ray_parallel_to_plane_is_skipped():
    vc = np.array([1.0, 0.0, 0.0])
    vp = np.array([0.0, 0.0, 1.0])
    assert approximate_ray_plane_intersection(vc, np.zeros(3), vp, np.array([0.0, 0.0, 5.0])) is None


def test_detect_line_peaks_uses_floored_three_tap_average():
    gray = np.zeros((20, 4), dtype=np.uint8)
    gray[9:12, 0] = 200
    gray[5, 1] = 240  # single bright row: 240 // 3 = 80
    gray[5, 2] = 200  # 200 // 3 = 66, below threshold
    cols, rows = detect_line_peaks(gray, 1, 19, threshold=78)
    assert cols.tolist() == [0, 1]
    assert rows.tolist() == [10, 4]


def test_detect_line_peaks_respects_band():
    gray = np.zeros((20, 3), dtype=np.uint8)
    gray[2:5, :] = 255
    cols, _ = detect_line_peaks(gray, 8, 18, threshold=78)
    assert cols.size == 0


def test_reference_row_takes_rightmost_column_in_band():
    cols = np.array([3, 50, 101, 110])
    rows = np.array([7, 8, 9, 12])
    assert reference_row(cols, rows, 120, 1 / 6) == 12
    assert reference_row(cols[:2], rows[:2], 120, 1 / 6) is None


@pytest.mark.parametrize(
    "ref_row, expected_row, valid",
    [(10, 0, False), (71, 61, False), (70, 60, True), (40, 30, True)],
)
def test_projector_row_mapping_bounds(ref_row, expected_row, valid):
    row = map_projector_row(ref_row, 10, 70, 60)
    assert row == expected_row
    assert is_valid_projector_row(row, 60) is valid


def test_light_plane_contains_projector_centre(calib):
    vp, qp = projector_light_plane(calib, 30)
    np.testing.assert_allclose(qp, [0.0, 10.0, 0.0])
    assert abs(vp[0]) < 1e-12
    assert vp[1] / vp[2] == pytest.approx(5.0)


def test_light_plane_contains_both_row_end_rays(calib):
    row = 30
    vp, _ = projector_light_plane(calib, row)
    for u in (0.0, float(calib.projector_width)):
        ray = np.array([(u - 40.0) / 100.0, (row - 50.0) / 100.0, 1.0])
        assert abs(float(vp @ ray)) < 1e-9


def test_triangulate_frame_reconstructs_wall(calib, make_frame):
    reference = make_frame(None)
    cloud = PointCloud(*reference.shape[:2])
    result = triangulate_frame(reference, make_frame(40), calib, cloud)

    assert result.valid
    assert result.reference_row == 40
    assert result.projector_row == 30
    assert result.points_written == reference.shape[1]
    assert cloud.hits == 1

    pts = cloud.xyz[40]
    np.testing.assert_allclose(pts[:, 2], 100.0, atol=1e-6)
    np.testing.assert_allclose(pts[:, 1], -10.0, atol=1e-6)
    np.testing.assert_allclose(pts[:, 0], (np.arange(reference.shape[1]) - 60.0), atol=1e-6)
    assert cloud.bgr[40, 0].tolist() == [200, 200, 200]
    assert len(cloud) == reference.shape[1]


def test_frame_mapping_to_row_zero_is_rejected(calib, make_frame):
    reference = make_frame(None)
    cloud = PointCloud(*reference.shape[:2])
    result = triangulate_frame(reference, make_frame(10), calib, cloud)
    assert not result.valid
    assert result.reason == "row_out_of_range"
    assert result.projector_row == 0
    assert len(cloud) == 0
    assert cloud.hits == 0


def test_mismatched_frames_are_rejected(calib, make_frame):
    reference = make_frame(None)
    cloud = PointCloud(*reference.shape[:2])
    result = triangulate_frame(reference, make_frame(40, w=100), calib, cloud)
    assert result.reason == "input_mismatch"
    assert len(cloud) == 0


def test_dark_frame_has_no_line(calib, make_frame):
    reference = make_frame(None)
    cloud = PointCloud(*reference.shape[:2])
    result = triangulate_frame(reference, make_frame(40, value=60), calib, cloud)
    assert result.reason == "no_line"


def test_later_frames_overwrite_cells(calib, make_frame):
    reference = make_frame(None)
    cloud = PointCloud(*reference.shape[:2])
    triangulate_frame(reference, make_frame(40, value=150), calib, cloud)
    triangulate_frame(reference, make_frame(40, value=220), calib, cloud)
    assert cloud.hits == 2
    assert cloud.bgr[40, 5].tolist() == [220, 220, 220]


def test_missing_band_raises(calib, make_frame):
    reference = make_frame(None)
    cloud = PointCloud(*reference.shape[:2])
    unbanded = calib.with_lines(0, 0)
    with pytest.raises(ValueError):
        triangulate_frame(reference, make_frame(40), unbanded, cloud, DetectorParams())


def test_find_top_bottom_lines(make_frame):
    reference = make_frame(None)
    frames = [make_frame(20), make_frame(None), make_frame(60)]
    assert find_top_bottom_lines(reference, frames) == (20, 61)
    assert find_top_bottom_lines(reference, [make_frame(None)]) is None
