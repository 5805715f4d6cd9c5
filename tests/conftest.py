from __future__ import annotations

import numpy as np
import pytest

from linescan_app.calibration import CalibrationBundle
from linescan_app.core.models import ColorClass, LandmarkParams, PlaneFitParams
from linescan_app.landmark.classify import DEFAULT_COLOR_MODELS
from linescan_app.recon.triangulate import PointCloud

CAM_H, CAM_W = 100, 120
CORNER = np.array([10.0, 20.0, 30.0])
FACE_POINTS = 12000


@pytest.fixture
def calib() -> CalibrationBundle:
    """
    Camera and projector side by side, optical axes parallel.

    The projector centre sits at y = +10 in the camera frame, and every
    lit row lands on the wall z = 100.
    """
    return CalibrationBundle(
        Kc=np.array([[100.0, 0.0, 60.0], [0.0, 100.0, 50.0], [0.0, 0.0, 1.0]]),
        kc_c=np.zeros(5),
        Kp=np.array([[100.0, 0.0, 40.0], [0.0, 100.0, 50.0], [0.0, 0.0, 1.0]]),
        kc_p=np.zeros(5),
        R=np.eye(3),
        T=np.array([0.0, -10.0, 0.0]),
        top_line=10,
        bottom_line=70,
        projector_width=80,
        projector_height=60,
    )


@pytest.fixture
def make_frame():
    def _make(row: int | None, value: int = 200, h: int = CAM_H, w: int = CAM_W) -> np.ndarray:
        frame = np.zeros((h, w, 3), dtype=np.uint8)
        if row is not None:
            frame[row - 1:row + 2, :, :] = value
        return frame
    return _make


def _model_bgr(color: ColorClass) -> np.ndarray:
    return np.clip(np.rint(DEFAULT_COLOR_MODELS[color].mean), 0, 255).astype(np.uint8)


@pytest.fixture
def corner_cloud() -> PointCloud:
    """
    Three painted faces of a box corner meeting at (10, 20, 30).

    Blue lies on x = 10, green on y = 20 and red on z = 30, each a 30 x 30
    patch of FACE_POINTS points with bounded normal noise (sigma 0.1).
    """
    rng = np.random.default_rng(1234)
    h, w = 200, 190
    cloud = PointCloud(h, w)
    cells = rng.permutation((h - 4) * (w - 4))[: 3 * FACE_POINTS]
    rows = cells // (w - 4) + 2
    cols = cells % (w - 4) + 2

    faces = [(ColorClass.BLUE, 0), (ColorClass.GREEN, 1), (ColorClass.RED, 2)]
    for k, (color, axis) in enumerate(faces):
        sl = slice(k * FACE_POINTS, (k + 1) * FACE_POINTS)
        pts = CORNER + rng.uniform(0.0, 30.0, size=(FACE_POINTS, 3))
        noise = np.clip(rng.normal(0.0, 0.1, size=FACE_POINTS), -0.3, 0.3)
        pts[:, axis] = CORNER[axis] + noise
        cloud.xyz[rows[sl], cols[sl]] = pts
        cloud.bgr[rows[sl], cols[sl]] = _model_bgr(color)
    return cloud


@pytest.fixture
def corner_params() -> LandmarkParams:
    """
    Whole faces for the cluster variant, radius-12 disks at the refined
    centres for the disk variant. Cluster fits keep the default
    orthogonality tolerance.
    """
    return LandmarkParams(
        histogram_scale=10.0,
        histogram_variance=3.0,
        refine_start=60.0,
        refine_stop=4.0,
        refine_step=1.0,
        cluster_radius=None,
        disk_radius=12.0,
        cluster_fit=PlaneFitParams(iterations=300, inlier_threshold=0.3, min_inliers=10),
        disk_fit=PlaneFitParams(
            iterations=300,
            inlier_threshold=0.15,
            min_inliers=10,
            orthogonality_tolerance=0.005,
        ),
        disk_fit_by_color={},
        seed=7,
    )
