"""Line-peak detection and ray/plane triangulation of single projector rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Iterable

import numpy as np

from linescan_app.calibration import CalibrationBundle
from linescan_app.core.models import DetectorParams

try:
    import cv2
except Exception as exc:  # pragma: no cover
    cv2 = None
    _cv2_import_error = exc
else:
    _cv2_import_error = None

log = logging.getLogger(__name__)


def _require_cv2():
    if cv2 is None:
        raise RuntimeError(f"OpenCV is required for reconstruction: {_cv2_import_error}")
    return cv2


class PointCloud:
    """
    Camera-aligned grid of colored 3D points.

    A cell is valid when z > 0; z == 0 means "not observed". Later frames
    overwrite earlier ones at the same pixel.
    """

    def __init__(self, height: int, width: int) -> None:
        self.xyz = np.zeros((int(height), int(width), 3), dtype=np.float64)
        self.bgr = np.zeros((int(height), int(width), 3), dtype=np.uint8)
        self.hits = 0

    @classmethod
    def from_arrays(cls, xyz: np.ndarray, bgr: np.ndarray) -> "PointCloud":
        if xyz.shape != bgr.shape or xyz.ndim != 3 or xyz.shape[2] != 3:
            raise ValueError(f"xyz/bgr grids do not match: {xyz.shape} vs {bgr.shape}")
        cloud = cls(xyz.shape[0], xyz.shape[1])
        cloud.xyz[...] = xyz
        cloud.bgr[...] = bgr
        return cloud

    @property
    def shape(self) -> tuple[int, int]:
        return self.xyz.shape[0], self.xyz.shape[1]

    def valid_mask(self) -> np.ndarray:
        return self.xyz[:, :, 2] > 0

    def points(self) -> np.ndarray:
        return self.xyz[self.valid_mask()]

    def colors(self) -> np.ndarray:
        return self.bgr[self.valid_mask()]

    def __len__(self) -> int:
        return int(np.count_nonzero(self.valid_mask()))


@dataclass(slots=True)
class FrameResult:
    valid: bool
    reason: str | None = None
    reference_row: int | None = None
    projector_row: int | None = None
    points_written: int = 0
    points_skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def difference_image(reference: np.ndarray, frame: np.ndarray) -> np.ndarray:
    """Saturating per-channel frame - reference."""
    cv = _require_cv2()
    return cv.subtract(frame, reference)


def to_gray(bgr: np.ndarray) -> np.ndarray:
    cv = _require_cv2()
    return cv.cvtColor(bgr, cv.COLOR_BGR2GRAY)


def detect_line_peaks(
    gray: np.ndarray,
    top_line: int,
    bottom_line: int,
    threshold: float,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Per-column brightest row inside [top_line, bottom_line).

    Rows are scored by the floored 3-tap average (i-1, i, i+1). A column
    yields a peak only when its best score exceeds `threshold`; ties go to
    the upper row. Returns (cols, rows) of the valid columns.
    """
    h, w = gray.shape[:2]
    top = max(int(top_line), 1)
    bottom = min(int(bottom_line), h - 1)
    if bottom <= top:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)

    g = gray.astype(np.int32)
    avg = (g[top - 1:bottom - 1] + g[top:bottom] + g[top + 1:bottom + 1]) // 3
    best = np.argmax(avg, axis=0)
    score = avg[best, np.arange(w)]
    ok = score > threshold
    cols = np.nonzero(ok)[0].astype(np.int64)
    rows = (best[ok] + top).astype(np.int64)
    return cols, rows


def reference_row(cols: np.ndarray, rows: np.ndarray, width: int, band_fraction: float) -> int | None:
    """
    Row of the rightmost peak inside the right-hand reference band.

    The surface is assumed flat and known near the image border, so this
    row alone fixes which projector row was lit.
    """
    band_start = int(width) - int(int(width) * float(band_fraction))
    in_band = cols > band_start
    if not np.any(in_band):
        return None
    idx = np.nonzero(in_band)[0]
    return int(rows[idx[np.argmax(cols[idx])]])


def map_projector_row(ref_row: int, top_line: int, bottom_line: int, projector_height: int) -> int:
    return (int(ref_row) - int(top_line)) * int(projector_height) // (int(bottom_line) - int(top_line))


def is_valid_projector_row(row: int, projector_height: int) -> bool:
    return 0 < int(row) <= int(projector_height)


def undistort_rays(pixels: np.ndarray, K: np.ndarray, dist: np.ndarray) -> np.ndarray:
    """Pixels (N, 2) -> normalised viewing rays (N, 3) with z = 1."""
    cv = _require_cv2()
    pts = np.asarray(pixels, dtype=np.float64).reshape(-1, 1, 2)
    if pts.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    norm = cv.undistortPoints(pts, K, dist).reshape(-1, 2)
    return np.column_stack([norm, np.ones(norm.shape[0], dtype=np.float64)])


def projector_light_plane(calib: CalibrationBundle, row: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Light plane of one projector row in the camera frame.

    The plane is spanned by the undistorted rays through both ends of the
    row, so `vp` is a true plane normal rather than the single projector
    ray direction that the direction-vector approximation passes as `vp`.

    Returns (vp, qp): the plane direction (normal, unnormalised) and the
    projector centre as a point on the plane.
    """
    ends = np.array(
        [[0.0, float(row)], [float(calib.projector_width), float(row)]],
        dtype=np.float64,
    )
    rays = undistort_rays(ends, calib.Kp, calib.kc_p)
    vp = calib.R.T @ np.cross(rays[0], rays[1])
    qp = calib.projector_center
    return vp, qp


def approximate_ray_plane_intersection(
    vc: np.ndarray,
    qc: np.ndarray,
    vp: np.ndarray,
    qp: np.ndarray,
    eps: float = 1e-12,
) -> np.ndarray | None:
    """
    Intersect the ray qc + lambda * vc with the plane vp . (x - qp) = 0.

    Returns None when the ray is (near-)parallel to the plane.
    """
    vc = np.asarray(vc, dtype=np.float64)
    qc = np.asarray(qc, dtype=np.float64)
    vp = np.asarray(vp, dtype=np.float64)
    qp = np.asarray(qp, dtype=np.float64)
    denom = float(vp @ vc)
    if abs(denom) < eps:
        return None
    lam = float(vp @ (qp - qc)) / denom
    return qc + lam * vc


def _window_color(diff: np.ndarray, rows: np.ndarray, cols: np.ndarray, window: int) -> np.ndarray:
    half = max(int(window), 1) // 2
    h = diff.shape[0]
    acc = np.zeros((rows.size, 3), dtype=np.int32)
    n = 0
    for dr in range(-half, half + 1):
        rr = np.clip(rows + dr, 0, h - 1)
        acc += diff[rr, cols].astype(np.int32)
        n += 1
    return (acc // n).astype(np.uint8)


def triangulate_frame(
    reference: np.ndarray,
    frame: np.ndarray,
    calib: CalibrationBundle,
    cloud: PointCloud,
    params: DetectorParams | None = None,
) -> FrameResult:
    """
    Reconstruct the lit projector row of one frame into `cloud`.

    The cloud is only written when the frame is accepted.
    """
    params = params or DetectorParams()
    if not calib.has_band:
        raise ValueError("Calibration has no projector band; run find-lines first")

    if (
        reference is None
        or frame is None
        or reference.shape != frame.shape
        or reference.dtype != np.uint8
        or frame.dtype != np.uint8
        or frame.ndim != 3
        or frame.shape[2] != 3
        or frame.shape[:2] != cloud.shape
    ):
        log.warning("Frame rejected: shape/depth mismatch")
        return FrameResult(valid=False, reason="input_mismatch")

    diff = difference_image(reference, frame)
    gray = to_gray(diff)
    cols, rows = detect_line_peaks(gray, calib.top_line, calib.bottom_line, params.intensity_threshold)
    if cols.size == 0:
        log.debug("Frame rejected: no line detected")
        return FrameResult(valid=False, reason="no_line")

    ref_row = reference_row(cols, rows, gray.shape[1], params.reference_band_fraction)
    if ref_row is None:
        log.debug("Frame rejected: line does not reach the reference band")
        return FrameResult(valid=False, reason="no_reference_row")

    row = map_projector_row(ref_row, calib.top_line, calib.bottom_line, calib.projector_height)
    if not is_valid_projector_row(row, calib.projector_height):
        log.debug("Frame rejected: computed projector row %d out of range", row)
        return FrameResult(valid=False, reason="row_out_of_range", reference_row=ref_row, projector_row=row)

    vp, qp = projector_light_plane(calib, row)
    rays = undistort_rays(np.column_stack([cols, rows]), calib.Kc, calib.kc_c)
    colors = _window_color(diff, rows, cols, params.color_window)
    origin = np.zeros(3, dtype=np.float64)

    written = 0
    skipped = 0
    for i in range(cols.size):
        p = approximate_ray_plane_intersection(rays[i], origin, vp, qp, eps=params.denominator_eps)
        if p is None or not np.all(np.isfinite(p)) or p[2] <= 0:
            skipped += 1
            continue
        r, c = rows[i], cols[i]
        cloud.xyz[r, c] = p
        cloud.bgr[r, c] = colors[i]
        written += 1

    if skipped:
        log.debug("Skipped %d unreconstructable pixels on projector row %d", skipped, row)
    cloud.hits += 1
    return FrameResult(
        valid=True,
        reference_row=ref_row,
        projector_row=row,
        points_written=written,
        points_skipped=skipped,
    )


def find_top_bottom_lines(
    reference: np.ndarray,
    frames: Iterable[np.ndarray],
    params: DetectorParams | None = None,
) -> tuple[int, int] | None:
    """
    Camera row band lit by the projector over a full sweep.

    Returns (top, bottom) with bottom exclusive, or None if no frame
    produced a peak.
    """
    params = params or DetectorParams()
    top: int | None = None
    bottom: int | None = None
    for frame in frames:
        if frame.shape != reference.shape:
            log.warning("Band search skipped a frame with mismatched shape")
            continue
        gray = to_gray(difference_image(reference, frame))
        _, rows = detect_line_peaks(gray, 1, gray.shape[0] - 1, params.intensity_threshold)
        if rows.size == 0:
            continue
        lo, hi = int(rows.min()), int(rows.max())
        top = lo if top is None else min(top, lo)
        bottom = hi + 1 if bottom is None else max(bottom, hi + 1)
    if top is None or bottom is None:
        return None
    return top, bottom
