"""
Core data models for line-scan reconstruction and landmark estimation.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class ColorClass(str, Enum):
    """Paint color of one marker plane."""
    BLUE = "blue"
    GREEN = "green"
    RED = "red"


# Index order used for label grids and per-class arrays.
CLASS_ORDER = (ColorClass.BLUE, ColorClass.GREEN, ColorClass.RED)
# Density evaluation order; on an exact tie the first class wins.
EVALUATION_ORDER = (ColorClass.GREEN, ColorClass.BLUE, ColorClass.RED)

LABEL_INVALID = -1
LABEL_UNCLASSIFIED = 3


def parse_color(value: str | ColorClass) -> ColorClass:
    if isinstance(value, ColorClass):
        return value
    try:
        return ColorClass(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown marker color: {value!r}") from exc


@dataclass(slots=True)
class DetectorParams:
    """
    Parameters for per-column line peak detection and triangulation.
    """
    intensity_threshold: int = 78
    reference_band_fraction: float = 1.0 / 6.0
    denominator_eps: float = 1e-12
    color_window: int = 3

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ClassifierParams:
    density_threshold: float = 1e-9
    border: int = 2


@dataclass(slots=True)
class PlaneFitParams:
    """
    RANSAC settings for one family of plane fits.

    orthogonality_tolerance bounds |n . prior| on unit normals, where n is
    the least-squares normal of a candidate's inliers. cap_min_inliers
    lowers min_inliers to n - 2 for small point sets.
    """
    min_sample_size: int = 3
    iterations: int = 100
    inlier_threshold: float = 0.01
    min_inliers: int = 3
    orthogonality_tolerance: float = 1e-3
    refine: bool = True
    cap_min_inliers: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class LandmarkParams:
    """
    Parameters for the classify -> bootstrap -> refine -> fit -> intersect chain.

    Distances are in the point cloud units (metres for the calibration rig).
    Per-color entries in `*_fit_by_color` replace the variant's default fit
    for that color. With `disk_from_cloud` each disk takes every valid
    cloud point near the color's centre, whatever its label.
    """
    histogram_scale: float = 100.0
    histogram_variance: float = 3.0
    refine_start: float = 0.08
    refine_stop: float = 0.03
    refine_step: float = 0.01
    refine_order: tuple[ColorClass, ...] = (ColorClass.BLUE, ColorClass.RED, ColorClass.GREEN)
    cluster_radius: Optional[float] = 0.03
    disk_radius: float = 0.008
    disk_from_cloud: bool = True
    cluster_fit: PlaneFitParams = field(default_factory=PlaneFitParams)
    cluster_fit_by_color: Dict[ColorClass, PlaneFitParams] = field(default_factory=dict)
    disk_fit: PlaneFitParams = field(
        default_factory=lambda: PlaneFitParams(
            iterations=200, inlier_threshold=0.002, min_inliers=10, cap_min_inliers=False,
        )
    )
    disk_fit_by_color: Dict[ColorClass, PlaneFitParams] = field(
        default_factory=lambda: {
            ColorClass.RED: PlaneFitParams(iterations=100, inlier_threshold=0.005, min_inliers=10),
            ColorClass.GREEN: PlaneFitParams(iterations=100, inlier_threshold=0.005, min_inliers=10),
        }
    )
    determinant_eps: float = 1e-20
    seed: Optional[int] = None

    def fit_params(self, variant: str, color: ColorClass) -> PlaneFitParams:
        if variant == "cluster":
            return self.cluster_fit_by_color.get(color, self.cluster_fit)
        if variant == "disk":
            return self.disk_fit_by_color.get(color, self.disk_fit)
        raise ValueError(f"Unknown landmark variant: {variant!r}")

    def refine_thresholds(self) -> list[float]:
        """Monotonically shrinking distance schedule, both ends included."""
        step = abs(float(self.refine_step))
        if step <= 0:
            raise ValueError("refine_step must be non-zero")
        span = float(self.refine_start) - float(self.refine_stop)
        if span < 0:
            raise ValueError("refine_start must not be below refine_stop")
        n = int(round(span / step))
        return [float(self.refine_start) - i * step for i in range(n + 1)]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["refine_order"] = [c.value for c in self.refine_order]
        for key in ("cluster_fit_by_color", "disk_fit_by_color"):
            data[key] = {c.value: p.to_dict() for c, p in getattr(self, key).items()}
        return data


@dataclass(slots=True)
class PlaneModel:
    """
    Plane through `point` with direction `normal`.

    The normal is not normalised; only its direction is meaningful.
    """
    normal: np.ndarray
    point: np.ndarray
    inliers: int = 0

    def unit_normal(self) -> np.ndarray:
        n = np.asarray(self.normal, dtype=np.float64)
        return n / np.linalg.norm(n)

    def distance(self, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return np.abs((pts - self.point) @ self.unit_normal())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normal": [float(v) for v in self.normal],
            "point": [float(v) for v in self.point],
            "inliers": int(self.inliers),
        }


@dataclass(slots=True)
class BoundingBox:
    """Running per-axis min/max of valid cloud points."""
    lo: np.ndarray = field(default_factory=lambda: np.full(3, np.inf))
    hi: np.ndarray = field(default_factory=lambda: np.full(3, -np.inf))

    @property
    def empty(self) -> bool:
        return not bool(np.all(self.hi >= self.lo))

    def update(self, points: np.ndarray) -> None:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pts.shape[0] == 0:
            return
        self.lo = np.minimum(self.lo, pts.min(axis=0))
        self.hi = np.maximum(self.hi, pts.max(axis=0))

    def to_dict(self) -> Dict[str, Any]:
        if self.empty:
            return {"min": None, "max": None}
        return {"min": [float(v) for v in self.lo], "max": [float(v) for v in self.hi]}
