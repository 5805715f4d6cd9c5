"""Landmark estimation: classify, locate centres, fit planes, intersect."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING

import numpy as np

from linescan_app.core.models import (
    CLASS_ORDER,
    ClassifierParams,
    ColorClass,
    LandmarkParams,
    PlaneModel,
)
from .centers import Centers, histogram_centers, refine_centers, select_near
from .classify import ClassifiedCloud, GaussianColorModel, density_probability
from .intersect import is_landmark, three_planes_intersection
from .ransac import fit_plane

if TYPE_CHECKING:
    from linescan_app.recon.triangulate import PointCloud

log = logging.getLogger(__name__)

# Blue is fitted free, red perpendicular to blue, green perpendicular to both.
FIT_ORDER = (ColorClass.BLUE, ColorClass.RED, ColorClass.GREEN)


@dataclass(slots=True)
class LandmarkEstimate:
    """One landmark variant; `point` is the zero vector on failure."""
    variant: str
    point: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    planes: Dict[ColorClass, PlaneModel] = field(default_factory=dict)
    subset_sizes: Dict[ColorClass, int] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None and is_landmark(self.point)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "ok": self.ok,
            "point": [float(v) for v in self.point],
            "reason": self.reason,
            "planes": {c.value: p.to_dict() for c, p in self.planes.items()},
            "subset_sizes": {c.value: int(n) for c, n in self.subset_sizes.items()},
        }


@dataclass(slots=True)
class LandmarkResult:
    cluster: LandmarkEstimate
    disk: LandmarkEstimate
    centers: Centers
    counts: Dict[str, int]

    @property
    def ok(self) -> bool:
        return self.cluster.ok and self.disk.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "cluster": self.cluster.to_dict(),
            "disk": self.disk.to_dict(),
            "centers": {c.value: [float(v) for v in p] for c, p in self.centers.items()},
            "counts": dict(self.counts),
        }


class LandmarkEstimator:
    """
    Runs both landmark variants on a classified cloud.

    The generator is created once from `params.seed`, so a seeded
    estimator reproduces the same fits for the same input sequence.
    """

    def __init__(
        self,
        params: LandmarkParams | None = None,
        classifier: ClassifierParams | None = None,
        models: Mapping[ColorClass, GaussianColorModel] | None = None,
    ) -> None:
        self.params = params or LandmarkParams()
        self.classifier = classifier or ClassifierParams()
        self.models = models
        self.rng = np.random.default_rng(self.params.seed)

    def classify(self, cloud: "PointCloud") -> ClassifiedCloud:
        return density_probability(cloud.xyz, cloud.bgr, self.models, self.classifier)

    def centers(self, classified: ClassifiedCloud) -> Centers:
        start = histogram_centers(classified.points, classified.bbox, self.params)
        return refine_centers(
            classified.points,
            start,
            self.params.refine_thresholds(),
            order=self.params.refine_order,
        )

    def fit_variant(self, variant: str, subsets: Mapping[ColorClass, np.ndarray]) -> LandmarkEstimate:
        est = LandmarkEstimate(variant=variant, subset_sizes={c: int(subsets[c].shape[0]) for c in CLASS_ORDER})
        priors: List[np.ndarray] = []
        for color in FIT_ORDER:
            fit_params = self.params.fit_params(variant, color)
            plane = fit_plane(subsets[color], fit_params, prior_normals=priors, rng=self.rng)
            if plane is None:
                est.reason = f"plane_fit_failed:{color.value}"
                log.warning("%s landmark: %s plane fit failed", variant, color.value)
                return est
            est.planes[color] = plane
            priors.append(plane.normal)

        b, g, r = est.planes[ColorClass.BLUE], est.planes[ColorClass.GREEN], est.planes[ColorClass.RED]
        point = three_planes_intersection(
            b.normal, g.normal, r.normal,
            b.point, g.point, r.point,
            eps=self.params.determinant_eps,
        )
        if not is_landmark(point):
            est.reason = "degenerate_planes"
            log.warning("%s landmark: planes do not intersect in a point", variant)
            return est
        est.point = point
        log.info("%s landmark = %s", variant, point)
        return est

    def estimate(self, data: "PointCloud | ClassifiedCloud") -> LandmarkResult:
        classified = data if isinstance(data, ClassifiedCloud) else self.classify(data)
        centers = self.centers(classified)

        cluster_sets = {
            c: select_near(classified.points[c], centers[c], self.params.cluster_radius)
            for c in CLASS_ORDER
        }
        disk_sets = {
            c: select_near(
                classified.valid_points if self.params.disk_from_cloud else classified.points[c],
                centers[c],
                self.params.disk_radius,
            )
            for c in CLASS_ORDER
        }
        cluster = self.fit_variant("cluster", cluster_sets)
        disk = self.fit_variant("disk", disk_sets)
        return LandmarkResult(cluster=cluster, disk=disk, centers=centers, counts=classified.counts())


def summarize_landmarks(points: Sequence[np.ndarray]) -> Dict[str, Any]:
    """Mean and population standard deviation of successful landmarks."""
    good = [np.asarray(p, dtype=np.float64) for p in points if is_landmark(p)]
    if not good:
        return {"count": 0, "mean": None, "std": None, "points": []}
    arr = np.stack(good)
    return {
        "count": int(arr.shape[0]),
        "mean": [float(v) for v in arr.mean(axis=0)],
        "std": [float(v) for v in arr.std(axis=0)],
        "points": arr.tolist(),
    }
