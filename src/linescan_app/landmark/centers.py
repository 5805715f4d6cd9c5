"""Marker centre bootstrap and coupled refinement."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Sequence

import numpy as np

from linescan_app.core.models import BoundingBox, CLASS_ORDER, ColorClass, LandmarkParams
from .histogram import compute_maximum

log = logging.getLogger(__name__)

Centers = Dict[ColorClass, np.ndarray]


def histogram_centers(
    points: Mapping[ColorClass, np.ndarray],
    bbox: BoundingBox,
    params: LandmarkParams | None = None,
) -> Centers:
    """
    Initial per-class centre from axis-wise histogram modes.

    x is resolved on the whole class; y and z only count points whose x
    lies within variance/scale of the x mode.
    """
    params = params or LandmarkParams()
    var = float(params.histogram_variance)
    scale = float(params.histogram_scale)
    half = var / scale
    centers: Centers = {}
    for color in CLASS_ORDER:
        pts = points[color]
        if bbox.empty or pts.shape[0] == 0:
            log.warning("No %s points to bootstrap a centre from", color.value)
            centers[color] = np.zeros(3, dtype=np.float64)
            continue
        mx = compute_maximum(pts, 0, bbox.lo[0], bbox.hi[0], var, scale=scale)
        window = (mx - half, mx + half)
        my = compute_maximum(pts, 1, bbox.lo[1], bbox.hi[1], var, interval=window, scale=scale)
        mz = compute_maximum(pts, 2, bbox.lo[2], bbox.hi[2], var, interval=window, scale=scale)
        centers[color] = np.array([mx, my, mz], dtype=np.float64)
        log.debug("Histogram centre %s = %s", color.value, centers[color])
    return centers


def refine_centers(
    points: Mapping[ColorClass, np.ndarray],
    centers: Mapping[ColorClass, np.ndarray],
    thresholds: Iterable[float],
    order: Sequence[ColorClass] = (ColorClass.BLUE, ColorClass.RED, ColorClass.GREEN),
) -> Centers:
    """
    Pull each centre toward the junction of the three markers.

    For every threshold, each class in `order` is replaced by the mean of
    its own points lying closer than the threshold to both other current
    centres. Updates are applied in place within a step, so later classes
    see the new centres. A class with no qualifying points keeps its
    previous centre.
    """
    cur: Centers = {c: np.asarray(v, dtype=np.float64).copy() for c, v in centers.items()}
    for dist in thresholds:
        for color in order:
            others = [c for c in CLASS_ORDER if c != color]
            pts = points[color]
            if pts.shape[0] == 0:
                continue
            near = np.ones(pts.shape[0], dtype=bool)
            for other in others:
                near &= np.linalg.norm(pts - cur[other], axis=1) < dist
            count = int(np.count_nonzero(near))
            if count == 0:
                log.warning(
                    "No %s points within %g of the other centres; keeping previous centre",
                    color.value, dist,
                )
                continue
            cur[color] = pts[near].mean(axis=0)
    return cur


def select_near(points: np.ndarray, center: np.ndarray, radius: float | None) -> np.ndarray:
    """Points strictly within `radius` of `center`; all points if radius is None."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if radius is None:
        return pts
    return pts[np.linalg.norm(pts - center, axis=1) < float(radius)]
