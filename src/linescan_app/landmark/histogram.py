"""Smoothed-histogram mode of one coordinate axis."""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import numpy as np
from scipy.ndimage import gaussian_filter1d

log = logging.getLogger(__name__)

AXES = {"x": 0, "y": 1, "z": 2}


def _axis_index(axis: int | str) -> Optional[int]:
    if isinstance(axis, str):
        return AXES.get(axis.lower())
    if int(axis) in (0, 1, 2):
        return int(axis)
    return None


def compute_maximum(
    points: np.ndarray,
    axis: int | str,
    lo: float,
    hi: float,
    variance: float,
    interval: Optional[Tuple[float, float]] = None,
    scale: float = 100.0,
) -> float:
    """
    Coordinate of the peak of a Gaussian-smoothed histogram along `axis`.

    Values are quantised to 1/scale over [lo, hi] and the peak bin is
    reported as (argmax + lo * scale) / scale. When `interval` is given
    only points whose x lies inside it are counted. Returns 0.0 (and logs)
    for an unknown axis.
    """
    ax = _axis_index(axis)
    if ax is None:
        log.error("Invalid histogram axis %r; expected 0, 1, 2 or x, y, z", axis)
        return 0.0

    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    lo_s = int(round(float(lo) * scale))
    hi_s = int(round(float(hi) * scale))
    n_bins = abs(hi_s - lo_s) + 1

    if interval is not None:
        keep = (pts[:, 0] >= interval[0]) & (pts[:, 0] <= interval[1])
        pts = pts[keep]

    idx = np.floor(pts[:, ax] * scale - lo_s).astype(np.int64)
    idx = idx[(idx >= 0) & (idx < n_bins)]
    if idx.size == 0:
        log.warning("Empty histogram on axis %d over [%g, %g]", ax, lo, hi)

    hist = np.bincount(idx, minlength=n_bins).astype(np.float64)
    if variance > 0:
        hist = gaussian_filter1d(hist, sigma=math.sqrt(float(variance)), mode="nearest")
    return (int(np.argmax(hist)) + float(lo) * scale) / scale
