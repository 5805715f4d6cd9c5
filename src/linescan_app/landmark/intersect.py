"""Closed-form intersection of three planes."""

from __future__ import annotations

import logging

import numpy as np

log = logging.getLogger(__name__)


def three_planes_intersection(
    n1: np.ndarray,
    n2: np.ndarray,
    n3: np.ndarray,
    x1: np.ndarray,
    x2: np.ndarray,
    x3: np.ndarray,
    eps: float = 1e-20,
) -> np.ndarray:
    """
    Point common to the planes n_i . (p - x_i) = 0.

    Returns the zero vector when |det[n1 n2 n3]| < eps.
    """
    n1, n2, n3 = (np.asarray(v, dtype=np.float64) for v in (n1, n2, n3))
    x1, x2, x3 = (np.asarray(v, dtype=np.float64) for v in (x1, x2, x3))
    det = float(np.linalg.det(np.column_stack([n1, n2, n3])))
    if abs(det) < eps:
        log.warning("Planes are parallel or degenerate (det=%g)", det)
        return np.zeros(3, dtype=np.float64)
    p = (
        float(x1 @ n1) * np.cross(n2, n3)
        + float(x2 @ n2) * np.cross(n3, n1)
        + float(x3 @ n3) * np.cross(n1, n2)
    )
    return p / det


def is_landmark(point: np.ndarray) -> bool:
    """False for the all-zero failure value."""
    return bool(np.any(np.asarray(point) != 0))
