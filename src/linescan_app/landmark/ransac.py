"""
Constrained RANSAC plane fitting.

Each fit may be required to be (near-)perpendicular to planes fitted
before it, so the three marker faces can be fitted in a fixed order
without re-detecting the dominant one.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from linescan_app.core.models import PlaneFitParams, PlaneModel

log = logging.getLogger(__name__)


def _fit_plane_svd(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Least-squares plane through points.

    Returns (unit normal, centroid).
    """
    centroid = points.mean(axis=0)
    _, _, vh = np.linalg.svd(points - centroid, full_matrices=False)
    normal = vh[-1, :]
    return normal / (np.linalg.norm(normal) + 1e-12), centroid


def _inlier_plane(pts: np.ndarray, mask: np.ndarray, thresh: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Least-squares plane of a candidate's inliers.

    The fit is repeated once on the inliers of the first fit, so a slab
    clipped by a tilted sample triangle does not drag the normal along.
    """
    normal, centroid = _fit_plane_svd(pts[mask])
    again = np.abs((pts - centroid) @ normal) < thresh
    if np.count_nonzero(again) >= 3:
        normal, centroid = _fit_plane_svd(pts[again])
    return normal, centroid


def _unit(v: np.ndarray) -> Optional[np.ndarray]:
    n = float(np.linalg.norm(v))
    if n < 1e-12:
        return None
    return v / n


def _orthogonal_to(normal: np.ndarray, priors: Sequence[np.ndarray], tol: float) -> bool:
    u = _unit(normal)
    if u is None:
        return False
    for p in priors:
        if abs(float(u @ p)) >= tol:
            return False
    return True


def _project_out(normal: np.ndarray, priors: Sequence[np.ndarray]) -> np.ndarray:
    """Gram-Schmidt the normal against (orthonormalised) prior normals."""
    basis: list[np.ndarray] = []
    for p in priors:
        q = p - sum((p @ b) * b for b in basis)
        q = _unit(q)
        if q is not None:
            basis.append(q)
    out = normal - sum((normal @ b) * b for b in basis)
    return out


def fit_plane(
    points: np.ndarray,
    params: PlaneFitParams | None = None,
    prior_normals: Sequence[np.ndarray] = (),
    rng: np.random.Generator | None = None,
) -> PlaneModel | None:
    """
    Best-supported plane through `points`, or None.

    A candidate from three distinct random points replaces the current
    best only if it has at least `min_inliers` inliers (capped at n - 2
    when `cap_min_inliers` is set) and strictly more than the best so far.
    With prior normals, the candidate must also pass the orthogonality
    test: the least-squares normal of its inliers is within
    `orthogonality_tolerance` of perpendicular to every unit prior.

    With `refine` the returned plane is that least-squares fit of the
    best inliers (projected out of the priors, through their centroid);
    otherwise it is the raw cross product and the sampled vertex.
    """
    params = params or PlaneFitParams()
    rng = rng if rng is not None else np.random.default_rng()
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    pts = pts[np.isfinite(pts).all(axis=1)]
    n = pts.shape[0]
    k = max(int(params.min_sample_size), 3)
    if n < k:
        log.warning("Plane fit needs at least %d points, got %d", k, n)
        return None

    priors = [u for u in (_unit(np.asarray(p, dtype=np.float64)) for p in prior_normals) if u is not None]
    min_inliers = int(params.min_inliers)
    if params.cap_min_inliers:
        min_inliers = min(min_inliers, n - 2)
    tol = float(params.orthogonality_tolerance)
    thresh = float(params.inlier_threshold)

    best_count = 0
    best_normal: Optional[np.ndarray] = None
    best_point: Optional[np.ndarray] = None
    best_mask: Optional[np.ndarray] = None
    best_fit: Optional[Tuple[np.ndarray, np.ndarray]] = None

    for _ in range(int(params.iterations)):
        i = rng.choice(n, size=3, replace=False)
        a, b, c = pts[i[0]], pts[i[1]], pts[i[2]]
        normal = np.cross(b - a, c - a)
        norm = float(np.linalg.norm(normal))
        if norm < 1e-12:
            continue
        dist = np.abs((pts - a) @ normal) / norm
        mask = dist < thresh
        count = int(np.count_nonzero(mask))
        if count < min_inliers or count <= best_count:
            continue
        fitted = None
        if priors:
            fitted = _inlier_plane(pts, mask, thresh)
            if not _orthogonal_to(fitted[0], priors, tol):
                continue
        best_count = count
        best_normal = normal
        best_point = a
        best_mask = mask
        best_fit = fitted

    if best_normal is None or best_point is None or best_mask is None:
        log.warning(
            "No plane met %d inliers within %g (with %d orthogonality constraints) after %d iterations",
            min_inliers, thresh, len(priors), params.iterations,
        )
        return None

    if params.refine:
        normal_ref, centroid = best_fit if best_fit is not None else _inlier_plane(pts, best_mask, thresh)
        if priors:
            normal_ref = _project_out(normal_ref, priors)
        normal_ref = _unit(normal_ref)
        if normal_ref is not None:
            if float(normal_ref @ best_normal) < 0:
                normal_ref = -normal_ref
            best_normal = normal_ref
            best_point = centroid

    return PlaneModel(
        normal=np.asarray(best_normal, dtype=np.float64),
        point=np.array(best_point, dtype=np.float64),
        inliers=best_count,
    )
