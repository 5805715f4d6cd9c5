from __future__ import annotations

import numpy as np
import pytest

from linescan_app.core.models import PlaneFitParams
from linescan_app.landmark.intersect import is_landmark, three_planes_intersection
from linescan_app.landmark.ransac import fit_plane


def _plane_cluster(rng, axis: int, n: int = 200, noise: float = 0.0) -> np.ndarray:
    pts = rng.uniform(1.0, 2.0, size=(n, 3))
    pts[:, axis] = rng.normal(0.0, noise, size=n) if noise > 0 else 0.0
    return pts


def _unit(v):
    return np.asarray(v) / np.linalg.norm(v)


@pytest.mark.parametrize("n", [0, 1, 2])
def test_too_few_points_returns_none(n):
    assert fit_plane(np.zeros((n, 3)), rng=np.random.default_rng(0)) is None


def test_fit_finds_dominant_plane():
    rng = np.random.default_rng(3)
    plane = rng.uniform(-1, 1, size=(300, 3))
    plane[:, 2] = 1.0 + rng.normal(0, 0.001, size=300)
    outliers = rng.uniform(-1, 3, size=(60, 3))
    pts = np.vstack([plane, outliers])

    model = fit_plane(pts, PlaneFitParams(iterations=200, inlier_threshold=0.01), rng=np.random.default_rng(0))
    assert model is not None
    assert abs(_unit(model.normal)[2]) > 0.999
    assert model.inliers >= 290
    assert model.point[2] == pytest.approx(1.0, abs=0.01)


def test_refine_returns_unit_normal_and_centroid():
    rng = np.random.default_rng(4)
    pts = rng.uniform(-1, 1, size=(200, 3))
    pts[:, 1] = 0.5
    model = fit_plane(pts, PlaneFitParams(refine=True), rng=np.random.default_rng(1))
    assert model is not None
    assert np.linalg.norm(model.normal) == pytest.approx(1.0)
    np.testing.assert_allclose(model.point, pts.mean(axis=0), atol=1e-9)


def test_sequential_fits_on_noisy_clusters_are_mutually_orthogonal():
    rng = np.random.default_rng(5)
    fit_rng = np.random.default_rng(0)
    params = PlaneFitParams()
    assert params.orthogonality_tolerance == 1e-3
    priors = []
    for axis in (0, 1, 2):
        pts = _plane_cluster(rng, axis, n=2000, noise=0.002)
        model = fit_plane(pts, params, prior_normals=priors, rng=fit_rng)
        assert model is not None
        assert abs(_unit(model.normal)[axis]) > 0.999
        priors.append(model.normal)

    units = [_unit(n) for n in priors]
    for i in range(3):
        for j in range(i + 1, 3):
            assert abs(float(units[i] @ units[j])) < 1e-3


def test_noisy_plane_passes_where_sample_triangles_would_not():
    rng = np.random.default_rng(9)
    pts = _plane_cluster(rng, 1, n=2000, noise=0.002)
    prior = np.array([1.0, 0.0, 0.0])
    idx = rng.permutation(pts.shape[0])[:600].reshape(200, 3)
    tri = np.cross(pts[idx[:, 1]] - pts[idx[:, 0]], pts[idx[:, 2]] - pts[idx[:, 0]])
    tri = tri / np.linalg.norm(tri, axis=1, keepdims=True)
    assert np.mean(np.abs(tri @ prior) < 1e-3) < 0.5

    model = fit_plane(pts, PlaneFitParams(), prior_normals=[prior], rng=np.random.default_rng(1))
    assert model is not None
    assert abs(float(_unit(model.normal) @ prior)) < 1e-3


@pytest.mark.parametrize("cap, found", [(True, True), (False, False)])
def test_min_inliers_cap_for_small_sets(cap, found):
    pts = np.array([[0.0, 0, 0], [1.0, 0, 0], [0.0, 1, 0], [1.0, 1, 0], [0.5, 0.5, 0]])
    params = PlaneFitParams(min_inliers=10, cap_min_inliers=cap)
    model = fit_plane(pts, params, rng=np.random.default_rng(0))
    assert (model is not None) is found


def test_oblique_cluster_is_never_accepted_as_third_plane():
    rng = np.random.default_rng(6)
    t = rng.uniform(-1, 1, size=2000)
    pts = np.column_stack([t, rng.uniform(-1, 1, size=2000), -t])  # x + z = 0
    priors = [np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0])]
    model = fit_plane(pts, PlaneFitParams(iterations=500), prior_normals=priors, rng=np.random.default_rng(0))
    assert model is None


def test_constraint_skips_dominant_parallel_plane():
    rng = np.random.default_rng(7)
    pts = np.vstack([_plane_cluster(rng, 0, 600), _plane_cluster(rng, 1, 200)])
    model = fit_plane(
        pts,
        PlaneFitParams(iterations=1000),
        prior_normals=[np.array([1.0, 0.0, 0.0])],
        rng=np.random.default_rng(0),
    )
    assert model is not None
    assert abs(_unit(model.normal)[1]) > 0.999


def test_seeded_fits_are_reproducible():
    rng = np.random.default_rng(8)
    pts = rng.normal(0, 1, size=(150, 3))
    a = fit_plane(pts, rng=np.random.default_rng(42))
    b = fit_plane(pts, rng=np.random.default_rng(42))
    assert a is not None and b is not None
    np.testing.assert_array_equal(a.normal, b.normal)
    np.testing.assert_array_equal(a.point, b.point)


def test_three_plane_intersection_axis_planes():
    p = three_planes_intersection(
        np.array([1.0, 0, 0]), np.array([0, 1.0, 0]), np.array([0, 0, 1.0]),
        np.array([10.0, 5, 5]), np.array([3.0, 20, 1]), np.array([0.0, 0, 30]),
    )
    np.testing.assert_allclose(p, [10.0, 20.0, 30.0], atol=1e-12)


def test_three_plane_intersection_oblique():
    target = np.array([1.0, 2.0, 3.0])
    n1, n2, n3 = np.array([1.0, 1, 0]), np.array([0, 1.0, 1]), np.array([1.0, 0, 1])
    x1 = target + np.array([1.0, -1, 0])
    x2 = target + np.array([0, 1.0, -1])
    x3 = target + np.array([1.0, 0, -1])
    p = three_planes_intersection(n1, n2, n3, x1, x2, x3)
    np.testing.assert_allclose(p, target, atol=1e-9)
    assert is_landmark(p)


def test_parallel_planes_give_zero_vector():
    n = np.array([0.0, 0.0, 1.0])
    p = three_planes_intersection(n, n, np.array([1.0, 0, 0]), np.zeros(3), np.ones(3), np.ones(3))
    assert not is_landmark(p)
    np.testing.assert_array_equal(p, np.zeros(3))
