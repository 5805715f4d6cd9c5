from .classify import (
    ClassifiedCloud,
    DEFAULT_COLOR_MODELS,
    GaussianColorModel,
    classify_color,
    density_probability,
)
from .histogram import compute_maximum
from .centers import histogram_centers, refine_centers, select_near
from .ransac import fit_plane
from .intersect import is_landmark, three_planes_intersection
from .pipeline import LandmarkEstimate, LandmarkEstimator, LandmarkResult, summarize_landmarks

__all__ = [
    "ClassifiedCloud",
    "DEFAULT_COLOR_MODELS",
    "GaussianColorModel",
    "classify_color",
    "density_probability",
    "compute_maximum",
    "histogram_centers",
    "refine_centers",
    "select_near",
    "fit_plane",
    "is_landmark",
    "three_planes_intersection",
    "LandmarkEstimate",
    "LandmarkEstimator",
    "LandmarkResult",
    "summarize_landmarks",
]
