"""Gaussian color classification of reconstructed points."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping

import numpy as np
from scipy.stats import multivariate_normal

from linescan_app.core.models import (
    BoundingBox,
    CLASS_ORDER,
    ClassifierParams,
    ColorClass,
    EVALUATION_ORDER,
    LABEL_INVALID,
    LABEL_UNCLASSIFIED,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GaussianColorModel:
    """Multivariate normal over BGR samples for one marker paint."""
    mean: np.ndarray
    cov: np.ndarray

    def density(self, samples: np.ndarray) -> np.ndarray:
        x = np.asarray(samples, dtype=np.float64).reshape(-1, 3)
        if x.shape[0] == 0:
            return np.zeros(0, dtype=np.float64)
        return np.atleast_1d(multivariate_normal(mean=self.mean, cov=self.cov).pdf(x))


# Fitted offline on BGR samples of the painted target under the line projector.
DEFAULT_COLOR_MODELS: Dict[ColorClass, GaussianColorModel] = {
    ColorClass.GREEN: GaussianColorModel(
        mean=np.array([89.98476454293629, 113.5203139427516, 69.0803324099723]),
        cov=np.array([
            [159.8986598476079, 120.4950001662561, 89.770845322959],
            [120.4950001662561, 166.0926159679223, 111.4628187322072],
            [89.770845322959, 111.4628187322072, 109.2779419024306],
        ]),
    ),
    ColorClass.BLUE: GaussianColorModel(
        mean=np.array([162.790273556231, 69.31408308004053, 59.89260385005066]),
        cov=np.array([
            [247.0512529140221, 23.33132238862042, 9.271295842918425],
            [23.33132238862042, 18.81523226462756, 5.455210543550453],
            [9.271295842918425, 5.455210543550453, 26.2255481338454],
        ]),
    ),
    ColorClass.RED: GaussianColorModel(
        mean=np.array([55.29753265602322, 65.80188679245283, 210.0304789550073]),
        cov=np.array([
            [88.49347722135754, 27.61482323301476, 44.47569203806028],
            [27.61482323301476, 41.77134622230733, 70.2651094011009],
            [44.47569203806028, 70.2651094011009, 343.3067633409943],
        ]),
    ),
}

CLASS_BGR = {
    ColorClass.BLUE: (255, 0, 0),
    ColorClass.GREEN: (0, 255, 0),
    ColorClass.RED: (0, 0, 255),
}
UNCLASSIFIED_BGR = (255, 255, 255)


@dataclass(slots=True)
class ClassifiedCloud:
    """
    Per-class point sets split out of a PointCloud.

    `labels` is aligned with the camera grid: an index into CLASS_ORDER,
    LABEL_UNCLASSIFIED for valid points no model explains, LABEL_INVALID
    for empty or border cells. `bbox` covers every valid cloud point, and
    `valid_points` holds them all (row-major), labelled or not.
    """
    points: Dict[ColorClass, np.ndarray]
    labels: np.ndarray
    bbox: BoundingBox = field(default_factory=BoundingBox)
    valid_points: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))

    def counts(self) -> Dict[str, int]:
        return {c.value: int(self.points[c].shape[0]) for c in CLASS_ORDER}

    def visualization(self) -> np.ndarray:
        """BGR image of the labels; empty cells stay black."""
        return label_colors(self.labels)


def label_colors(labels: np.ndarray) -> np.ndarray:
    out = np.zeros(labels.shape + (3,), dtype=np.uint8)
    for idx, color in enumerate(CLASS_ORDER):
        out[labels == idx] = CLASS_BGR[color]
    out[labels == LABEL_UNCLASSIFIED] = UNCLASSIFIED_BGR
    return out


def _scores(
    samples: np.ndarray,
    models: Mapping[ColorClass, GaussianColorModel],
    threshold: float,
) -> np.ndarray:
    """Label per sample (index into CLASS_ORDER or LABEL_UNCLASSIFIED)."""
    dens = np.stack([models[c].density(samples) for c in EVALUATION_ORDER], axis=1)
    # np.argmax keeps the first maximum, so ties follow EVALUATION_ORDER.
    best = np.argmax(dens, axis=1)
    best_val = dens[np.arange(dens.shape[0]), best]
    eval_to_label = np.array([CLASS_ORDER.index(c) for c in EVALUATION_ORDER], dtype=np.int64)
    labels = eval_to_label[best]
    labels[~(best_val > threshold)] = LABEL_UNCLASSIFIED
    return labels


def classify_color(
    bgr: np.ndarray | tuple[float, float, float],
    models: Mapping[ColorClass, GaussianColorModel] | None = None,
    threshold: float = 1e-9,
) -> ColorClass | None:
    """Class of one BGR sample, or None when no density clears `threshold`."""
    models = models or DEFAULT_COLOR_MODELS
    label = int(_scores(np.asarray(bgr, dtype=np.float64).reshape(1, 3), models, threshold)[0])
    if label == LABEL_UNCLASSIFIED:
        return None
    return CLASS_ORDER[label]


def density_probability(
    xyz: np.ndarray,
    bgr: np.ndarray,
    models: Mapping[ColorClass, GaussianColorModel] | None = None,
    params: ClassifierParams | None = None,
) -> ClassifiedCloud:
    """
    Split valid cloud cells into Blue/Green/Red point sets.

    Cells within `params.border` of the image edge are ignored. Points keep
    row-major grid order inside each class.
    """
    models = models or DEFAULT_COLOR_MODELS
    params = params or ClassifierParams()
    if xyz.shape != bgr.shape or xyz.ndim != 3 or xyz.shape[2] != 3:
        raise ValueError(f"xyz/bgr grids do not match: {xyz.shape} vs {bgr.shape}")

    h, w = xyz.shape[:2]
    valid = xyz[:, :, 2] > 0
    bbox = BoundingBox()
    bbox.update(xyz[valid])

    b = max(int(params.border), 0)
    interior = np.zeros_like(valid)
    if h > 2 * b and w > 2 * b:
        interior[b:h - b, b:w - b] = True
    candidates = valid & interior

    labels = np.full((h, w), LABEL_INVALID, dtype=np.int64)
    labels[candidates] = _scores(bgr[candidates], models, params.density_threshold)

    points = {c: xyz[labels == idx].astype(np.float64) for idx, c in enumerate(CLASS_ORDER)}
    classified = ClassifiedCloud(
        points=points,
        labels=labels,
        bbox=bbox,
        valid_points=xyz[valid].astype(np.float64),
    )
    log.info(
        "Classified %d points: %s, %d unclassified",
        int(np.count_nonzero(candidates)),
        classified.counts(),
        int(np.count_nonzero(labels == LABEL_UNCLASSIFIED)),
    )
    return classified
