"""Camera/projector calibration bundle loading and validation."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import numpy as np
import yaml


@dataclass(slots=True)
class CalibrationBundle:
    """
    Intrinsics, distortion and extrinsics for a camera-projector pair.

    A camera-frame point X maps to the projector frame as R @ X + T.
    Rows [top_line, bottom_line) of the camera image see the projector;
    both zero means the band has not been measured yet.
    """
    Kc: np.ndarray
    kc_c: np.ndarray
    Kp: np.ndarray
    kc_p: np.ndarray
    R: np.ndarray
    T: np.ndarray
    top_line: int
    bottom_line: int
    projector_width: int
    projector_height: int

    @property
    def has_band(self) -> bool:
        return self.bottom_line > self.top_line > 0

    @property
    def projector_center(self) -> np.ndarray:
        """Projector optical centre expressed in the camera frame."""
        return -self.R.T @ self.T

    def with_lines(self, top_line: int, bottom_line: int) -> "CalibrationBundle":
        bundle = replace(self, top_line=int(top_line), bottom_line=int(bottom_line))
        _validate(bundle)
        return bundle

    def to_dict(self) -> dict[str, Any]:
        return {
            "camera_matrix": self.Kc.tolist(),
            "camera_dist_coeffs": self.kc_c.reshape(-1).tolist(),
            "projector_matrix": self.Kp.tolist(),
            "projector_dist_coeffs": self.kc_p.reshape(-1).tolist(),
            "R": self.R.tolist(),
            "T": self.T.reshape(-1).tolist(),
            "top_line": int(self.top_line),
            "bottom_line": int(self.bottom_line),
            "projector": {"width": int(self.projector_width), "height": int(self.projector_height)},
        }


def _validate(bundle: CalibrationBundle) -> None:
    if bundle.Kc.shape != (3, 3):
        raise ValueError("Invalid camera matrix shape in calibration file")
    if bundle.Kp.shape != (3, 3):
        raise ValueError("Invalid projector matrix shape in calibration file")
    if bundle.R.shape != (3, 3):
        raise ValueError("Invalid rotation matrix shape")
    if bundle.T.shape != (3,):
        raise ValueError("Invalid translation vector shape")
    if bundle.projector_width <= 0 or bundle.projector_height <= 0:
        raise ValueError("Projector size must be positive")
    if (bundle.top_line, bundle.bottom_line) != (0, 0) and not bundle.has_band:
        raise ValueError(
            f"Invalid projector band: top_line={bundle.top_line}, bottom_line={bundle.bottom_line}"
        )


def _read_mapping(path: Path) -> dict[str, Any]:
    text = path.read_text()
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Calibration file must contain a mapping: {path}")
    return data


def _dist(raw: Any) -> np.ndarray:
    if raw is None:
        return np.zeros(5, dtype=np.float64)
    return np.asarray(raw, dtype=np.float64).reshape(-1)


def calibration_from_dict(data: dict[str, Any]) -> CalibrationBundle:
    try:
        Kc = np.asarray(data["camera_matrix"], dtype=np.float64)
        Kp = np.asarray(data["projector_matrix"], dtype=np.float64)
        R = np.asarray(data["R"], dtype=np.float64)
        T = np.asarray(data["T"], dtype=np.float64).reshape(-1)
    except KeyError as exc:
        raise ValueError(f"Calibration missing field {exc.args[0]!r}") from exc

    proj = data.get("projector", {}) or {}
    if "width" in proj and "height" in proj:
        proj_w, proj_h = int(proj["width"]), int(proj["height"])
    elif isinstance(data.get("projector_size"), (list, tuple)) and len(data["projector_size"]) == 2:
        proj_w, proj_h = int(data["projector_size"][0]), int(data["projector_size"][1])
    else:
        raise ValueError("Calibration missing projector size")

    bundle = CalibrationBundle(
        Kc=Kc,
        kc_c=_dist(data.get("camera_dist_coeffs")),
        Kp=Kp,
        kc_p=_dist(data.get("projector_dist_coeffs")),
        R=R,
        T=T,
        top_line=int(data.get("top_line", 0)),
        bottom_line=int(data.get("bottom_line", 0)),
        projector_width=proj_w,
        projector_height=proj_h,
    )
    _validate(bundle)
    return bundle


def load_calibration(path: Path) -> CalibrationBundle:
    if not path.exists():
        raise FileNotFoundError(f"Calibration not found: {path}")
    return calibration_from_dict(_read_mapping(path))


def save_calibration(bundle: CalibrationBundle, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(bundle.to_dict(), indent=2))
