"""I/O helpers for point clouds and landmark outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TYPE_CHECKING

import numpy as np
from PIL import Image

from .triangulate import PointCloud

if TYPE_CHECKING:
    from linescan_app.landmark.classify import ClassifiedCloud


def _save_mask_png(mask: np.ndarray, path: Path) -> None:
    out = np.where(mask.astype(bool), 255, 0).astype(np.uint8)
    Image.fromarray(out).save(path)


def _save_bgr_png(img: np.ndarray, path: Path) -> None:
    Image.fromarray(np.ascontiguousarray(img[:, :, ::-1])).save(path)


def _ply_header(n: int, with_color: bool) -> str:
    lines = ["ply", "format ascii 1.0", f"element vertex {n}"]
    lines += [f"property double {axis}" for axis in ("x", "y", "z")]
    if with_color:
        lines += [f"property uchar {ch}" for ch in ("red", "green", "blue")]
    lines.append("end_header")
    return "\n".join(lines)


def save_ply(points_xyz: np.ndarray, colors_rgb: np.ndarray | None, path: Path) -> None:
    """ASCII PLY with one vertex per row (x y z [r g b])."""
    pts = np.asarray(points_xyz, dtype=np.float64).reshape(-1, 3)
    header = _ply_header(pts.shape[0], colors_rgb is not None)
    with path.open("w", encoding="utf-8") as f:
        if colors_rgb is None:
            np.savetxt(f, pts, fmt="%.9g", header=header, comments="")
            return
        rgb = np.clip(np.rint(colors_rgb), 0, 255).astype(np.int64).reshape(-1, 3)
        if rgb.shape[0] != pts.shape[0]:
            raise ValueError(f"{pts.shape[0]} points but {rgb.shape[0]} colors")
        table = np.empty((pts.shape[0], 6), dtype=object)
        table[:, :3] = pts
        table[:, 3:] = rgb
        np.savetxt(f, table, fmt=["%.9g"] * 3 + ["%d"] * 3, header=header, comments="")


def save_point_cloud(
    out_dir: Path,
    cloud: PointCloud,
    classified: "ClassifiedCloud | None" = None,
) -> dict[str, Any]:
    out_dir.mkdir(parents=True, exist_ok=True)
    valid = cloud.valid_mask()

    np.save(out_dir / "xyz.npy", cloud.xyz.astype(np.float64))
    np.save(out_dir / "bgr.npy", cloud.bgr.astype(np.uint8))
    _save_mask_png(valid, out_dir / "mask_valid.png")

    pts = cloud.xyz[valid]
    save_ply(pts, cloud.bgr[valid][:, ::-1], out_dir / "cloud.ply")

    files: dict[str, Any] = {
        "xyz": "xyz.npy",
        "bgr": "bgr.npy",
        "mask_valid": "mask_valid.png",
        "cloud": "cloud.ply",
    }
    if classified is not None:
        vis = classified.visualization()
        save_ply(pts, vis[valid][:, ::-1], out_dir / "cloud_classes.ply")
        _save_bgr_png(vis, out_dir / "classes.png")
        files["cloud_classes"] = "cloud_classes.ply"
        files["classes_png"] = "classes.png"
        meta_counts = classified.counts()
    else:
        meta_counts = None

    meta = {
        "camera_size": [int(cloud.shape[1]), int(cloud.shape[0])],
        "valid_points": int(pts.shape[0]),
        "frames_accepted": int(cloud.hits),
        "files": files,
    }
    if meta_counts is not None:
        meta["class_counts"] = meta_counts
    (out_dir / "cloud_meta.json").write_text(json.dumps(meta, indent=2))
    return meta


def load_point_cloud(out_dir: Path) -> PointCloud:
    xyz_path = out_dir / "xyz.npy"
    bgr_path = out_dir / "bgr.npy"
    if not (xyz_path.exists() and bgr_path.exists()):
        raise FileNotFoundError(f"Missing xyz.npy/bgr.npy under {out_dir}")
    cloud = PointCloud.from_arrays(np.load(xyz_path), np.load(bgr_path))
    meta_path = out_dir / "cloud_meta.json"
    if meta_path.exists():
        cloud.hits = int(json.loads(meta_path.read_text()).get("frames_accepted", 0))
    return cloud


def save_landmarks(path: Path, payload: Any) -> None:
    data = payload.to_dict() if hasattr(payload, "to_dict") else payload
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
