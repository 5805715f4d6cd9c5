"""CLI commands for reconstruct/landmark/session/find-lines."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from linescan_app.calibration import CalibrationBundle, load_calibration, save_calibration
from linescan_app.camera.mock import DirectoryFrameSource
from linescan_app.core.controller import ReconstructionSession
from linescan_app.core.logging import setup_logging
from linescan_app.core.models import (
    ClassifierParams,
    ColorClass,
    DetectorParams,
    LandmarkParams,
    PlaneFitParams,
    parse_color,
)
from linescan_app.landmark import LandmarkEstimator
from linescan_app.recon.io import load_point_cloud, save_landmarks, save_point_cloud
from linescan_app.recon.triangulate import find_top_bottom_lines

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2


def _load_config(path: str | Path = "config/default.yaml") -> dict:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    import yaml
    return yaml.safe_load(cfg_path.read_text()) or {}


def _detector_from_cfg(cfg: dict) -> DetectorParams:
    d = DetectorParams()
    det_cfg = cfg.get("detector", {}) or {}
    return DetectorParams(
        intensity_threshold=int(det_cfg.get("intensity_threshold", d.intensity_threshold)),
        reference_band_fraction=float(det_cfg.get("reference_band_fraction", d.reference_band_fraction)),
        denominator_eps=float(det_cfg.get("denominator_eps", d.denominator_eps)),
        color_window=int(det_cfg.get("color_window", d.color_window)),
    )


def _classifier_from_cfg(cfg: dict) -> ClassifierParams:
    d = ClassifierParams()
    cls_cfg = cfg.get("classifier", {}) or {}
    return ClassifierParams(
        density_threshold=float(cls_cfg.get("density_threshold", d.density_threshold)),
        border=int(cls_cfg.get("border", d.border)),
    )


def _plane_fit_from_cfg(raw: dict | None, default: PlaneFitParams) -> PlaneFitParams:
    raw = raw or {}
    return PlaneFitParams(
        min_sample_size=int(raw.get("min_sample_size", default.min_sample_size)),
        iterations=int(raw.get("iterations", default.iterations)),
        inlier_threshold=float(raw.get("inlier_threshold", default.inlier_threshold)),
        min_inliers=int(raw.get("min_inliers", default.min_inliers)),
        orthogonality_tolerance=float(raw.get("orthogonality_tolerance", default.orthogonality_tolerance)),
        refine=bool(raw.get("refine", default.refine)),
        cap_min_inliers=bool(raw.get("cap_min_inliers", default.cap_min_inliers)),
    )


def _fits_by_color_from_cfg(
    raw: dict | None,
    base: PlaneFitParams,
    default: Dict[ColorClass, PlaneFitParams],
) -> Dict[ColorClass, PlaneFitParams]:
    if raw is None:
        return dict(default)
    return {
        parse_color(name): _plane_fit_from_cfg(entry, default.get(parse_color(name), base))
        for name, entry in raw.items()
    }


def _landmark_from_cfg(cfg: dict, seed: int | None = None) -> LandmarkParams:
    d = LandmarkParams()
    lm_cfg = cfg.get("landmark", {}) or {}
    ref_cfg = lm_cfg.get("refine", {}) or {}
    order = tuple(parse_color(c) for c in ref_cfg.get("order", [c.value for c in d.refine_order]))
    if sorted(c.value for c in order) != ["blue", "green", "red"]:
        raise ValueError(f"landmark.refine.order must name each color once: {order}")
    cluster_radius = lm_cfg.get("cluster_radius", d.cluster_radius)
    cluster_fit = _plane_fit_from_cfg(lm_cfg.get("cluster_fit"), d.cluster_fit)
    disk_fit = _plane_fit_from_cfg(lm_cfg.get("disk_fit"), d.disk_fit)
    params = LandmarkParams(
        histogram_scale=float(lm_cfg.get("histogram_scale", d.histogram_scale)),
        histogram_variance=float(lm_cfg.get("histogram_variance", d.histogram_variance)),
        refine_start=float(ref_cfg.get("start", d.refine_start)),
        refine_stop=float(ref_cfg.get("stop", d.refine_stop)),
        refine_step=float(ref_cfg.get("step", d.refine_step)),
        refine_order=order,
        cluster_radius=None if cluster_radius is None else float(cluster_radius),
        disk_radius=float(lm_cfg.get("disk_radius", d.disk_radius)),
        disk_from_cloud=bool(lm_cfg.get("disk_from_cloud", d.disk_from_cloud)),
        cluster_fit=cluster_fit,
        cluster_fit_by_color=_fits_by_color_from_cfg(
            lm_cfg.get("cluster_fit_by_color"), cluster_fit, d.cluster_fit_by_color,
        ),
        disk_fit=disk_fit,
        disk_fit_by_color=_fits_by_color_from_cfg(
            lm_cfg.get("disk_fit_by_color"), disk_fit, d.disk_fit_by_color,
        ),
        determinant_eps=float(lm_cfg.get("determinant_eps", d.determinant_eps)),
        seed=seed if seed is not None else lm_cfg.get("seed", d.seed),
    )
    params.refine_thresholds()
    return params


def _frames_dir(args, cfg: dict) -> Path:
    frames = getattr(args, "frames", None)
    if frames is None:
        frames = (cfg.get("source", {}) or {}).get("frames_dir", "data/frames")
    return Path(frames)


def _reference(args, cfg: dict) -> str | None:
    ref = getattr(args, "reference", None)
    if ref is None:
        ref = (cfg.get("source", {}) or {}).get("reference")
    return ref


def _calibration(args, cfg: dict) -> CalibrationBundle:
    path = getattr(args, "calibration", None)
    if path is None:
        path = (cfg.get("calibration", {}) or {}).get("path", "data/calibration.json")
    return load_calibration(Path(path))


def _out_dir(args, cfg: dict, prefix: str) -> Path:
    out = getattr(args, "out", None)
    if out is not None:
        return Path(out)
    root = Path((cfg.get("output", {}) or {}).get("root", "data/runs"))
    return root / f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"


def _ensure_band(calib: CalibrationBundle, frames_dir: Path, reference: str | None, detector: DetectorParams) -> CalibrationBundle:
    if calib.has_band:
        return calib
    log.info("Calibration carries no projector band; measuring it from %s", frames_dir)
    band = _measure_band(frames_dir, reference, detector)
    if band is None:
        raise ValueError(f"No projector line found in {frames_dir}")
    return calib.with_lines(*band)


def _measure_band(frames_dir: Path, reference: str | None, detector: DetectorParams) -> tuple[int, int] | None:
    source = DirectoryFrameSource(frames_dir, reference=reference)
    with source:
        ref = source.capture()
        frames = []
        while source.remaining():
            frames.append(source.capture())
    return find_top_bottom_lines(ref, frames, detector)


def cmd_reconstruct(args) -> int:
    cfg = _load_config()
    detector = _detector_from_cfg(cfg)
    frames_dir = _frames_dir(args, cfg)
    reference = _reference(args, cfg)
    calib = _ensure_band(_calibration(args, cfg), frames_dir, reference, detector)
    session_cfg = cfg.get("session", {}) or {}
    max_frames = int(args.max_frames if args.max_frames is not None else session_cfg.get("max_frames", 800))

    session = ReconstructionSession(
        calib,
        detector=detector,
        landmark=_landmark_from_cfg(cfg),
        classifier=_classifier_from_cfg(cfg),
    )
    source = DirectoryFrameSource(frames_dir, reference=reference)
    cloud = session.reconstruct(source, max_frames, args.max_attempts)
    if len(cloud) == 0:
        print(json.dumps(session.status(), indent=2))
        return EXIT_FAILED

    out_dir = _out_dir(args, cfg, "cloud")
    classified = session.estimator.classify(cloud)
    meta = save_point_cloud(out_dir, cloud, classified)
    meta["status"] = session.status()
    meta["out_dir"] = str(out_dir)
    print(json.dumps(meta, indent=2))
    return EXIT_OK


def cmd_landmark(args) -> int:
    cfg = _load_config()
    cloud_dir = Path(args.cloud)
    cloud = load_point_cloud(cloud_dir)
    estimator = LandmarkEstimator(_landmark_from_cfg(cfg, seed=args.seed), _classifier_from_cfg(cfg))
    result = estimator.estimate(cloud)
    out = Path(args.out) if args.out is not None else cloud_dir / "landmarks.json"
    save_landmarks(out, result)
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK if result.ok else EXIT_FAILED


def cmd_session(args) -> int:
    cfg = _load_config()
    detector = _detector_from_cfg(cfg)
    src_cfg = cfg.get("source", {}) or {}
    session_cfg = cfg.get("session", {}) or {}
    frames_dir = _frames_dir(args, cfg)
    reference = _reference(args, cfg)
    calib = _ensure_band(_calibration(args, cfg), frames_dir, reference, detector)

    seed = args.seed if args.seed is not None else src_cfg.get("seed")
    repetitions = int(args.repetitions if args.repetitions is not None else session_cfg.get("repetitions", 10))
    max_frames = int(args.max_frames if args.max_frames is not None else session_cfg.get("max_frames", 800))
    max_attempts = args.max_attempts if args.max_attempts is not None else session_cfg.get("max_attempts")

    session = ReconstructionSession(
        calib,
        detector=detector,
        landmark=_landmark_from_cfg(cfg, seed=seed),
        classifier=_classifier_from_cfg(cfg),
    )
    source = DirectoryFrameSource(
        frames_dir,
        reference=reference,
        shuffle=bool(src_cfg.get("shuffle", True)),
        seed=seed,
    )
    summary = session.run(source, repetitions, max_frames, max_attempts)
    out = _out_dir(args, cfg, "session") / "landmarks.json"
    save_landmarks(out, summary)
    summary["out"] = str(out)
    print(json.dumps(summary, indent=2))
    return EXIT_OK if summary["succeeded"] > 0 else EXIT_FAILED


def cmd_find_lines(args) -> int:
    cfg = _load_config()
    detector = _detector_from_cfg(cfg)
    band = _measure_band(_frames_dir(args, cfg), _reference(args, cfg), detector)
    if band is None:
        print(json.dumps({"ok": False, "error": "no line found"}))
        return EXIT_FAILED
    payload: Dict[str, Any] = {"ok": True, "top_line": band[0], "bottom_line": band[1]}
    if args.write is not None:
        path = Path(args.write)
        calib = load_calibration(path).with_lines(*band)
        save_calibration(calib, path)
        payload["calibration"] = str(path)
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="linescan_app")
    sub = p.add_subparsers(dest="cmd")

    recon = sub.add_parser("reconstruct")
    recon.add_argument("--frames", type=str, default=None)
    recon.add_argument("--calibration", type=str, default=None)
    recon.add_argument("--reference", type=str, default=None)
    recon.add_argument("--max-frames", type=int, default=None)
    recon.add_argument("--max-attempts", type=int, default=None)
    recon.add_argument("--out", type=str, default=None)

    landmark = sub.add_parser("landmark")
    landmark.add_argument("--cloud", required=True)
    landmark.add_argument("--seed", type=int, default=None)
    landmark.add_argument("--out", type=str, default=None)

    session = sub.add_parser("session")
    session.add_argument("--frames", type=str, default=None)
    session.add_argument("--calibration", type=str, default=None)
    session.add_argument("--reference", type=str, default=None)
    session.add_argument("--repetitions", type=int, default=None)
    session.add_argument("--max-frames", type=int, default=None)
    session.add_argument("--max-attempts", type=int, default=None)
    session.add_argument("--seed", type=int, default=None)
    session.add_argument("--out", type=str, default=None)

    lines = sub.add_parser("find-lines")
    lines.add_argument("--frames", type=str, default=None)
    lines.add_argument("--reference", type=str, default=None)
    lines.add_argument("--write", type=str, default=None, help="calibration file to update with the band")

    return p


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    cfg = _load_config()
    log_cfg = cfg.get("logging", {}) or {}
    setup_logging(log_dir=log_cfg.get("dir", "logs"), level=log_cfg.get("level", "INFO"))
    commands = {
        "reconstruct": cmd_reconstruct,
        "landmark": cmd_landmark,
        "session": cmd_session,
        "find-lines": cmd_find_lines,
    }
    handler = commands.get(args.cmd)
    if handler is None:
        parser.print_help()
        return EXIT_OK
    try:
        return handler(args)
    except (FileNotFoundError, ValueError) as exc:
        log.error("%s failed: %s", args.cmd, exc)
        print(json.dumps({"ok": False, "error": str(exc)}))
        return EXIT_BAD_INPUT
