"""Reconstruction session coordinating frame source, triangulation and landmarks."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

import numpy as np

from linescan_app.calibration import CalibrationBundle
from linescan_app.camera.base import FrameSource
from linescan_app.core.models import ClassifierParams, DetectorParams, LandmarkParams
from linescan_app.landmark import LandmarkEstimator, LandmarkResult, summarize_landmarks
from linescan_app.recon.triangulate import FrameResult, PointCloud, triangulate_frame

log = logging.getLogger(__name__)

State = Literal["IDLE", "RUNNING", "DONE", "ERROR"]


class ReconstructionSession:
    """
    Pulls frames from a source, accumulates a PointCloud and estimates
    both landmark variants from it.
    """

    def __init__(
        self,
        calibration: CalibrationBundle,
        detector: DetectorParams | None = None,
        landmark: LandmarkParams | None = None,
        classifier: ClassifierParams | None = None,
    ) -> None:
        if not calibration.has_band:
            raise ValueError("Calibration has no projector band; run find-lines first")
        self.calibration = calibration
        self.detector = detector or DetectorParams()
        self.estimator = LandmarkEstimator(landmark, classifier)

        self._state: State = "IDLE"
        self._frames_seen = 0
        self._frames_accepted = 0
        self._rejections: Dict[str, int] = {}
        self._last_error: Optional[str] = None

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state,
            "frames_seen": self._frames_seen,
            "frames_accepted": self._frames_accepted,
            "rejections": dict(self._rejections),
            "last_error": self._last_error,
        }

    def _record(self, result: FrameResult) -> None:
        self._frames_seen += 1
        if result.valid:
            self._frames_accepted += 1
        else:
            key = result.reason or "unknown"
            self._rejections[key] = self._rejections.get(key, 0) + 1

    def reconstruct(
        self,
        source: FrameSource,
        max_frames: int,
        max_attempts: Optional[int] = None,
    ) -> PointCloud:
        """
        Accumulate up to `max_frames` accepted frames into a fresh cloud.

        The first frame from `source` is the reference. Rejected frames do
        not count toward `max_frames`; at most `max_attempts` frames
        (default 4 * max_frames) are read after the reference. Running the
        source dry ends the sweep early.
        """
        if max_frames <= 0:
            raise ValueError("max_frames must be positive")
        attempts = int(max_attempts) if max_attempts is not None else 4 * int(max_frames)

        self._state = "RUNNING"
        self._frames_seen = 0
        self._frames_accepted = 0
        self._rejections = {}
        self._last_error = None

        source.start()
        try:
            reference = source.capture()
            cloud = PointCloud(reference.shape[0], reference.shape[1])
            while self._frames_accepted < max_frames and self._frames_seen < attempts:
                left = source.remaining()
                if left is not None and left <= 0:
                    log.info("Frame source ran dry after %d frames", self._frames_seen)
                    break
                frame = source.capture()
                self._record(triangulate_frame(reference, frame, self.calibration, cloud, self.detector))
        except Exception as exc:
            self._state = "ERROR"
            self._last_error = str(exc)
            log.exception("Reconstruction failed")
            raise
        finally:
            source.stop()

        self._state = "DONE"
        log.info(
            "Reconstruction: %d/%d frames accepted, %d points, rejections=%s",
            self._frames_accepted, self._frames_seen, len(cloud), self._rejections,
        )
        return cloud

    def estimate(self, cloud: PointCloud) -> LandmarkResult:
        return self.estimator.estimate(cloud)

    def run(
        self,
        source: FrameSource,
        repetitions: int,
        max_frames: int,
        max_attempts: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Repeat reconstruct + estimate and summarise the landmarks.

        Repetitions where either variant failed are left out of both
        summaries, matching how the pair is compared.
        """
        cluster: List[np.ndarray] = []
        disk: List[np.ndarray] = []
        failures: List[Dict[str, Any]] = []
        for rep in range(int(repetitions)):
            cloud = self.reconstruct(source, max_frames, max_attempts)
            result = self.estimate(cloud)
            if not result.ok:
                failures.append({
                    "repetition": rep,
                    "cluster": result.cluster.reason,
                    "disk": result.disk.reason,
                })
                log.warning("Repetition %d failed: %s / %s", rep, result.cluster.reason, result.disk.reason)
                continue
            cluster.append(result.cluster.point)
            disk.append(result.disk.point)
            log.info("Repetition %d: cluster=%s disk=%s", rep, result.cluster.point, result.disk.point)

        return {
            "repetitions": int(repetitions),
            "succeeded": len(cluster),
            "failures": failures,
            "cluster": summarize_landmarks(cluster),
            "disk": summarize_landmarks(disk),
        }
