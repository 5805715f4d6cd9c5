"""Calibration bundle helpers."""

from .bundle import (
    CalibrationBundle,
    calibration_from_dict,
    load_calibration,
    save_calibration,
)

__all__ = [
    "CalibrationBundle",
    "calibration_from_dict",
    "load_calibration",
    "save_calibration",
]
