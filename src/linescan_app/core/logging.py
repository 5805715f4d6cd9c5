"""Logging setup for the application."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "linescan_app"


def _level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(log_dir: str | Path | None = "logs", level: int | str = logging.INFO) -> logging.Logger:
    """
    Configure the package logger once; later calls only adjust the level.

    With log_dir=None no file handler is installed.
    """
    logger = logging.getLogger(LOGGER_NAME)
    lvl = _level(level)
    logger.setLevel(lvl)

    if log_dir is not None and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_path / "linescan.log", maxBytes=2_000_000, backupCount=3)
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)

    # RotatingFileHandler subclasses StreamHandler, so match the exact type.
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(console)

    for h in logger.handlers:
        h.setLevel(lvl)
    return logger
