"""Frame source base interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
import numpy as np


class FrameSource(ABC):
    """Abstract acquisition interface delivering BGR frames on demand."""

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def capture(self) -> np.ndarray:
        """
        Capture the next frame. Returns a uint8 BGR array (H, W, 3).
        """
        pass

    def remaining(self) -> int | None:
        """Frames left before exhaustion, or None for a live source."""
        return None

    @abstractmethod
    def stop(self) -> None:
        pass

    def __enter__(self) -> "FrameSource":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
