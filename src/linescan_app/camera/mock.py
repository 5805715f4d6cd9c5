"""Frame sources replaying images from disk or memory."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np
from PIL import Image

from linescan_app.camera.base import FrameSource

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp"}


def read_bgr(path: Path) -> np.ndarray:
    img = Image.open(path).convert("RGB")
    return np.ascontiguousarray(np.array(img, dtype=np.uint8)[:, :, ::-1])


class DirectoryFrameSource(FrameSource):
    """
    Serve frames from a directory in name order.

    The reference (background) frame is always served first: either the
    named file or the first image. With shuffle=True the remaining frames
    are re-ordered by a seeded generator on every start().
    """

    def __init__(
        self,
        data_dir: str | Path,
        reference: str | Path | None = None,
        shuffle: bool = False,
        seed: int | None = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.reference = Path(reference) if reference is not None else None
        self.shuffle = shuffle
        self._rng = np.random.default_rng(seed)
        self._queue: list[Path] = []
        self._started = False

    def _list_files(self) -> list[Path]:
        return sorted(p for p in self.data_dir.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)

    def start(self) -> None:
        if not self.data_dir.exists():
            raise FileNotFoundError(f"Frame dir not found: {self.data_dir}")
        files = self._list_files()
        if self.reference is not None:
            ref = self.reference if self.reference.exists() else self.data_dir / self.reference
            if not ref.exists():
                raise FileNotFoundError(f"Reference frame not found: {ref}")
            files = [p for p in files if p.resolve() != ref.resolve()]
        else:
            if not files:
                raise FileNotFoundError(f"No images in {self.data_dir}")
            ref, files = files[0], files[1:]
        if self.shuffle:
            order = self._rng.permutation(len(files))
            files = [files[i] for i in order]
        self._queue = [ref, *files]
        self._started = True

    def capture(self) -> np.ndarray:
        if not self._started:
            raise RuntimeError("DirectoryFrameSource not started")
        if not self._queue:
            raise RuntimeError(f"Frame source exhausted: {self.data_dir}")
        return read_bgr(self._queue.pop(0))

    def remaining(self) -> int | None:
        return len(self._queue)

    def stop(self) -> None:
        self._queue = []
        self._started = False


class ArrayFrameSource(FrameSource):
    """In-memory frame source; the first frame is the reference."""

    def __init__(self, frames: Sequence[np.ndarray]) -> None:
        self._frames = list(frames)
        self._index = 0
        self._started = False

    def start(self) -> None:
        self._index = 0
        self._started = True

    def capture(self) -> np.ndarray:
        if not self._started:
            raise RuntimeError("ArrayFrameSource not started")
        if self._index >= len(self._frames):
            raise RuntimeError("Frame source exhausted")
        frame = self._frames[self._index]
        self._index += 1
        return frame

    def remaining(self) -> int | None:
        return len(self._frames) - self._index

    def stop(self) -> None:
        self._started = False
