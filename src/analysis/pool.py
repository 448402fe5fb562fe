from __future__ import annotations

import threading

import numpy as np


class CanvasPool:
    """Reusable RGBA scratch arrays for resizing and colour conversion.

    The pool belongs to the thread that created it; use from any other thread
    raises ``RuntimeError``. It is never handed to the background process.
    """

    def __init__(self, max_size: int = 5) -> None:
        self.max_size = max(0, int(max_size))
        self._owner = threading.get_ident()
        self._free: list[np.ndarray] = []

    def __len__(self) -> int:
        return len(self._free)

    def acquire(self, width: int, height: int) -> np.ndarray:
        """Return a zeroed ``(height, width, 4)`` uint8 canvas, reusing a pooled one of that shape."""

        self._check_owner()
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas dimensions must be positive, got {width}x{height}.")
        for position, canvas in enumerate(self._free):
            if canvas.shape[:2] == (height, width):
                return self._free.pop(position)
        return np.zeros((height, width, 4), dtype=np.uint8)

    def release(self, canvas: np.ndarray) -> None:
        self._check_owner()
        canvas.fill(0)
        if len(self._free) < self.max_size:
            self._free.append(canvas)

    def clear(self) -> None:
        self._check_owner()
        self._free.clear()

    def _check_owner(self) -> None:
        if threading.get_ident() != self._owner:
            raise RuntimeError("CanvasPool may only be used from the thread that created it.")
