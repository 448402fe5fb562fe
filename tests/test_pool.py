from __future__ import annotations

import threading

import pytest

from src.analysis.pool import CanvasPool


def test_acquire_returns_zeroed_canvas_of_requested_shape() -> None:
    pool = CanvasPool()

    canvas = pool.acquire(8, 4)

    assert canvas.shape == (4, 8, 4)
    assert int(canvas.max()) == 0


def test_released_canvas_is_cleared_and_reused() -> None:
    pool = CanvasPool(max_size=2)
    canvas = pool.acquire(8, 4)
    canvas[...] = 77

    pool.release(canvas)
    again = pool.acquire(8, 4)

    assert again is canvas
    assert int(again.max()) == 0
    assert len(pool) == 0


def test_pool_never_grows_beyond_max_size() -> None:
    pool = CanvasPool(max_size=2)
    canvases = [pool.acquire(4, 4) for _ in range(4)]

    for canvas in canvases:
        pool.release(canvas)

    assert len(pool) == 2
    pool.clear()
    assert len(pool) == 0


def test_mismatched_shape_allocates_new_canvas() -> None:
    pool = CanvasPool()
    small = pool.acquire(4, 4)
    pool.release(small)

    other = pool.acquire(6, 4)

    assert other is not small
    assert other.shape == (4, 6, 4)


def test_invalid_dimensions_are_rejected() -> None:
    with pytest.raises(ValueError):
        CanvasPool().acquire(0, 10)


def test_pool_rejects_use_from_another_thread() -> None:
    pool = CanvasPool()
    errors: list[Exception] = []

    def _use() -> None:
        try:
            pool.acquire(2, 2)
        except RuntimeError as exc:
            errors.append(exc)

    worker = threading.Thread(target=_use)
    worker.start()
    worker.join()

    assert len(errors) == 1
