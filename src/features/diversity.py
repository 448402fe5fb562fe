from __future__ import annotations

import math

import numpy as np

from src.features.pixels import entropy, pixel_grid, quantized_keys, unit_score
from src.models import NEUTRAL_SCORE, PixelBuffer

MIN_STRIDE = 4
COLOR_STEP = 32
MAX_BUCKETS = 512
MIN_BRIGHTNESS_SAMPLES = 10


def diversity_score(buffer: PixelBuffer, sample_rate: int = 2) -> float:
    """Visual richness of a single frame from colour entropy and brightness spread."""

    pixels = pixel_grid(buffer, scorer="diversity_score")
    if pixels is None:
        return NEUTRAL_SCORE

    stride = max(int(sample_rate), MIN_STRIDE)
    sampled = pixels[::stride, ::stride]
    counts = np.bincount(quantized_keys(sampled, COLOR_STEP).reshape(-1))
    buckets = int((counts > 0).sum())
    max_entropy = math.log(min(buckets, MAX_BUCKETS)) if buckets > 0 else 0.0
    color_entropy = min(1.0, entropy(counts, base=math.e) / max_entropy) if max_entropy > 0 else 0.0

    return unit_score(color_entropy * 0.7 + brightness_variation(sampled) * 0.3)


def brightness_variation(sampled: np.ndarray) -> float:
    """Standard deviation of mean-channel brightness on a ``[0, 1]`` scale, amplified x4."""

    brightness = sampled[..., :3].astype(np.float64).mean(axis=-1).reshape(-1) / 255.0
    if brightness.size < MIN_BRIGHTNESS_SAMPLES:
        return NEUTRAL_SCORE
    average = float(brightness.mean())
    subset = brightness[:: max(1, brightness.size // 100)]
    variance = float(((subset - average) ** 2).mean())
    return min(1.0, math.sqrt(variance) * 4.0)
