"""Palette helpers and the shared nearest-color lookup."""
from __future__ import annotations

import math
from typing import List, Sequence, Tuple

import numpy as np


ColorTuple = Tuple[int, int, int]

# Pixels compared against the palette per numpy pass in ``map_to_palette``.
_MAP_CHUNK = 4096


def hex_to_rgb(value: str) -> ColorTuple:
    value = value.strip()
    if value.startswith("#"):
        value = value[1:]
    if len(value) != 6:
        raise ValueError("Expected hex RGB in the form RRGGBB")
    r = int(value[0:2], 16)
    g = int(value[2:4], 16)
    b = int(value[4:6], 16)
    return (r, g, b)


def round_half_up(value: float) -> int:
    """Round like the browser ``Math.round``: halves go towards +infinity."""

    return int(math.floor(value + 0.5))


def validate_color(color: Sequence[int]) -> ColorTuple:
    if len(color) != 3:
        raise ValueError(f"Colors need exactly three components, got {len(color)}")
    values = tuple(int(c) for c in color)
    if any(not (0 <= c <= 255) for c in values):
        raise ValueError(f"Color components must be between 0 and 255: {values}")
    return values  # type: ignore[return-value]


def palette_array(palette: Sequence[ColorTuple]) -> np.ndarray:
    """Return ``palette`` as an ``(n, 3)`` int64 array."""

    if len(palette) == 0:
        return np.zeros((0, 3), dtype=np.int64)
    return np.asarray(palette, dtype=np.int64).reshape(-1, 3)


def pad_palette(colors: Sequence[ColorTuple], size: int = 256) -> List[ColorTuple]:
    """Return ``colors`` truncated or padded with black to exactly ``size`` entries."""

    limited = list(colors[:size])
    if len(limited) < size:
        limited.extend([(0, 0, 0)] * (size - len(limited)))
    return limited


def find_nearest_color(color: Sequence[int], palette: Sequence[ColorTuple]) -> int:
    """Index of the palette entry with the smallest squared RGB distance.

    Ties resolve to the lowest index because the scan only replaces the best
    match on a strictly smaller distance.
    """

    r, g, b = int(color[0]), int(color[1]), int(color[2])
    nearest = 0
    best = None
    for index, (pr, pg, pb) in enumerate(palette):
        dr = r - pr
        dg = g - pg
        db = b - pb
        distance = dr * dr + dg * dg + db * db
        if best is None or distance < best:
            best = distance
            nearest = index
    return nearest


def map_to_palette(pixels: np.ndarray, palette: Sequence[ColorTuple]) -> np.ndarray:
    """Vectorized ``find_nearest_color`` over an ``(n, 3)`` pixel array.

    ``argmin`` returns the first minimum, which keeps the lowest-index tie rule.
    """

    colors = palette_array(palette)
    flat = np.asarray(pixels, dtype=np.int64).reshape(-1, 3)
    result = np.zeros(flat.shape[0], dtype=np.intp)
    if colors.shape[0] == 0:
        return result
    for start in range(0, flat.shape[0], _MAP_CHUNK):
        chunk = flat[start : start + _MAP_CHUNK]
        diff = chunk[:, None, :] - colors[None, :, :]
        distances = np.einsum("npc,npc->np", diff, diff)
        result[start : start + chunk.shape[0]] = np.argmin(distances, axis=1)
    return result
