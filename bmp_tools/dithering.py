"""Floyd-Steinberg error diffusion onto a fixed palette."""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .errors import QuantizationError
from .palette_ops import ColorTuple, find_nearest_color
from .raster import IndexedRaster, Raster


logger = logging.getLogger(__name__)

#       X   7/16
# 3/16 5/16 1/16
DIFFUSION: Tuple[Tuple[int, int, float], ...] = (
    (1, 0, 7 / 16),
    (-1, 1, 3 / 16),
    (0, 1, 5 / 16),
    (1, 1, 1 / 16),
)


def floyd_steinberg_dither(raster: Raster, palette: Sequence[ColorTuple]) -> IndexedRaster:
    """Map ``raster`` onto ``palette`` while spreading each pixel's rounding error.

    Pixels are visited row-major. Error pushed towards a neighbour outside the
    raster is dropped rather than redistributed. The working buffer is private
    to this call; ``raster`` is not modified.
    """

    if len(palette) == 0:
        raise QuantizationError("Cannot dither against an empty palette")

    width, height = raster.width, raster.height
    colors = [tuple(int(c) for c in color) for color in palette]
    # Errors are integers and the weights are sixteenths, so these float sums
    # stay exact and match a float32 buffer bit for bit.
    working: List[List[float]] = (
        raster.pixels[:, :, :3].astype(np.float64).reshape(height, width * 3).tolist()
    )
    rows: List[List[int]] = []
    nearest: Dict[int, int] = {}
    w_right, w_down_left, w_down, w_down_right = (weight for _dx, _dy, weight in DIFFUSION)
    last = width - 1

    for y in range(height):
        current = working[y]
        below = working[y + 1] if y + 1 < height else None
        row_indices = [0] * width
        for x in range(width):
            i = x * 3
            r = current[i]
            g = current[i + 1]
            b = current[i + 2]
            r = 0 if r <= 0 else (255 if r >= 255 else int(r + 0.5))
            g = 0 if g <= 0 else (255 if g >= 255 else int(g + 0.5))
            b = 0 if b <= 0 else (255 if b >= 255 else int(b + 0.5))

            key = (r << 16) | (g << 8) | b
            index = nearest.get(key)
            if index is None:
                index = find_nearest_color((r, g, b), colors)
                nearest[key] = index
            row_indices[x] = index

            pr, pg, pb = colors[index]
            er = r - pr
            eg = g - pg
            eb = b - pb
            if not (er or eg or eb):
                continue

            if x < last:
                current[i + 3] += er * w_right
                current[i + 4] += eg * w_right
                current[i + 5] += eb * w_right
            if below is None:
                continue
            if x > 0:
                below[i - 3] += er * w_down_left
                below[i - 2] += eg * w_down_left
                below[i - 1] += eb * w_down_left
            below[i] += er * w_down
            below[i + 1] += eg * w_down
            below[i + 2] += eb * w_down
            if x < last:
                below[i + 3] += er * w_down_right
                below[i + 4] += eg * w_down_right
                below[i + 5] += eb * w_down_right
        rows.append(row_indices)
        # finished rows are no longer needed
        working[y] = []

    indices = np.array(rows, dtype=np.uint8).reshape(height, width)
    logger.debug(
        "Dithered size=%sx%s palette=%s distinct_colors=%s",
        width,
        height,
        len(palette),
        len(nearest),
    )
    return IndexedRaster(width=width, height=height, indices=indices)
