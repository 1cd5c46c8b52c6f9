"""Output size planning: fit inside a square budget, snap to 16-pixel steps."""
from __future__ import annotations

import logging
import math
from typing import Tuple

from .errors import DimensionError
from .palette_ops import round_half_up


logger = logging.getLogger(__name__)

SNAP = 16


def _snap_to_multiple(dimension: float, max_size: int) -> int:
    rounded = round_half_up(dimension / SNAP) * SNAP
    if rounded > max_size:
        return math.floor(dimension / SNAP) * SNAP
    return rounded


def plan_dimensions(source_width: int, source_height: int, max_size: int) -> Tuple[int, int]:
    """Return the output ``(width, height)`` for a source of the given size.

    The larger side is scaled down to ``max_size`` (images are never enlarged),
    then each side is snapped to the nearest multiple of 16 independently, so
    the aspect ratio may drift slightly. Results are at least 16.
    """

    if source_width <= 0 or source_height <= 0:
        raise DimensionError(
            f"Invalid image dimensions: {source_width}x{source_height}"
        )
    if max_size < SNAP:
        raise DimensionError(f"Maximum size must be at least {SNAP}, got {max_size}")

    scale = max_size / max(source_width, source_height)
    width: float = source_width
    height: float = source_height
    if scale < 1:
        width = source_width * scale
        height = source_height * scale

    planned = (
        max(SNAP, _snap_to_multiple(width, max_size)),
        max(SNAP, _snap_to_multiple(height, max_size)),
    )
    logger.debug(
        "Planned dimensions src=%sx%s max_size=%s scale=%.4f -> %sx%s",
        source_width,
        source_height,
        max_size,
        scale,
        planned[0],
        planned[1],
    )
    return planned
