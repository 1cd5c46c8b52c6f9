"""Resampling filters used to bring decoded rasters to the planned size.

Four variants are available through :func:`resample`:

``progressive``
    Pillow area resampling, halving repeatedly for large reductions, with an
    optional unsharp pass after every step. This is the default.
``lanczos``
    Lanczos-3 windowed sinc. The only variant that also resamples alpha.
``bicubic``
    Catmull-Rom cubic convolution over a 4x4 neighbourhood.
``hermite``
    Smoothstep-weighted 2x2 blend.

All variants map a target pixel ``(x, y)`` to the source position
``(x * srcW / dstW, y * srcH / dstH)`` (Lanczos uses ``srcW - 1`` and
``srcH - 1``) and clamp neighbourhood lookups to the raster edges.
"""
from __future__ import annotations

import logging
import math
from typing import Callable, Dict, Tuple

import numpy as np
from PIL import Image

from .errors import DimensionError
from .raster import Raster


logger = logging.getLogger(__name__)

LANCZOS_RADIUS = 3
SHARPEN_AMOUNT = 0.3

Resampler = Callable[[Raster, int, int, bool], Raster]


def _check_target(raster: Raster, target_width: int, target_height: int) -> None:
    if raster.width <= 0 or raster.height <= 0:
        raise DimensionError(f"Cannot resample an empty raster ({raster.width}x{raster.height})")
    if target_width <= 0 or target_height <= 0:
        raise DimensionError(f"Invalid target size {target_width}x{target_height}")


def _to_uint8_even(values: np.ndarray) -> np.ndarray:
    """Clamp and round half-to-even, matching an 8-bit clamped store."""

    return np.rint(np.clip(values, 0, 255)).astype(np.uint8)


def _to_uint8_half_up(values: np.ndarray) -> np.ndarray:
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


def _opaque(rgb: np.ndarray) -> np.ndarray:
    height, width = rgb.shape[:2]
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = rgb
    pixels[:, :, 3] = 255
    return pixels


def _source_positions(source: int, target: int, span: float | None = None) -> np.ndarray:
    ratio = (source if span is None else span) / target
    return np.arange(target, dtype=np.float64) * ratio


# --- Hermite -----------------------------------------------------------------


def hermite_weight(t: np.ndarray) -> np.ndarray:
    """Smoothstep falloff ``2t^3 - 3t^2 + 1``: 1 at ``t=0``, 0 at ``t=1``."""

    return 2 * t**3 - 3 * t**2 + 1


def _hermite_axis(source: int, target: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    positions = _source_positions(source, target)
    base = np.floor(positions)
    frac = positions - base
    base = base.astype(np.intp)
    near = np.clip(base, 0, source - 1)
    far = np.clip(base + 1, 0, source - 1)
    return near, far, hermite_weight(frac)


def resize_hermite(raster: Raster, target_width: int, target_height: int, sharpen: bool = False) -> Raster:
    _check_target(raster, target_width, target_height)
    src = raster.pixels[:, :, :3].astype(np.float64)
    x0, x1, wx = _hermite_axis(raster.width, target_width)
    y0, y1, wy = _hermite_axis(raster.height, target_height)

    wx = wx[None, :, None]
    # h(t) weighs the far sample, so t=0 takes the right or lower neighbour.
    rows = src[:, x0] * (1 - wx) + src[:, x1] * wx
    wy = wy[:, None, None]
    blended = rows[y0] * (1 - wy) + rows[y1] * wy
    return Raster(target_width, target_height, _opaque(_to_uint8_even(blended)))


# --- Bicubic -----------------------------------------------------------------


def catmull_rom_weights(t: np.ndarray) -> np.ndarray:
    """Weights for the samples at offsets -1, 0, 1, 2 around a fractional ``t``."""

    t2 = t * t
    t3 = t2 * t
    return 0.5 * np.stack(
        (
            -t + 2 * t2 - t3,
            2 - 5 * t2 + 3 * t3,
            t + 4 * t2 - 3 * t3,
            -t2 + t3,
        ),
        axis=-1,
    )


def _bicubic_axis(source: int, target: int) -> Tuple[np.ndarray, np.ndarray]:
    positions = _source_positions(source, target)
    base = np.floor(positions)
    weights = catmull_rom_weights(positions - base)
    taps = base.astype(np.intp)[:, None] + np.arange(-1, 3)[None, :]
    return np.clip(taps, 0, source - 1), weights


def resize_bicubic(raster: Raster, target_width: int, target_height: int, sharpen: bool = False) -> Raster:
    _check_target(raster, target_width, target_height)
    src = raster.pixels[:, :, :3].astype(np.float64)
    ix, wx = _bicubic_axis(raster.width, target_width)
    iy, wy = _bicubic_axis(raster.height, target_height)

    rows = np.zeros((raster.height, target_width, 3), dtype=np.float64)
    for k in range(4):
        rows += src[:, ix[:, k]] * wx[None, :, k, None]
    out = np.zeros((target_height, target_width, 3), dtype=np.float64)
    for k in range(4):
        out += rows[iy[:, k]] * wy[:, k, None, None]
    return Raster(target_width, target_height, _opaque(_to_uint8_even(out)))


# --- Lanczos -----------------------------------------------------------------


def lanczos_kernel(x: np.ndarray, a: int = LANCZOS_RADIUS) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    weights = np.sinc(x) * np.sinc(x / a)
    return np.where(np.abs(x) < a, weights, 0.0)


def _lanczos_axis(source: int, target: int, a: int) -> Tuple[np.ndarray, np.ndarray]:
    positions = _source_positions(source, target, span=source - 1)
    base = np.floor(positions).astype(np.intp)
    taps = base[:, None] + np.arange(-a + 1, a + 1)[None, :]
    inside = (taps >= 0) & (taps < source)
    weights = np.where(inside, lanczos_kernel(positions[:, None] - taps, a), 0.0)
    return np.clip(taps, 0, source - 1), weights


def resize_lanczos(raster: Raster, target_width: int, target_height: int, sharpen: bool = False) -> Raster:
    _check_target(raster, target_width, target_height)
    a = LANCZOS_RADIUS
    src = raster.pixels.astype(np.float64)
    ix, wx = _lanczos_axis(raster.width, target_width, a)
    iy, wy = _lanczos_axis(raster.height, target_height, a)

    rows = np.zeros((target_height, raster.width, 4), dtype=np.float64)
    for k in range(iy.shape[1]):
        rows += src[iy[:, k]] * wy[:, k, None, None]
    total = np.zeros((target_height, target_width, 4), dtype=np.float64)
    for k in range(ix.shape[1]):
        total += rows[:, ix[:, k]] * wx[None, :, k, None]

    weight_sum = wy.sum(axis=1)[:, None] * wx.sum(axis=1)[None, :]
    positive = weight_sum > 0
    normalized = np.divide(
        total,
        weight_sum[:, :, None],
        out=np.zeros_like(total),
        where=positive[:, :, None],
    )
    # Alpha goes through the same kernel as the color channels.
    return Raster(target_width, target_height, _to_uint8_half_up(normalized))


# --- Progressive -------------------------------------------------------------


def sharpen_raster(raster: Raster, amount: float = SHARPEN_AMOUNT) -> Raster:
    """Unsharp mask against the 4-neighbour average, interior pixels only."""

    pixels = raster.pixels.copy()
    if raster.width < 3 or raster.height < 3:
        return Raster(raster.width, raster.height, pixels)
    src = raster.pixels[:, :, :3].astype(np.float64)
    center = src[1:-1, 1:-1]
    blur = (src[:-2, 1:-1] + src[2:, 1:-1] + src[1:-1, :-2] + src[1:-1, 2:]) / 4
    pixels[1:-1, 1:-1, :3] = _to_uint8_even(center + amount * (center - blur))
    return Raster(raster.width, raster.height, pixels)


def _high_quality_step(raster: Raster, width: int, height: int) -> Raster:
    if width <= raster.width and height <= raster.height:
        method = Image.Resampling.BOX
    else:
        method = Image.Resampling.BICUBIC
    resized = raster.to_image().resize((width, height), method)
    return Raster.from_image(resized)


def resize_progressive(raster: Raster, target_width: int, target_height: int, sharpen: bool = False) -> Raster:
    _check_target(raster, target_width, target_height)
    ratio = min(target_width / raster.width, target_height / raster.height)
    if ratio >= 0.5:
        logger.debug(
            "Progressive resize single step %sx%s -> %sx%s",
            raster.width,
            raster.height,
            target_width,
            target_height,
        )
        return _high_quality_step(raster, target_width, target_height)

    current = raster
    while current.width > target_width * 1.5 or current.height > target_height * 1.5:
        step_width = max(target_width, math.floor(current.width * 0.5))
        step_height = max(target_height, math.floor(current.height * 0.5))
        logger.debug(
            "Progressive resize halving %sx%s -> %sx%s",
            current.width,
            current.height,
            step_width,
            step_height,
        )
        current = _high_quality_step(current, step_width, step_height)
        if sharpen:
            current = sharpen_raster(current)

    result = _high_quality_step(current, target_width, target_height)
    if sharpen:
        result = sharpen_raster(result)
    return result


RESAMPLERS: Dict[str, Resampler] = {
    "progressive": resize_progressive,
    "lanczos": resize_lanczos,
    "bicubic": resize_bicubic,
    "hermite": resize_hermite,
}


def resample(
    raster: Raster,
    target_width: int,
    target_height: int,
    method: str = "progressive",
    sharpen: bool = False,
) -> Raster:
    """Resize ``raster`` with the named filter. Only ``progressive`` sharpens."""

    try:
        resampler = RESAMPLERS[method]
    except KeyError:
        raise ValueError(
            f"Unknown interpolation '{method}'. Expected one of: {', '.join(RESAMPLERS)}"
        ) from None
    logger.debug(
        "Resampling method=%s src=%sx%s dst=%sx%s sharpen=%s",
        method,
        raster.width,
        raster.height,
        target_width,
        target_height,
        sharpen,
    )
    return resampler(raster, target_width, target_height, sharpen)
