"""Color reduction to at most 256 palette entries.

Every quantizer returns ``(palette, indexed)`` where ``palette`` is a list of
RGB tuples and ``indexed`` maps each pixel to its nearest palette entry. When a
reserved color is given it is appended as the final palette slot and competes
in the nearest-color search like any other entry.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
from PIL import Image

from .errors import QuantizationError
from .palette_ops import ColorTuple, map_to_palette, round_half_up
from .raster import IndexedRaster, Raster


logger = logging.getLogger(__name__)

KMEANS_ITERATIONS = 10
KMEANS_SAMPLE_TARGET = 10_000

QuantizeResult = Tuple[List[ColorTuple], IndexedRaster]
Quantizer = Callable[..., QuantizeResult]


def _target_colors(max_colors: int, reserved_color: ColorTuple | None) -> int:
    if not 1 <= max_colors <= 256:
        raise QuantizationError(f"Palettes hold 1-256 colors, got {max_colors}")
    target = max_colors - 1 if reserved_color is not None else max_colors
    if target < 1:
        raise QuantizationError("No palette slots left after reserving the transparent color")
    return target


def _require_pixels(raster: Raster) -> np.ndarray:
    if raster.width <= 0 or raster.height <= 0:
        raise QuantizationError("Cannot quantize an empty raster")
    return raster.rgb().astype(np.int64)


def _mean_color(colors: np.ndarray) -> ColorTuple:
    sums = colors.sum(axis=0)
    count = colors.shape[0]
    return (
        round_half_up(sums[0] / count),
        round_half_up(sums[1] / count),
        round_half_up(sums[2] / count),
    )


def _finish(
    raster: Raster,
    pixels: np.ndarray,
    palette: List[ColorTuple],
    reserved_color: ColorTuple | None,
) -> QuantizeResult:
    if reserved_color is not None:
        palette.append(tuple(reserved_color))  # type: ignore[arg-type]
    if not palette:
        raise QuantizationError("Quantization produced an empty palette")
    indices = map_to_palette(pixels, palette)
    return palette, IndexedRaster.from_flat(raster.width, raster.height, indices)


# --- Median cut --------------------------------------------------------------


def _split_channel(ranges: np.ndarray) -> int:
    r, g, b = (int(v) for v in ranges)
    if r > g:
        return 0 if r > b else 2
    return 1 if g > b else 2


def median_cut_palette(pixels: np.ndarray, target_colors: int) -> List[ColorTuple]:
    """Split the pixel population at channel medians until ``target_colors`` buckets."""

    buckets: List[np.ndarray] = [pixels]
    ranges: List[np.ndarray] = [np.ptp(pixels, axis=0)]

    while len(buckets) < target_colors:
        chosen = None
        largest = 0
        for position, bucket_ranges in enumerate(ranges):
            widest = int(bucket_ranges.max())
            if widest > largest:
                largest = widest
                chosen = position
        if chosen is None or buckets[chosen].shape[0] < 2:
            break

        bucket = buckets[chosen]
        channel = _split_channel(ranges[chosen])
        ordered = bucket[np.argsort(bucket[:, channel], kind="stable")]
        median = ordered.shape[0] // 2
        lower, upper = ordered[:median], ordered[median:]
        buckets[chosen : chosen + 1] = [lower, upper]
        ranges[chosen : chosen + 1] = [np.ptp(lower, axis=0), np.ptp(upper, axis=0)]

    logger.debug("Median cut produced buckets=%s target=%s", len(buckets), target_colors)
    return [_mean_color(bucket) for bucket in buckets]


def quantize_median_cut(
    raster: Raster,
    max_colors: int = 256,
    reserved_color: ColorTuple | None = None,
    rng: np.random.Generator | None = None,
) -> QuantizeResult:
    target = _target_colors(max_colors, reserved_color)
    pixels = _require_pixels(raster)
    palette = median_cut_palette(pixels, target)
    return _finish(raster, pixels, palette, reserved_color)


# --- Octree ------------------------------------------------------------------


def octree_palette(raster: Raster, target_colors: int) -> List[ColorTuple]:
    """Build a palette with Pillow's octree quantizer, keeping only used entries."""

    rgb = raster.to_image().convert("RGB")
    quantized = rgb.quantize(colors=target_colors, method=Image.Quantize.FASTOCTREE, dither=Image.Dither.NONE)
    flat = quantized.getpalette() or []
    used = quantized.getcolors(maxcolors=256) or []
    palette: List[ColorTuple] = []
    for _count, index in sorted(used, key=lambda item: item[1]):
        offset = index * 3
        palette.append((flat[offset], flat[offset + 1], flat[offset + 2]))
    logger.debug("Octree produced colors=%s target=%s", len(palette), target_colors)
    return palette


def quantize_octree(
    raster: Raster,
    max_colors: int = 256,
    reserved_color: ColorTuple | None = None,
    rng: np.random.Generator | None = None,
) -> QuantizeResult:
    target = _target_colors(max_colors, reserved_color)
    pixels = _require_pixels(raster)
    palette = octree_palette(raster, target)
    return _finish(raster, pixels, palette, reserved_color)


# --- K-means -----------------------------------------------------------------


def kmeans_palette(
    pixels: np.ndarray,
    target_colors: int,
    rng: np.random.Generator | None = None,
    iterations: int = KMEANS_ITERATIONS,
) -> List[ColorTuple]:
    """Cluster a strided sample of ``pixels`` and return the rounded centroids."""

    rng = rng if rng is not None else np.random.default_rng()
    stride = max(1, pixels.shape[0] // KMEANS_SAMPLE_TARGET)
    sample = pixels[::stride]
    k = min(target_colors, sample.shape[0])
    seeds = sample[rng.permutation(sample.shape[0])[:k]]
    centroids: List[ColorTuple] = [tuple(int(c) for c in color) for color in seeds]  # type: ignore[misc]

    for _ in range(iterations):
        assignment = map_to_palette(sample, centroids)
        updated: List[ColorTuple] = []
        for cluster, centroid in enumerate(centroids):
            members = sample[assignment == cluster]
            updated.append(_mean_color(members) if members.shape[0] else centroid)
        centroids = updated

    logger.debug(
        "K-means sample=%s stride=%s clusters=%s iterations=%s",
        sample.shape[0],
        stride,
        k,
        iterations,
    )
    return centroids


def quantize_kmeans(
    raster: Raster,
    max_colors: int = 256,
    reserved_color: ColorTuple | None = None,
    rng: np.random.Generator | None = None,
) -> QuantizeResult:
    target = _target_colors(max_colors, reserved_color)
    pixels = _require_pixels(raster)
    palette = kmeans_palette(pixels, target, rng=rng)
    return _finish(raster, pixels, palette, reserved_color)


QUANTIZERS: Dict[str, Quantizer] = {
    "median-cut": quantize_median_cut,
    "octree": quantize_octree,
    "k-means": quantize_kmeans,
}


def quantize(
    raster: Raster,
    method: str = "median-cut",
    *,
    max_colors: int = 256,
    reserved_color: Sequence[int] | None = None,
    rng: np.random.Generator | None = None,
) -> QuantizeResult:
    """Reduce ``raster`` to a palette with the named quantizer."""

    try:
        quantizer = QUANTIZERS[method]
    except KeyError:
        raise ValueError(
            f"Unknown quantization '{method}'. Expected one of: {', '.join(QUANTIZERS)}"
        ) from None
    reserved = tuple(int(c) for c in reserved_color) if reserved_color is not None else None
    logger.debug(
        "Quantizing method=%s size=%sx%s max_colors=%s reserved=%s",
        method,
        raster.width,
        raster.height,
        max_colors,
        reserved,
    )
    return quantizer(raster, max_colors=max_colors, reserved_color=reserved, rng=rng)
