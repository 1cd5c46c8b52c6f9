"""High-level image to 8-bit BMP pipeline.

Each image goes through decode -> plan -> resample -> quantize -> [dither] ->
encode -> preview, reporting progress milestones along the way. Batches run
the same pipeline image by image, giving every image an equal share of the
progress range.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, List, Sequence, Set, Tuple

import numpy as np

from .bmp_writer import encode_bmp
from .decoding import PillowDecoder, RasterDecoder
from .dimensions import plan_dimensions
from .dithering import floyd_steinberg_dither
from .errors import ConversionError, DimensionError, InputError, QuantizationError
from .file_scanner import is_archive, is_supported_image, list_archive_entries
from .palette_ops import ColorTuple, validate_color
from .quantization import QUANTIZERS, quantize
from .raster import Raster, build_preview
from .resize import RESAMPLERS, resample


logger = logging.getLogger(__name__)

MAX_SIZES = (256, 512, 1024)
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_ARCHIVE_BYTES = 50 * 1024 * 1024
DEFAULT_TRANSPARENT_COLOR: ColorTuple = (0, 0, 255)
PALETTE_COLORS = 256
# Share of an archive run spent opening and extracting entries.
ARCHIVE_EXTRACT_SHARE = 20

ProgressCallback = Callable[[int], None]
Source = Tuple[str, bytes]


@dataclass(slots=True)
class ProcessingOptions:
    max_size: int = 256
    quantization: str = "median-cut"  # median-cut|octree|k-means
    dithering: bool = True
    interpolation: str = "progressive"  # progressive|lanczos|bicubic|hermite
    sharpening: bool = False
    transparent_mode: bool = False
    transparent_color: ColorTuple | None = None
    seed: int | None = None  # k-means seeding; None draws fresh entropy

    def __post_init__(self) -> None:
        if self.max_size not in MAX_SIZES:
            raise InputError(f"max_size must be one of {MAX_SIZES}, got {self.max_size}")
        if self.quantization not in QUANTIZERS:
            raise InputError(
                f"Unknown quantization '{self.quantization}'. Expected one of: {', '.join(QUANTIZERS)}"
            )
        if self.interpolation not in RESAMPLERS:
            raise InputError(
                f"Unknown interpolation '{self.interpolation}'. Expected one of: {', '.join(RESAMPLERS)}"
            )
        if self.transparent_color is not None:
            try:
                self.transparent_color = validate_color(self.transparent_color)
            except (TypeError, ValueError) as exc:
                raise InputError(f"Invalid transparent color: {exc}") from exc

    @property
    def reserved_color(self) -> ColorTuple | None:
        """Color pinned to the last palette slot, or ``None`` outside transparent mode."""

        if not self.transparent_mode:
            return None
        return self.transparent_color or DEFAULT_TRANSPARENT_COLOR


@dataclass(slots=True)
class ProcessingResult:
    data: bytes
    preview: Raster
    filename: str
    width: int
    height: int
    palette_size: int
    byte_size: int
    original_filename: str
    palette: List[ColorTuple] = field(default_factory=list)


@dataclass(slots=True)
class BatchJob:
    sources: Sequence[Source]
    options: ProcessingOptions = field(default_factory=ProcessingOptions)


@dataclass(slots=True)
class BatchFailure:
    name: str
    error: ConversionError


@dataclass(slots=True)
class BatchResult:
    results: List[ProcessingResult] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ProgressTracker:
    """Forwards progress to a callback, never repeating or going backwards.

    Exceptions raised by the callback propagate to the caller of the pipeline.
    """

    def __init__(self, callback: ProgressCallback | None):
        self._callback = callback
        self.last = 0

    def report(self, value: float) -> None:
        percent = max(0, min(100, math.floor(value)))
        if percent <= self.last:
            return
        self.last = percent
        if self._callback is not None:
            self._callback(percent)

    def band(self, start: float, end: float) -> ProgressCallback:
        """Callback mapping 0-100 onto ``start``-``end`` of this tracker."""

        span = end - start
        return lambda percent: self.report(start + percent * span / 100)


def output_filename(name: str) -> str:
    return PurePosixPath(name.replace("\\", "/")).stem + ".bmp"


def _unique_filename(filename: str, taken: Set[str]) -> str:
    """Return ``filename`` or a numbered variant not yet in ``taken``."""

    path = PurePosixPath(filename)
    candidate = filename
    counter = 2
    while candidate in taken:
        candidate = f"{path.stem}_{counter}{path.suffix}"
        counter += 1
    taken.add(candidate)
    return candidate


def _check_image_input(data: bytes, filename: str) -> None:
    if not data:
        raise InputError(f"Invalid or empty file: {filename}")
    if len(data) > MAX_IMAGE_BYTES:
        raise InputError(
            f"File too large: {filename}. Maximum size: {MAX_IMAGE_BYTES // (1024 * 1024)}MB"
        )
    if not is_supported_image(filename):
        raise InputError(
            f"Invalid file type: {filename}. Please use PNG, JPG, BMP, GIF, WEBP or TGA"
        )


def process_image(
    data: bytes,
    filename: str,
    options: ProcessingOptions | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    decoder: RasterDecoder | None = None,
    rng: np.random.Generator | None = None,
) -> ProcessingResult:
    """Convert one encoded image into an 8-bit indexed BMP."""

    options = options or ProcessingOptions()
    decoder = decoder or PillowDecoder()
    progress = ProgressTracker(on_progress)

    progress.report(10)
    _check_image_input(data, filename)

    raster = decoder.decode(data)
    if raster.width == 0 or raster.height == 0:
        raise DimensionError(f"Invalid image dimensions: {raster.width}x{raster.height}")
    progress.report(20)

    width, height = plan_dimensions(raster.width, raster.height, options.max_size)
    progress.report(30)

    resized = resample(raster, width, height, options.interpolation, options.sharpening)
    progress.report(50)

    if rng is None:
        rng = np.random.default_rng(options.seed)
    palette, indexed = quantize(
        resized,
        options.quantization,
        max_colors=PALETTE_COLORS,
        reserved_color=options.reserved_color,
        rng=rng,
    )
    if not palette:
        raise QuantizationError("Quantization error: empty palette")
    progress.report(70)

    if options.dithering:
        indexed = floyd_steinberg_dither(resized, palette)
    progress.report(85)

    bmp = encode_bmp(width, height, palette, indexed.indices)
    progress.report(95)

    preview = build_preview(indexed, palette)
    progress.report(100)

    logger.debug(
        "Processed %s src=%sx%s dst=%sx%s colors=%s bytes=%s",
        filename,
        raster.width,
        raster.height,
        width,
        height,
        len(palette),
        len(bmp),
    )
    return ProcessingResult(
        data=bmp,
        preview=preview,
        filename=output_filename(filename),
        width=width,
        height=height,
        palette_size=len(palette),
        byte_size=len(bmp),
        original_filename=filename,
        palette=list(palette),
    )


def _reject_transparent_batch(options: ProcessingOptions) -> None:
    if options.transparent_mode:
        raise InputError("In transparent mode only single images can be converted")


def _run_batch(
    sources: Sequence[Source],
    options: ProcessingOptions,
    progress: ProgressTracker,
    start: float,
    decoder: RasterDecoder | None,
) -> BatchResult:
    batch = BatchResult()
    taken: Set[str] = set()
    rng = np.random.default_rng(options.seed)
    share = (100 - start) / len(sources)
    for position, (name, data) in enumerate(sources):
        band_start = start + position * share
        try:
            result = process_image(
                data,
                name,
                options,
                progress.band(band_start, band_start + share),
                decoder=decoder,
                rng=rng,
            )
        except ConversionError as exc:
            logger.warning("Skipping %s: %s", name, exc)
            batch.failures.append(BatchFailure(name=name, error=exc))
            continue
        renamed = _unique_filename(result.filename, taken)
        if renamed != result.filename:
            logger.warning("Renaming output of %s to %s to avoid a name clash", name, renamed)
            result.filename = renamed
        batch.results.append(result)
    # 100 means success; a batch where nothing converted stops short of it.
    if batch.results:
        progress.report(100)
    return batch


def process_batch(
    job: BatchJob,
    on_progress: ProgressCallback | None = None,
    *,
    decoder: RasterDecoder | None = None,
) -> BatchResult:
    """Convert every source of ``job``; failures are recorded and skipped."""

    _reject_transparent_batch(job.options)
    if not job.sources:
        raise InputError("No selected files found")
    progress = ProgressTracker(on_progress)
    return _run_batch(job.sources, job.options, progress, 0, decoder)


def process_archive(
    data: bytes,
    filename: str,
    options: ProcessingOptions | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    decoder: RasterDecoder | None = None,
) -> BatchResult:
    """Convert every image inside a ZIP archive."""

    options = options or ProcessingOptions()
    _reject_transparent_batch(options)
    if not data:
        raise InputError(f"Invalid or empty file: {filename}")
    if len(data) > MAX_ARCHIVE_BYTES:
        raise InputError(
            f"File too large: {filename}. Maximum size: {MAX_ARCHIVE_BYTES // (1024 * 1024)}MB"
        )
    progress = ProgressTracker(on_progress)
    progress.report(5)
    entries = list_archive_entries(data)
    progress.report(ARCHIVE_EXTRACT_SHARE)
    logger.debug("Archive %s contains %s image(s)", filename, len(entries))
    return _run_batch(entries, options, progress, ARCHIVE_EXTRACT_SHARE, decoder)


def process_path(
    path: Path,
    options: ProcessingOptions | None = None,
    on_progress: ProgressCallback | None = None,
) -> BatchResult:
    """Convert a single image file or ZIP archive from disk."""

    data = path.read_bytes()
    if is_archive(path):
        return process_archive(data, path.name, options, on_progress)
    result = process_image(data, path.name, options, on_progress)
    return BatchResult(results=[result])


def save_result(result: ProcessingResult, output_dir: Path, *, preview: bool = False) -> Path:
    """Write ``result`` into ``output_dir``; optionally add a PNG preview beside it."""

    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / result.filename
    output_path.write_bytes(result.data)
    if preview:
        result.preview.to_image().save(output_path.with_suffix(".preview.png"))
    return output_path
