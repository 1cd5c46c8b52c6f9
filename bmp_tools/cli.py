"""Command-line interface for converting images to 8-bit indexed BMP files."""
from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Iterable, List, Set

from .errors import ConversionError
from .file_scanner import ScanOptions, is_archive, iter_image_files
from .palette_ops import hex_to_rgb
from .processing import (
    DEFAULT_TRANSPARENT_COLOR,
    MAX_SIZES,
    ProcessingOptions,
    process_path,
    save_result,
)
from .quantization import QUANTIZERS
from .resize import RESAMPLERS


logger = logging.getLogger(__name__)


def _setup_debug_logging() -> Path | None:
    if not os.environ.get("BMPTOOLS_DEBUG"):
        logger.addHandler(logging.NullHandler())
        return None
    log_path = Path(os.environ.get("BMPTOOLS_DEBUG_LOG", "bmp_tools_debug.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    # remove existing file handlers to avoid duplicates
    root_logger.handlers = [h for h in root_logger.handlers if not isinstance(h, logging.FileHandler)]
    root_logger.addHandler(handler)
    root_logger.info("BMP tools debug logging enabled at %s", log_path)
    return log_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convert images to 8-bit indexed BMP files")
    parser.add_argument(
        "inputs", nargs="+", type=Path, help="Input images, ZIP archives or folders"
    )
    parser.add_argument(
        "--size",
        type=int,
        choices=MAX_SIZES,
        default=256,
        help="Maximum output width/height (result is snapped to multiples of 16)",
    )
    parser.add_argument(
        "--quantization",
        choices=tuple(QUANTIZERS),
        default="median-cut",
        help="Palette reduction algorithm",
    )
    parser.add_argument(
        "--interpolation",
        choices=tuple(RESAMPLERS),
        default="progressive",
        help="Resize filter",
    )
    parser.add_argument(
        "--no-dither",
        action="store_true",
        help="Disable Floyd-Steinberg dithering",
    )
    parser.add_argument(
        "--sharpen",
        action="store_true",
        help="Apply an unsharp pass after each progressive resize step",
    )
    parser.add_argument(
        "--transparent",
        action="store_true",
        help="Reserve the last palette slot for a transparent color (single image only)",
    )
    parser.add_argument(
        "--transparent-color",
        default=None,
        metavar="RRGGBB",
        help="Color for --transparent (default %02x%02x%02x); implies --transparent"
        % DEFAULT_TRANSPARENT_COLOR,
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Random seed for k-means palette seeding"
    )
    parser.add_argument(
        "--recursive", action="store_true", help="Descend into subfolders"
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Destination folder (defaults to <input>/out)",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Also write a PNG preview next to every BMP",
    )
    return parser


def _expand_inputs(inputs: Iterable[Path], recursive: bool) -> List[Path]:
    files: List[Path] = []
    for path in inputs:
        if path.is_file():
            files.append(path)
        elif path.is_dir():
            options = ScanOptions(roots=[path], recursive=recursive)
            files.extend(iter_image_files(options))
        else:
            raise FileNotFoundError(path)
    return files


def main(argv: list[str] | None = None) -> int:
    _setup_debug_logging()
    parser = build_parser()
    args = parser.parse_args(argv)

    transparent_mode = args.transparent or args.transparent_color is not None
    transparent_color = None
    if args.transparent_color is not None:
        try:
            transparent_color = hex_to_rgb(args.transparent_color)
        except ValueError as exc:
            parser.error(f"Invalid --transparent-color: {exc}")

    try:
        input_files = _expand_inputs(args.inputs, args.recursive)
    except FileNotFoundError as exc:
        parser.error(f"Input path not found: {exc}")

    if not input_files:
        parser.error("No image files found")
    if transparent_mode and (len(input_files) > 1 or any(is_archive(p) for p in input_files)):
        parser.error("In transparent mode only single images can be converted")

    options = ProcessingOptions(
        max_size=args.size,
        quantization=args.quantization,
        dithering=not args.no_dither,
        interpolation=args.interpolation,
        sharpening=args.sharpen,
        transparent_mode=transparent_mode,
        transparent_color=transparent_color,
        seed=args.seed,
    )

    successes = 0
    failures = 0
    written: Set[Path] = set()
    for file_path in input_files:
        out_dir = args.out or (file_path.parent / "out")
        try:
            batch = process_path(file_path, options)
        except (ConversionError, OSError) as exc:
            failures += 1
            print(f"[FAIL] {file_path}: {exc}")
            continue
        for failure in batch.failures:
            failures += 1
            print(f"[FAIL] {file_path}:{failure.name}: {failure.error}")
        for result in batch.results:
            target = out_dir / result.filename
            if target in written:
                failures += 1
                print(f"[FAIL] {result.original_filename}: {target} was already written in this run")
                continue
            try:
                output_path = save_result(result, out_dir, preview=args.preview)
            except OSError as exc:
                failures += 1
                print(f"[FAIL] {result.original_filename}: {exc}")
                continue
            written.add(output_path)
            successes += 1
            print(
                f"[OK] {result.original_filename} -> {output_path} "
                f"({result.width}x{result.height}, {result.palette_size} colors, {result.byte_size} bytes)"
            )

    print(f"Completed {successes} file(s), {failures} failure(s).")
    return 0 if failures == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
