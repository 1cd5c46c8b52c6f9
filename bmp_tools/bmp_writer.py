"""Byte-exact writer for uncompressed 8-bit palette BMP files.

Layout (little-endian)::

    BITMAPFILEHEADER   14 bytes   "BM", file size, 2x reserved, pixel offset
    BITMAPINFOHEADER   40 bytes   positive height => rows stored bottom-up
    color table      1024 bytes   256 x (blue, green, red, 0), black padding
    pixel data                    one index per pixel, rows padded to 4 bytes
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import EncodingError
from .palette_ops import ColorTuple, pad_palette, round_half_up


logger = logging.getLogger(__name__)

FILE_HEADER_SIZE = 14
INFO_HEADER_SIZE = 40
PALETTE_ENTRIES = 256
COLOR_TABLE_SIZE = PALETTE_ENTRIES * 4
PIXEL_DATA_OFFSET = FILE_HEADER_SIZE + INFO_HEADER_SIZE + COLOR_TABLE_SIZE
BITS_PER_PIXEL = 8
PIXELS_PER_METER = 2835  # ~72 DPI

_FILE_HEADER = struct.Struct("<2sIHHI")
_INFO_HEADER = struct.Struct("<IiiHHIIiiII")


@dataclass(frozen=True)
class BmpLayout:
    width: int
    height: int
    row_stride: int
    pixel_data_size: int
    file_size: int

    @property
    def row_padding(self) -> int:
        return self.row_stride - self.width


def bmp_layout(width: int, height: int) -> BmpLayout:
    row_stride = (width + 3) // 4 * 4
    pixel_data_size = row_stride * height
    return BmpLayout(
        width=width,
        height=height,
        row_stride=row_stride,
        pixel_data_size=pixel_data_size,
        file_size=PIXEL_DATA_OFFSET + pixel_data_size,
    )


def _validate(width: int, height: int, palette: Sequence[ColorTuple], indices: np.ndarray) -> None:
    if width <= 0 or height <= 0:
        raise EncodingError(f"Invalid dimensions {width}x{height}: width and height must be positive")
    if not 1 <= len(palette) <= PALETTE_ENTRIES:
        raise EncodingError(f"Invalid palette: must contain 1-256 colors, got {len(palette)}")
    if indices.size != width * height:
        raise EncodingError(
            f"Invalid pixel data: expected {width * height} indices for {width}x{height}, got {indices.size}"
        )
    if indices.min() < 0:
        raise EncodingError("Invalid pixel data: palette indices cannot be negative")


def _clamp_indices(indices: np.ndarray, palette_size: int) -> np.ndarray:
    limit = palette_size - 1
    invalid = indices > limit
    if not invalid.any():
        return indices
    positions = np.flatnonzero(invalid)
    logger.warning(
        "Clamping %s pixel index(es) >= palette size %s to %s (first at pixel %s, value %s)",
        positions.size,
        palette_size,
        limit,
        int(positions[0]),
        int(indices[positions[0]]),
    )
    return np.where(invalid, limit, indices)


def _color_table(palette: Sequence[ColorTuple]) -> bytes:
    table = bytearray()
    for color in pad_palette(palette, PALETTE_ENTRIES):
        r, g, b = (max(0, min(255, round_half_up(c))) for c in color)
        table += bytes((b, g, r, 0))
    return bytes(table)


def encode_bmp(
    width: int,
    height: int,
    palette: Sequence[ColorTuple],
    indices: np.ndarray | Sequence[int],
) -> bytes:
    """Serialize ``indices`` (row-major, top-down) and ``palette`` to BMP bytes.

    Indices that point past the end of ``palette`` are clamped to its last
    entry and logged; every other inconsistency raises :class:`EncodingError`.
    The caller's index buffer is never modified.
    """

    flat = np.asarray(indices).reshape(-1).astype(np.int64)
    _validate(width, height, palette, flat)
    flat = _clamp_indices(flat, len(palette))

    layout = bmp_layout(width, height)
    file_header = _FILE_HEADER.pack(b"BM", layout.file_size, 0, 0, PIXEL_DATA_OFFSET)
    info_header = _INFO_HEADER.pack(
        INFO_HEADER_SIZE,
        width,
        height,
        1,
        BITS_PER_PIXEL,
        0,
        layout.pixel_data_size,
        PIXELS_PER_METER,
        PIXELS_PER_METER,
        PALETTE_ENTRIES,
        0,
    )

    rows = flat.astype(np.uint8).reshape(height, width)[::-1]
    if layout.row_padding:
        rows = np.pad(rows, ((0, 0), (0, layout.row_padding)), constant_values=0)
    pixel_data = np.ascontiguousarray(rows).tobytes()

    data = b"".join((file_header, info_header, _color_table(palette), pixel_data))
    logger.debug(
        "Encoded BMP size=%sx%s palette=%s bytes=%s",
        width,
        height,
        len(palette),
        len(data),
    )
    return data
