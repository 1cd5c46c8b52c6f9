"""Pillow-backed decoding of source files into RGBA rasters."""
from __future__ import annotations

import io
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, DimensionError
from .raster import Raster


logger = logging.getLogger(__name__)

DEFAULT_DECODE_TIMEOUT = 30.0


class RasterDecoder(Protocol):
    def decode(self, data: bytes) -> Raster: ...


def _decode_first_frame(data: bytes) -> Raster:
    with Image.open(io.BytesIO(data)) as img:
        img.seek(0)
        img.load()
        return Raster.from_image(img.convert("RGBA"))


class PillowDecoder:
    """Decode any format Pillow understands, giving up after ``timeout`` seconds."""

    def __init__(self, timeout: float | None = DEFAULT_DECODE_TIMEOUT):
        self.timeout = timeout

    def decode(self, data: bytes) -> Raster:
        if not data:
            raise DecodeError("Cannot decode an empty file")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bmp-tools-decode")
        future = executor.submit(_decode_first_frame, data)
        try:
            raster = future.result(timeout=self.timeout)
        except FutureTimeout:
            raise DecodeError(f"Image load timed out after {self.timeout:g}s") from None
        except Image.DecompressionBombError as exc:
            raise DecodeError(f"Image is too large to decode safely: {exc}") from exc
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise DecodeError(f"Failed to load image. Check that the format is valid: {exc}") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if raster.width == 0 or raster.height == 0:
            raise DimensionError(f"Invalid image dimensions: {raster.width}x{raster.height}")
        logger.debug("Decoded image size=%sx%s bytes=%s", raster.width, raster.height, len(data))
        return raster
