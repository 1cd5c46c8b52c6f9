import io
import zipfile
from typing import Sequence, Tuple

import numpy as np
import pytest
from PIL import Image

from bmp_tools.raster import Raster


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def solid_png(width: int, height: int, color: Tuple[int, int, int]) -> bytes:
    return encode_png(Image.new("RGB", (width, height), color))


def make_zip(entries: Sequence[Tuple[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


def raster_from_rows(rows) -> Raster:
    """Build a raster from nested lists of RGB or RGBA tuples."""

    array = np.asarray(rows, dtype=np.uint8)
    if array.shape[2] == 3:
        alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
        array = np.concatenate([array, alpha], axis=2)
    return Raster.from_array(array)


@pytest.fixture
def noise_raster() -> Raster:
    rng = np.random.default_rng(1234)
    pixels = rng.integers(0, 256, size=(32, 48, 4), dtype=np.uint8)
    pixels[:, :, 3] = 255
    return Raster.from_array(pixels)
