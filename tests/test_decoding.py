import io
import time

import numpy as np
import pytest
from PIL import Image

from bmp_tools import decoding
from bmp_tools.decoding import PillowDecoder
from bmp_tools.errors import DecodeError

from conftest import encode_png, solid_png


def test_decodes_png_to_rgba() -> None:
    raster = PillowDecoder().decode(solid_png(5, 3, (10, 20, 30)))
    assert raster.size == (5, 3)
    assert raster.pixels.shape == (3, 5, 4)
    assert np.all(raster.pixels[0, 0] == (10, 20, 30, 255))


def test_keeps_source_alpha() -> None:
    image = Image.new("RGBA", (2, 2), (1, 2, 3, 40))
    raster = PillowDecoder().decode(encode_png(image))
    assert np.all(raster.pixels[:, :, 3] == 40)


def test_palette_gif_is_expanded() -> None:
    image = Image.new("P", (4, 4), 1)
    image.putpalette([0, 0, 0, 200, 100, 50] + [0] * 762)
    buffer = io.BytesIO()
    image.save(buffer, format="GIF")
    raster = PillowDecoder().decode(buffer.getvalue())
    assert raster.pixels[2, 2, :3].tolist() == [200, 100, 50]


def test_corrupt_data_raises_decode_error() -> None:
    with pytest.raises(DecodeError):
        PillowDecoder().decode(b"definitely not an image")
    with pytest.raises(DecodeError):
        PillowDecoder().decode(solid_png(4, 4, (0, 0, 0))[:40])
    with pytest.raises(DecodeError):
        PillowDecoder().decode(b"")


def test_slow_decode_times_out(monkeypatch) -> None:
    def slow(data):
        time.sleep(0.5)

    monkeypatch.setattr(decoding, "_decode_first_frame", slow)
    with pytest.raises(DecodeError, match="timed out"):
        PillowDecoder(timeout=0.05).decode(b"payload")
