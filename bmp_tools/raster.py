"""Raster containers passed between pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from PIL import Image

from .palette_ops import ColorTuple, palette_array


@dataclass(slots=True)
class Raster:
    """RGBA pixels stored top-down as a ``(height, width, 4)`` uint8 array."""

    width: int
    height: int
    pixels: np.ndarray

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "Raster":
        array = np.ascontiguousarray(pixels, dtype=np.uint8)
        if array.ndim != 3 or array.shape[2] != 4:
            raise ValueError(f"Expected an (h, w, 4) RGBA array, got shape {array.shape}")
        height, width = array.shape[:2]
        return cls(width=width, height=height, pixels=array)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Raster":
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls.from_array(np.asarray(rgba, dtype=np.uint8))

    @classmethod
    def filled(cls, width: int, height: int, color: Sequence[int]) -> "Raster":
        rgba = tuple(color) if len(color) == 4 else tuple(color) + (255,)
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:, :] = rgba
        return cls(width=width, height=height, pixels=pixels)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def rgb(self) -> np.ndarray:
        """Return a flat ``(width*height, 3)`` view of the color channels."""

        return self.pixels[:, :, :3].reshape(-1, 3)

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


@dataclass(slots=True)
class IndexedRaster:
    """One palette index per pixel stored as a ``(height, width)`` uint8 array."""

    width: int
    height: int
    indices: np.ndarray

    @classmethod
    def from_flat(cls, width: int, height: int, flat: np.ndarray) -> "IndexedRaster":
        indices = np.asarray(flat, dtype=np.uint8).reshape(height, width)
        return cls(width=width, height=height, indices=indices)


def build_preview(indexed: IndexedRaster, palette: Sequence[ColorTuple]) -> Raster:
    """Expand ``indexed`` against ``palette`` into an opaque RGBA raster."""

    colors = palette_array(palette).astype(np.uint8)
    pixels = np.empty((indexed.height, indexed.width, 4), dtype=np.uint8)
    pixels[:, :, :3] = colors[indexed.indices]
    pixels[:, :, 3] = 255
    return Raster(width=indexed.width, height=indexed.height, pixels=pixels)
