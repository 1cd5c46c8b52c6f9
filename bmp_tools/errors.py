"""Exception hierarchy shared by the conversion pipeline."""
from __future__ import annotations


class ConversionError(RuntimeError):
    """Base class for every failure raised while converting an image."""


class InputError(ConversionError):
    """Raised for empty, oversized or unsupported input files and bad options."""


class DecodeError(ConversionError):
    """Raised when an image cannot be decoded (corrupt data or timeout)."""


class DimensionError(ConversionError):
    """Raised when a raster has unusable dimensions."""


class QuantizationError(ConversionError):
    """Raised when color reduction cannot produce a palette."""


class EncodingError(ConversionError):
    """Raised by the BMP writer when its inputs are inconsistent."""
