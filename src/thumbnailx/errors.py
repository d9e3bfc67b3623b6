"""Exception hierarchy for ThumbnailX."""

from __future__ import annotations


class ThumbnailError(Exception):
    """Base class for every error raised by ThumbnailX."""


class ConfigurationError(ThumbnailError, ValueError):
    """An image was constructed with an unknown option or a badly typed value."""


class UnsupportedFormatError(ThumbnailError, ValueError):
    """The image format is not one of GIF, JPEG or PNG."""


class ImageDecodeError(UnsupportedFormatError):
    """The input could not be decoded as an image at all."""


class InvalidGeometryError(ThumbnailError, ValueError):
    """An operation would produce a non-positive size, or got a bad orientation."""


class EngineFailureError(ThumbnailError, RuntimeError):
    """The raster engine reported a failure while allocating or copying pixels."""


class ImageReleasedError(ThumbnailError, RuntimeError):
    """The image buffer was already released."""


class ImageTooLargeError(ThumbnailError, ValueError):
    """The decoded image would exceed the configured pixel limit."""
