"""Raster engine boundary: everything that actually touches pixels.

The geometry core only computes parameters. This module turns them into
calls on a raster library. :class:`RasterEngine` is the seam the
:class:`~thumbnailx.imaging.image.ThumbnailImage` facade talks to and
:class:`PillowEngine` is the implementation backed by Pillow.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from PIL import ExifTags, Image, UnidentifiedImageError

from thumbnailx.errors import (
    EngineFailureError,
    ImageDecodeError,
    ImageTooLargeError,
    UnsupportedFormatError,
)
from thumbnailx.geometry.orientation import Orientation
from thumbnailx.imaging.formats import ImageFormat

if TYPE_CHECKING:
    from thumbnailx.config import Settings

logger = logging.getLogger(__name__)

# Opaque handle to an engine-owned pixel buffer.
RasterBuffer = Any


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecodedImage:
    """Result of decoding encoded bytes."""

    buffer: RasterBuffer
    width: int
    height: int
    format: ImageFormat


class RasterEngine(Protocol):
    """Protocol for the pixel-level collaborator."""

    def decode(self, data: bytes) -> DecodedImage:
        """Decode GIF, JPEG or PNG bytes into a new buffer.

        Raises:
            ImageDecodeError: If the bytes are not a readable image.
            UnsupportedFormatError: If the image is not GIF, JPEG or PNG.
        """
        ...

    def describe(self, buffer: RasterBuffer) -> tuple[int, int, ImageFormat | None]:
        """Return ``(width, height, format)`` of an existing buffer."""
        ...

    def buffer_mode(self, buffer: RasterBuffer) -> str:
        """Return the pixel layout name of ``buffer`` (``"P"``, ``"RGB"``, ``"RGBA"``...)."""
        ...

    def allocate_canvas(self, width: int, height: int, mode: str, fill: int | tuple[int, ...]) -> RasterBuffer:
        """Allocate a ``width x height`` buffer of ``mode`` filled with ``fill``."""
        ...

    def copy_palette(self, dst: RasterBuffer, src: RasterBuffer) -> None:
        """Copy the color palette of ``src`` onto ``dst`` when both are indexed."""
        ...

    def transparent_index(self, buffer: RasterBuffer) -> int | None:
        """Return the palette index marked transparent, if any."""
        ...

    def set_transparent_index(self, buffer: RasterBuffer, index: int) -> None:
        """Mark palette ``index`` as transparent on ``buffer``."""
        ...

    def resample(
        self,
        dst: RasterBuffer,
        src: RasterBuffer,
        dst_x: int,
        dst_y: int,
        src_x: int,
        src_y: int,
        dst_w: int,
        dst_h: int,
        src_w: int,
        src_h: int,
    ) -> None:
        """Copy a source rectangle into a destination rectangle, scaling as needed.

        A negative ``src_w`` or ``src_h`` samples that axis backwards from
        ``src_x`` / ``src_y``, mirroring the copy.

        Raises:
            EngineFailureError: If the copy fails.
        """
        ...

    def rotate(
        self,
        buffer: RasterBuffer,
        angle: float,
        background_color: int | tuple[int, ...] | None,
        ignore_transparent: bool,
    ) -> RasterBuffer:
        """Return a new buffer rotated ``angle`` degrees counter-clockwise."""
        ...

    def duplicate(self, buffer: RasterBuffer) -> RasterBuffer:
        """Return an independent copy of ``buffer``."""
        ...

    def release(self, buffer: RasterBuffer) -> None:
        """Free ``buffer``."""
        ...

    def encode(self, buffer: RasterBuffer, image_format: ImageFormat, quality: int | None = None) -> bytes:
        """Encode ``buffer`` as ``image_format``."""
        ...

    def read_orientation(self, buffer: RasterBuffer) -> object:
        """Return the EXIF orientation value stored with ``buffer``."""
        ...


# ---------------------------------------------------------------------------
# Pillow implementation
# ---------------------------------------------------------------------------


_FROM_PILLOW: dict[str, ImageFormat] = {
    "GIF": ImageFormat.GIF,
    "JPEG": ImageFormat.JPEG,
    "PNG": ImageFormat.PNG,
}

_TO_PILLOW: dict[ImageFormat, str] = {fmt: name for name, fmt in _FROM_PILLOW.items()}

RESAMPLE_FILTERS: dict[str, Image.Resampling] = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}

# Image.rotate only accepts these filters.
_ROTATE_FILTERS = {Image.Resampling.NEAREST, Image.Resampling.BILINEAR, Image.Resampling.BICUBIC}

_ALPHA_MODES = {"LA", "PA", "RGBA"}

# Grayscale modes Pillow uses for 16-bit PNG samples.
HIGH_DEPTH_MODES = frozenset({"I", "I;16", "I;16B", "I;16L", "I;16N"})


def from_pillow_format(name: str | None) -> ImageFormat:
    """Map a Pillow format name to :class:`ImageFormat`."""
    try:
        return _FROM_PILLOW[name or ""]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported file type: {name!r}") from None


def to_pillow_format(image_format: ImageFormat) -> str:
    return _TO_PILLOW[image_format]


def to_eight_bit(image: Image.Image) -> Image.Image:
    """Scale 16-bit grayscale samples down to an 8-bit ``L`` image.

    Converting such images straight to ``L`` or ``RGB(A)`` clips every
    sample above 255 to white. Other modes are returned as is.
    """
    if image.mode not in HIGH_DEPTH_MODES:
        return image
    return image.convert("I").point(lambda v: v * (1 / 257)).convert("L")


class PillowEngine:
    """Raster engine backed by Pillow ``Image`` objects."""

    def __init__(
        self,
        resample: Image.Resampling = Image.Resampling.LANCZOS,
        jpeg_quality: int | None = None,
        max_image_pixels: int | None = None,
    ) -> None:
        self._resample = resample
        self._rotate_resample = resample if resample in _ROTATE_FILTERS else Image.Resampling.BICUBIC
        self._jpeg_quality = jpeg_quality
        self._max_image_pixels = max_image_pixels

    @classmethod
    def from_settings(cls, settings: Settings) -> PillowEngine:
        return cls(
            resample=RESAMPLE_FILTERS[settings.resample_filter],
            jpeg_quality=settings.jpeg_quality,
            max_image_pixels=settings.max_image_pixels,
        )

    # -- Decoding / encoding ------------------------------------------------

    def decode(self, data: bytes) -> DecodedImage:
        try:
            image = Image.open(io.BytesIO(data))
        except UnidentifiedImageError as exc:
            raise ImageDecodeError("Invalid image data.") from exc
        except Image.DecompressionBombError as exc:
            raise ImageTooLargeError(str(exc)) from exc

        try:
            image_format = from_pillow_format(image.format)
            self._check_pixel_limit(image.width, image.height)
            image.load()
        except (UnsupportedFormatError, ImageTooLargeError):
            image.close()
            raise
        except (OSError, SyntaxError, ValueError) as exc:
            image.close()
            raise ImageDecodeError("Could not decode image data.") from exc

        logger.debug("Decoded %s image %dx%d (mode=%s)", image_format, image.width, image.height, image.mode)
        return DecodedImage(buffer=image, width=image.width, height=image.height, format=image_format)

    def describe(self, buffer: RasterBuffer) -> tuple[int, int, ImageFormat | None]:
        image_format = _FROM_PILLOW.get(buffer.format or "")
        return buffer.width, buffer.height, image_format

    def buffer_mode(self, buffer: RasterBuffer) -> str:
        return buffer.mode

    def encode(self, buffer: RasterBuffer, image_format: ImageFormat, quality: int | None = None) -> bytes:
        image = buffer
        params: dict[str, object] = {}
        if image_format is not ImageFormat.PNG:
            image = to_eight_bit(image)
        if image_format is ImageFormat.JPEG:
            if image.mode not in ("RGB", "L", "CMYK"):
                image = image.convert("RGB")
            quality = quality if quality is not None else self._jpeg_quality
            if quality is not None:
                params["quality"] = quality
        elif image.mode == "CMYK":
            image = image.convert("RGB")

        out = io.BytesIO()
        try:
            image.save(out, format=to_pillow_format(image_format), **params)
        except (OSError, ValueError) as exc:
            raise EngineFailureError(f"Could not encode image as {image_format}.") from exc
        finally:
            if image is not buffer:
                image.close()
        return out.getvalue()

    def read_orientation(self, buffer: RasterBuffer) -> object:
        return buffer.getexif().get(ExifTags.Base.Orientation, Orientation.TOP_LEFT)

    # -- Canvas primitives --------------------------------------------------

    def allocate_canvas(self, width: int, height: int, mode: str, fill: int | tuple[int, ...]) -> RasterBuffer:
        try:
            return Image.new(mode, (width, height), fill)
        except (MemoryError, ValueError) as exc:
            raise EngineFailureError(f"Could not allocate a {width}x{height} {mode} canvas.") from exc

    def copy_palette(self, dst: RasterBuffer, src: RasterBuffer) -> None:
        if dst.mode == "P" and src.mode == "P":
            palette = src.getpalette()
            if palette is not None:
                dst.putpalette(palette)

    def transparent_index(self, buffer: RasterBuffer) -> int | None:
        if buffer.mode != "P":
            return None
        value = buffer.info.get("transparency")
        # PNG palettes carry per-entry alpha as bytes, not a single index.
        return value if isinstance(value, int) else None

    def set_transparent_index(self, buffer: RasterBuffer, index: int) -> None:
        buffer.info["transparency"] = index

    # -- Pixel copies -------------------------------------------------------

    def resample(
        self,
        dst: RasterBuffer,
        src: RasterBuffer,
        dst_x: int,
        dst_y: int,
        src_x: int,
        src_y: int,
        dst_w: int,
        dst_h: int,
        src_w: int,
        src_h: int,
    ) -> None:
        if src_w == 0 or src_h == 0 or dst_w <= 0 or dst_h <= 0:
            raise EngineFailureError(f"Cannot resample {src_w}x{src_h} into {dst_w}x{dst_h}.")

        left, right = sorted((src_x, src_x + src_w))
        top, bottom = sorted((src_y, src_y + src_h))
        try:
            region = src.crop((left, top, right, bottom))
            if src_w < 0:
                region = region.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
            if src_h < 0:
                region = region.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
            region = to_eight_bit(region)
            if region.mode != dst.mode:
                region = region.convert(dst.mode)
            if region.size != (dst_w, dst_h):
                region = region.resize((dst_w, dst_h), self._resample)
            # No mask: pasted pixels replace the canvas, alpha included.
            dst.paste(region, (dst_x, dst_y))
        except (OSError, ValueError) as exc:
            raise EngineFailureError("Could not resample image.") from exc

    def rotate(
        self,
        buffer: RasterBuffer,
        angle: float,
        background_color: int | tuple[int, ...] | None,
        ignore_transparent: bool,
    ) -> RasterBuffer:
        image = buffer
        if ignore_transparent and (image.mode in _ALPHA_MODES or "transparency" in image.info):
            image = image.convert("RGB")
        if background_color is None and image.mode == "P":
            background_color = self.transparent_index(image) or 0

        try:
            return image.rotate(
                angle,
                resample=self._rotate_resample,
                expand=True,
                fillcolor=background_color,
            )
        except (OSError, ValueError) as exc:
            raise EngineFailureError(f"Could not rotate image by {angle} degrees.") from exc
        finally:
            if image is not buffer:
                image.close()

    # -- Lifecycle ----------------------------------------------------------

    def duplicate(self, buffer: RasterBuffer) -> RasterBuffer:
        try:
            return buffer.copy()
        except (MemoryError, ValueError) as exc:
            raise EngineFailureError("Could not duplicate image buffer.") from exc

    def release(self, buffer: RasterBuffer) -> None:
        buffer.close()

    # -- Internal -----------------------------------------------------------

    def _check_pixel_limit(self, width: int, height: int) -> None:
        if self._max_image_pixels is not None and width * height > self._max_image_pixels:
            raise ImageTooLargeError(
                f"Image of {width}x{height} exceeds the limit of {self._max_image_pixels} pixels"
            )
