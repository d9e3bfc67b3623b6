"""ThumbnailImage: an owned raster buffer and the transforms that replace it.

Every transform builds a new canvas, copies into it, wraps the canvas in a
new :class:`ThumbnailImage` and only then releases the buffer it was called
on. A failed transform leaves the original untouched and frees the partial
canvas. Operations that turn out to be no-ops return ``self``.

Keep a copy with :meth:`ThumbnailImage.clone` before transforming when the
original is still needed::

    original = ThumbnailImage.open("photo.jpg")
    small = original.clone().resize(400, 300)
    square = original.clone().resize_from_center(200)
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, StrictBytes, ValidationError, model_validator

from thumbnailx.errors import (
    ConfigurationError,
    ImageReleasedError,
    InvalidGeometryError,
)
from thumbnailx.geometry.dimensions import (
    Number,
    RoundingPolicy,
    bounded_resize,
    percent_resize,
)
from thumbnailx.geometry.orientation import Step, orientation_steps
from thumbnailx.geometry.window import center_square_window, clip_window
from thumbnailx.imaging.engine import PillowEngine
from thumbnailx.imaging.formats import ImageFormat
from thumbnailx.imaging.transparency import PaletteKey, TransparencyPlan, select_plan

if TYPE_CHECKING:
    from types import TracebackType

    from thumbnailx.imaging.engine import RasterBuffer, RasterEngine

logger = logging.getLogger(__name__)

# Output type for buffers that carry no format of their own.
DEFAULT_FORMAT = ImageFormat.PNG


class ImageOptions(BaseModel):
    """Options accepted by :meth:`ThumbnailImage.from_options`."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    path: Path | None = None
    data: StrictBytes | None = None
    buffer: Any = None
    format: ImageFormat | str | None = None
    rounding: RoundingPolicy = RoundingPolicy.FLOOR

    @model_validator(mode="after")
    def check_single_source(self) -> ImageOptions:
        given = [name for name in ("path", "data", "buffer") if getattr(self, name) is not None]
        if len(given) != 1:
            raise ValueError(f"Exactly one of 'path', 'data' or 'buffer' is required, got {given or 'none'}")
        return self


class ThumbnailImage:
    """A GIF, JPEG or PNG image held in an engine buffer."""

    def __init__(
        self,
        buffer: RasterBuffer,
        *,
        image_format: ImageFormat | str | None = None,
        rounding: RoundingPolicy | str = RoundingPolicy.FLOOR,
        engine: RasterEngine | None = None,
        path: Path | None = None,
        data: bytes | None = None,
    ) -> None:
        try:
            self._rounding = RoundingPolicy(rounding)
        except ValueError:
            raise ConfigurationError(f"The config 'rounding' only accepts floor or ceil, got {rounding!r}") from None

        self._engine: RasterEngine = engine if engine is not None else PillowEngine()
        width, height, detected = self._engine.describe(buffer)
        if width < 1 or height < 1:
            raise InvalidGeometryError(f"Image size must be positive, got {width}x{height}")

        if image_format is not None:
            self._format = ImageFormat.parse(image_format)
        else:
            self._format = detected or DEFAULT_FORMAT
        self._buffer: RasterBuffer | None = buffer
        self._width = width
        self._height = height
        self._path = path
        self._data = data

    # -- Construction -------------------------------------------------------

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        image_format: ImageFormat | str | None = None,
        rounding: RoundingPolicy | str = RoundingPolicy.FLOOR,
        engine: RasterEngine | None = None,
    ) -> ThumbnailImage:
        """Decode the image file at ``path``."""
        path = Path(path)
        data = path.read_bytes()
        image = cls.from_bytes(data, image_format=image_format, rounding=rounding, engine=engine)
        image._path = path
        return image

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        *,
        image_format: ImageFormat | str | None = None,
        rounding: RoundingPolicy | str = RoundingPolicy.FLOOR,
        engine: RasterEngine | None = None,
    ) -> ThumbnailImage:
        """Decode encoded GIF, JPEG or PNG bytes.

        ``image_format`` overrides the detected type for later encoding.
        """
        engine = engine if engine is not None else PillowEngine()
        decoded = engine.decode(data)
        try:
            return cls(
                decoded.buffer,
                image_format=image_format if image_format is not None else decoded.format,
                rounding=rounding,
                engine=engine,
                data=data,
            )
        except Exception:
            engine.release(decoded.buffer)
            raise

    @classmethod
    def from_buffer(
        cls,
        buffer: RasterBuffer,
        *,
        image_format: ImageFormat | str | None = None,
        rounding: RoundingPolicy | str = RoundingPolicy.FLOOR,
        engine: RasterEngine | None = None,
    ) -> ThumbnailImage:
        """Take ownership of an existing engine buffer."""
        return cls(buffer, image_format=image_format, rounding=rounding, engine=engine)

    @classmethod
    def from_options(cls, options: Mapping[str, Any], *, engine: RasterEngine | None = None) -> ThumbnailImage:
        """Build an image from an option mapping.

        Recognized keys are ``path``, ``data``, ``buffer``, ``format`` and
        ``rounding``; exactly one of the first three must be present.

        Raises:
            ConfigurationError: On an unknown key, a wrongly typed value or a
                missing/ambiguous image source.
        """
        try:
            opts = ImageOptions.model_validate(dict(options))
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

        kwargs: dict[str, Any] = {"image_format": opts.format, "rounding": opts.rounding, "engine": engine}
        if opts.path is not None:
            return cls.open(opts.path, **kwargs)
        if opts.data is not None:
            return cls.from_bytes(opts.data, **kwargs)
        return cls.from_buffer(opts.buffer, **kwargs)

    # -- Accessors ----------------------------------------------------------

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def size(self) -> tuple[int, int]:
        return self._width, self._height

    @property
    def format(self) -> ImageFormat:
        return self._format

    @property
    def rounding(self) -> RoundingPolicy:
        return self._rounding

    @property
    def path(self) -> Path | None:
        """File the image was opened from, if any."""
        return self._path

    @property
    def data(self) -> bytes | None:
        """Encoded bytes the image was decoded from, if any."""
        return self._data

    @property
    def closed(self) -> bool:
        return self._buffer is None

    @property
    def buffer(self) -> RasterBuffer:
        """The engine buffer owned by this image.

        Raises:
            ImageReleasedError: If the buffer has been released.
        """
        self._check_open()
        return self._buffer

    def _check_open(self) -> None:
        if self._buffer is None:
            raise ImageReleasedError("The image buffer has already been released")

    @property
    def transparent_index(self) -> int | None:
        return self._engine.transparent_index(self.buffer)

    @property
    def orientation(self) -> object:
        """EXIF orientation recorded in the source, 1 when absent."""
        return self._engine.read_orientation(self.buffer)

    # -- Transforms ---------------------------------------------------------

    def resize(self, max_width: int | None, max_height: int | None = None) -> ThumbnailImage:
        """Shrink to fit within ``max_width x max_height``, keeping the aspect ratio.

        Returns ``self`` when the image already fits.
        """
        self._check_open()
        dst_w, dst_h = bounded_resize(self._width, self._height, max_width, max_height, self._rounding)
        if (dst_w, dst_h) == (self._width, self._height):
            return self
        return self._transform(0, 0, 0, 0, dst_w, dst_h, self._width, self._height)

    def resize_by_percent(self, percent: Number) -> ThumbnailImage:
        """Scale both sides by ``percent``; values above 100 enlarge."""
        dst_w, dst_h = percent_resize(self._width, self._height, percent, self._rounding)
        return self._transform(0, 0, 0, 0, dst_w, dst_h, self._width, self._height)

    def resize_from_center(self, size: int) -> ThumbnailImage:
        """Crop the centered square and scale it to ``size x size``."""
        window, dst_w, dst_h = center_square_window(self._width, self._height, size, self._rounding)
        return self._transform(0, 0, window.x, window.y, dst_w, dst_h, window.width, window.height)

    def clip(self, x: int, y: int, width: int, height: int) -> ThumbnailImage:
        """Cut out a ``width x height`` region, clamped to the image bounds."""
        window = clip_window(self._width, self._height, x, y, width, height)
        return self._transform(0, 0, window.x, window.y, window.width, window.height, window.width, window.height)

    def flip(self) -> ThumbnailImage:
        """Mirror top to bottom."""
        w, h = self._width, self._height
        return self._transform(0, 0, 0, h, w, h, w, -h)

    def flop(self) -> ThumbnailImage:
        """Mirror left to right."""
        w, h = self._width, self._height
        return self._transform(0, 0, w, 0, w, h, -w, h)

    def rotate(
        self,
        angle: float,
        background_color: int | tuple[int, ...] | None = None,
        ignore_transparent: bool = False,
    ) -> ThumbnailImage:
        """Rotate ``angle`` degrees counter-clockwise, growing the canvas to fit.

        Uncovered corners take ``background_color``; when it is ``None`` they
        are transparent for images with transparency and black otherwise.
        ``ignore_transparent`` flattens the image to opaque RGB first.
        """
        source = self.buffer
        rotated = self._engine.rotate(source, angle, background_color, ignore_transparent)
        return self._replace_with(rotated)

    def rotate_by_orientation(self, code: object) -> ThumbnailImage:
        """Undo the camera orientation described by EXIF ``code`` (0-8).

        Raises:
            InvalidGeometryError: For codes outside 0-8.
        """
        steps = orientation_steps(code)
        if not steps:
            return self
        self._check_open()

        # Multi-step chains work on a copy so a late failure leaves self intact.
        working = self.clone() if len(steps) > 1 else self
        try:
            for step in steps:
                working = working._apply_step(step)
        except Exception:
            if working is not self:
                working.close()
            raise
        if working is not self:
            self.close()
        return working

    def auto_orient(self) -> ThumbnailImage:
        """Apply :meth:`rotate_by_orientation` with the image's own EXIF orientation."""
        return self.rotate_by_orientation(self.orientation)

    # -- Lifecycle ----------------------------------------------------------

    def clone(self) -> ThumbnailImage:
        """Return an independent copy with its own buffer."""
        duplicate = self._engine.duplicate(self.buffer)
        try:
            copy = self._derive(duplicate)
        except Exception:
            self._engine.release(duplicate)
            raise
        copy._path = self._path
        copy._data = self._data
        return copy

    def close(self) -> None:
        """Release the buffer. Calling it again is a no-op."""
        if self._buffer is None:
            return
        buffer, self._buffer = self._buffer, None
        self._engine.release(buffer)

    def __copy__(self) -> ThumbnailImage:
        return self.clone()

    def __deepcopy__(self, memo: dict[int, Any]) -> ThumbnailImage:
        return self.clone()

    def __enter__(self) -> ThumbnailImage:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ThumbnailImage {self._format} {self._width}x{self._height} {state}>"

    # -- Encoding -----------------------------------------------------------

    def to_bytes(self, image_format: ImageFormat | str | None = None, quality: int | None = None) -> bytes:
        """Encode the image; ``quality`` only applies to JPEG."""
        return self._engine.encode(self.buffer, self._output_format(image_format), quality)

    def base64_encode(self, image_format: ImageFormat | str | None = None) -> str:
        return base64.b64encode(self.to_bytes(image_format)).decode("ascii")

    def data_uri(self, image_format: ImageFormat | str | None = None) -> str:
        """Return a ``data:`` URI suitable for an ``<img src>`` attribute."""
        fmt = self._output_format(image_format)
        return f"data:{fmt.mime_type};base64,{self.base64_encode(fmt)}"

    def content_type(self, image_format: ImageFormat | str | None = None) -> str:
        return self._output_format(image_format).mime_type

    def save(
        self,
        path: str | Path,
        image_format: ImageFormat | str | None = None,
        quality: int | None = None,
    ) -> None:
        Path(path).write_bytes(self.to_bytes(image_format, quality))

    # -- Internal -----------------------------------------------------------

    def _output_format(self, image_format: ImageFormat | str | None) -> ImageFormat:
        if image_format is None:
            return self._format
        return ImageFormat.parse(image_format)

    def _apply_step(self, step: Step) -> ThumbnailImage:
        if step.angle is not None:
            return self.rotate(step.angle)
        if step is Step.FLIP:
            return self.flip()
        return self.flop()

    def _transform(
        self,
        dst_x: int,
        dst_y: int,
        src_x: int,
        src_y: int,
        dst_w: int,
        dst_h: int,
        src_w: int,
        src_h: int,
    ) -> ThumbnailImage:
        if dst_w < 1 or dst_h < 1:
            raise InvalidGeometryError(f"Destination size must be positive, got {dst_w}x{dst_h}")
        source = self.buffer
        plan = select_plan(self._format, self._engine.transparent_index(source))
        logger.debug(
            "Resampling %dx%d at (%d, %d) into %dx%d using %s",
            src_w,
            src_h,
            src_x,
            src_y,
            dst_w,
            dst_h,
            plan,
        )

        canvas = self._prepare_canvas(plan, source, dst_w, dst_h)
        try:
            self._engine.resample(canvas, source, dst_x, dst_y, src_x, src_y, dst_w, dst_h, src_w, src_h)
        except Exception:
            self._engine.release(canvas)
            raise
        return self._replace_with(canvas)

    def _prepare_canvas(self, plan: TransparencyPlan, source: RasterBuffer, width: int, height: int) -> RasterBuffer:
        mode = plan.canvas_mode(self._engine.buffer_mode(source))
        canvas = self._engine.allocate_canvas(width, height, mode, plan.fill)
        if isinstance(plan, PaletteKey):
            try:
                self._engine.copy_palette(canvas, source)
                self._engine.set_transparent_index(canvas, plan.index)
            except Exception:
                self._engine.release(canvas)
                raise
        return canvas

    def _derive(self, buffer: RasterBuffer) -> ThumbnailImage:
        return ThumbnailImage(buffer, image_format=self._format, rounding=self._rounding, engine=self._engine)

    def _replace_with(self, buffer: RasterBuffer) -> ThumbnailImage:
        """Wrap ``buffer`` as the successor of this image and release our own."""
        try:
            successor = self._derive(buffer)
        except Exception:
            self._engine.release(buffer)
            raise
        self.close()
        return successor
