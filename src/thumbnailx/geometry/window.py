"""Source-window resolution for crops and center-square thumbnails."""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction

from thumbnailx.errors import InvalidGeometryError
from thumbnailx.geometry.dimensions import RoundingPolicy, apply_rounding, scale_to_fit


@dataclass(frozen=True)
class Rectangle:
    """A window into a source image, always contained in its bounds."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def box(self) -> tuple[int, int, int, int]:
        """(left, upper, right, lower) box as accepted by ``Image.crop``."""
        return self.x, self.y, self.right, self.bottom


def clip_window(src_w: int, src_h: int, x: int, y: int, width: int, height: int) -> Rectangle:
    """Clamp a requested crop so it lies entirely inside the source.

    Oversized extents shrink to the source size, then the origin is shifted
    back so the window fits, and negative origins become 0.

    Raises:
        InvalidGeometryError: If the requested width or height is not positive.
    """
    if width <= 0 or height <= 0:
        raise InvalidGeometryError(f"Clip size must be positive, got {width}x{height}")

    width = min(width, src_w)
    height = min(height, src_h)
    if x + width > src_w:
        x = src_w - width
    if y + height > src_h:
        y = src_h - height
    return Rectangle(x=max(0, x), y=max(0, y), width=width, height=height)


def center_square_window(
    src_w: int,
    src_h: int,
    size: int,
    policy: RoundingPolicy = RoundingPolicy.FLOOR,
) -> tuple[Rectangle, int, int]:
    """Compute the centered square to sample and the destination size.

    Returns:
        ``(window, dst_w, dst_h)``. The window is the largest centered square
        of the source; the destination is ``size x size`` except for square
        sources larger than ``size``, which are scaled to fit.

    Raises:
        InvalidGeometryError: If ``size`` is not positive.
    """
    if size <= 0:
        raise InvalidGeometryError(f"Thumbnail size must be positive, got {size}")

    if src_w > src_h:
        start_x = apply_rounding(Fraction(src_w - src_h, 2), policy)
        return Rectangle(x=start_x, y=0, width=src_h, height=src_h), size, size
    if src_h > src_w:
        start_y = apply_rounding(Fraction(src_h - src_w, 2), policy)
        return Rectangle(x=0, y=start_y, width=src_w, height=src_w), size, size

    window = Rectangle(x=0, y=0, width=src_w, height=src_h)
    if src_w > size:
        dst_w, dst_h = scale_to_fit(src_w, src_h, size, size, policy)
        return window, dst_w, dst_h
    return window, size, size
