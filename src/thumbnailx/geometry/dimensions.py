"""Target-size arithmetic for bounded and percentage resizes.

All ratios are computed with :class:`fractions.Fraction` so that the rounding
policy, not binary floating point, decides which way a half pixel goes.
"""

from __future__ import annotations

import math
from enum import StrEnum
from fractions import Fraction

from thumbnailx.errors import InvalidGeometryError

Number = int | float | Fraction


class RoundingPolicy(StrEnum):
    FLOOR = "floor"
    CEIL = "ceil"


def apply_rounding(value: Number, policy: RoundingPolicy) -> int:
    """Round a non-integral pixel value down or up according to ``policy``."""
    if policy is RoundingPolicy.CEIL:
        return math.ceil(value)
    return math.floor(value)


def _require_positive(name: str, value: Number) -> None:
    if value <= 0:
        raise InvalidGeometryError(f"{name} must be positive, got {value!r}")


def scale_to_fit(
    src_w: int,
    src_h: int,
    max_w: int,
    max_h: int,
    policy: RoundingPolicy = RoundingPolicy.FLOOR,
) -> tuple[int, int]:
    """Scale ``src_w x src_h`` so that it touches the tighter of the two bounds.

    The binding axis gets its bound exactly; the other axis is scaled by the
    same percentage and rounded with ``policy``, never below 1.
    """
    _require_positive("source width", src_w)
    _require_positive("source height", src_h)
    _require_positive("max width", max_w)
    _require_positive("max height", max_h)

    w_percent = Fraction(100 * max_w, src_w)
    h_percent = Fraction(100 * max_h, src_h)
    if w_percent < h_percent:
        return max_w, max(1, apply_rounding(src_h * w_percent / 100, policy))
    return max(1, apply_rounding(src_w * h_percent / 100, policy)), max_h


def bounded_resize(
    src_w: int,
    src_h: int,
    max_w: int | None,
    max_h: int | None = None,
    policy: RoundingPolicy = RoundingPolicy.FLOOR,
) -> tuple[int, int]:
    """Return the size of ``src_w x src_h`` shrunk to fit within the bounds.

    A missing bound mirrors the other one (square box). When the source
    already fits, the source size is returned unchanged and callers should
    treat the operation as a no-op.

    Raises:
        InvalidGeometryError: If no bound is given or a bound is not positive.
    """
    if max_w is None and max_h is None:
        raise InvalidGeometryError("At least one of max width or max height is required")
    if max_h is None:
        max_h = max_w
    if max_w is None:
        max_w = max_h
    _require_positive("max width", max_w)
    _require_positive("max height", max_h)

    if src_w <= max_w and src_h <= max_h:
        return src_w, src_h
    return scale_to_fit(src_w, src_h, max_w, max_h, policy)


def percent_resize(
    src_w: int,
    src_h: int,
    percent: Number,
    policy: RoundingPolicy = RoundingPolicy.FLOOR,
) -> tuple[int, int]:
    """Return the size of ``src_w x src_h`` scaled by ``percent`` (100 = unchanged)."""
    _require_positive("percent", percent)
    ratio = Fraction(percent) / 100
    return (
        max(1, apply_rounding(src_w * ratio, policy)),
        max(1, apply_rounding(src_h * ratio, policy)),
    )
