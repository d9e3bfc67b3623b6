"""EXIF orientation codes and the transforms that normalize them.

Each code maps to a fixed sequence of steps applied in order. Rotation
angles are counter-clockwise degrees, the convention of the raster engine's
rotate call, so "rotate 270" undoes a camera that was turned 90° clockwise.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum

from thumbnailx.errors import InvalidGeometryError


class Orientation(IntEnum):
    """Values of the EXIF Orientation tag (274)."""

    UNKNOWN = 0  # some Android camera apps write 0
    TOP_LEFT = 1
    TOP_RIGHT = 2
    BOTTOM_RIGHT = 3
    BOTTOM_LEFT = 4
    LEFT_TOP = 5
    RIGHT_TOP = 6
    RIGHT_BOTTOM = 7
    LEFT_BOTTOM = 8


class Step(StrEnum):
    FLIP = "flip"
    FLOP = "flop"
    ROTATE_90 = "rotate_90"
    ROTATE_180 = "rotate_180"
    ROTATE_270 = "rotate_270"

    @property
    def angle(self) -> int | None:
        """Rotation angle for rotate steps, ``None`` for reflections."""
        return _STEP_ANGLES.get(self)


_STEP_ANGLES: dict[Step, int] = {
    Step.ROTATE_90: 90,
    Step.ROTATE_180: 180,
    Step.ROTATE_270: 270,
}


ORIENTATION_STEPS: dict[Orientation, tuple[Step, ...]] = {
    Orientation.UNKNOWN: (),
    Orientation.TOP_LEFT: (),
    Orientation.TOP_RIGHT: (Step.FLOP,),
    Orientation.BOTTOM_RIGHT: (Step.ROTATE_180,),
    Orientation.BOTTOM_LEFT: (Step.FLIP,),
    Orientation.LEFT_TOP: (Step.ROTATE_270, Step.FLOP),
    Orientation.RIGHT_TOP: (Step.ROTATE_270,),
    Orientation.RIGHT_BOTTOM: (Step.ROTATE_90, Step.FLOP),
    Orientation.LEFT_BOTTOM: (Step.ROTATE_90,),
}


def to_orientation(code: object) -> Orientation:
    """Validate ``code`` and return it as an :class:`Orientation`.

    Raises:
        InvalidGeometryError: For anything that is not an integer from 0 to 8.
    """
    if isinstance(code, bool) or not isinstance(code, int):
        raise InvalidGeometryError(f"Could not rotate by orientation {code!r}")
    try:
        return Orientation(code)
    except ValueError:
        raise InvalidGeometryError(f"Could not rotate by orientation {code!r}") from None


def orientation_steps(code: object) -> tuple[Step, ...]:
    """Return the transform steps that normalize orientation ``code``."""
    return ORIENTATION_STEPS[to_orientation(code)]


def transposes_dimensions(code: object) -> bool:
    """True if normalizing ``code`` swaps width and height."""
    return to_orientation(code) >= Orientation.LEFT_TOP
