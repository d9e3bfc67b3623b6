"""Canvas preparation plans that keep transparent pixels transparent.

The raster engine pastes resampled pixels onto whatever the destination
canvas already holds. Any area the paste does not cover keeps the canvas
fill, so the canvas has to start out transparent in the source's own terms.
"""

from __future__ import annotations

from dataclasses import dataclass

from thumbnailx.imaging.formats import ImageFormat

TRANSPARENT_BLACK: tuple[int, int, int, int] = (0, 0, 0, 0)

# Single-channel source modes that keep a grayscale canvas.
_GRAY_MODES = frozenset({"1", "L", "I", "I;16", "I;16B", "I;16L", "I;16N"})


@dataclass(frozen=True)
class NoTransparency:
    """Opaque copy; the canvas needs no special fill."""

    def canvas_mode(self, source_mode: str) -> str:
        return "L" if source_mode in _GRAY_MODES else "RGB"

    @property
    def fill(self) -> int:
        return 0


@dataclass(frozen=True)
class PaletteKey:
    """Indexed canvas pre-filled with the source's transparent palette slot."""

    index: int

    def canvas_mode(self, source_mode: str) -> str:
        return "P"

    @property
    def fill(self) -> int:
        return self.index


@dataclass(frozen=True)
class AlphaFill:
    """RGBA canvas pre-filled with a fully transparent color.

    Pastes replace canvas pixels instead of compositing onto them, and the
    RGBA mode keeps per-pixel alpha through the resample and the encoder.
    """

    rgba: tuple[int, int, int, int] = TRANSPARENT_BLACK

    def canvas_mode(self, source_mode: str) -> str:
        return "RGBA"

    @property
    def fill(self) -> tuple[int, int, int, int]:
        return self.rgba


TransparencyPlan = NoTransparency | PaletteKey | AlphaFill


def select_plan(image_format: ImageFormat, transparent_index: int | None) -> TransparencyPlan:
    """Choose how the destination canvas must be initialized.

    Args:
        image_format: Format of the source image.
        transparent_index: Palette slot marked transparent in the source, if any.
    """
    if image_format is ImageFormat.GIF:
        if transparent_index is not None and transparent_index >= 0:
            return PaletteKey(transparent_index)
        return NoTransparency()
    if image_format is ImageFormat.PNG:
        return AlphaFill()
    return NoTransparency()
