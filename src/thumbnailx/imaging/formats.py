"""Supported image formats."""

from __future__ import annotations

from enum import StrEnum

from thumbnailx.errors import UnsupportedFormatError


class ImageFormat(StrEnum):
    GIF = "gif"
    JPEG = "jpeg"
    PNG = "png"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value

    @classmethod
    def parse(cls, value: object) -> ImageFormat:
        """Parse a format name, file extension or MIME type.

        Accepts ``"png"``, ``"JPG"``, ``".gif"``, ``"image/jpeg"`` and
        :class:`ImageFormat` members.

        Raises:
            UnsupportedFormatError: If ``value`` names no supported format.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise UnsupportedFormatError(f"Unsupported image type: {value!r}")
        name = value.strip().lower().lstrip(".").removeprefix("image/")
        name = _ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedFormatError(f"Unsupported image type: {value!r}") from None


_ALIASES: dict[str, str] = {
    "jpg": "jpeg",
    "jpe": "jpeg",
    "pjpeg": "jpeg",
}
