"""API route definitions."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, UploadFile, status

from thumbnailx.api.middleware import CONTENT_TOO_LARGE, UNPROCESSABLE_CONTENT, verify_api_key
from thumbnailx.api.schemas import ErrorResponse, HealthResponse, ImageInfo
from thumbnailx.errors import InvalidGeometryError
from thumbnailx.imaging.formats import ImageFormat
from thumbnailx.imaging.image import ThumbnailImage

if TYPE_CHECKING:
    from collections.abc import Callable

    from thumbnailx.config import Settings
    from thumbnailx.geometry.dimensions import RoundingPolicy
    from thumbnailx.imaging.engine import RasterEngine
    from thumbnailx.imaging.pool import TransformPool

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

# "400x300.png", "400.jpg", "x300.gif", "400x300"
_BOUNDS_NAME = re.compile(r"(?P<width>\d*)(?:x(?P<height>\d*))?(?:\.(?P<ext>[A-Za-z]+))?")
# "200.png", "200"
_SQUARE_NAME = re.compile(r"(?P<size>\d+)(?:\.(?P<ext>[A-Za-z]+))?")

_IMAGE_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_200_OK: {"content": {fmt.mime_type: {}} for fmt in ImageFormat},
    CONTENT_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
    UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

Quality = Annotated[int | None, Query(ge=1, le=95, description="JPEG quality")]
AutoOrient = Annotated[bool, Query(description="Apply the EXIF orientation before resizing")]


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_engine(request: Request) -> RasterEngine:
    engine: RasterEngine = request.app.state.engine
    return engine


def _get_transform_pool(request: Request) -> TransformPool:
    pool: TransformPool = request.app.state.transform_pool
    return pool


def parse_bounds_name(name: str, default_format: ImageFormat) -> tuple[int | None, int | None, ImageFormat]:
    """Split a ``<width>x<height>.<ext>`` thumbnail name.

    Either side may be omitted, in which case it mirrors the other one.
    """
    match = _BOUNDS_NAME.fullmatch(name)
    if match is None or not (match["width"] or match["height"]):
        raise InvalidGeometryError(f"Invalid thumbnail name {name!r}, expected <width>x<height>.<ext>")
    width = int(match["width"]) if match["width"] else None
    height = int(match["height"]) if match["height"] else None
    image_format = ImageFormat.parse(match["ext"]) if match["ext"] else default_format
    return width, height, image_format


def parse_square_name(name: str, default_format: ImageFormat) -> tuple[int, ImageFormat]:
    """Split a ``<size>.<ext>`` square thumbnail name."""
    match = _SQUARE_NAME.fullmatch(name)
    if match is None:
        raise InvalidGeometryError(f"Invalid thumbnail name {name!r}, expected <size>.<ext>")
    image_format = ImageFormat.parse(match["ext"]) if match["ext"] else default_format
    return int(match["size"]), image_format


async def _read_upload(file: UploadFile, settings: Settings) -> bytes:
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=CONTENT_TOO_LARGE,
            detail=f"Upload exceeds {settings.max_file_size} bytes",
        )
    return data


def _render(
    data: bytes,
    engine: RasterEngine,
    rounding: RoundingPolicy,
    operation: Callable[[ThumbnailImage], ThumbnailImage],
    image_format: ImageFormat,
    quality: int | None,
    auto_orient: bool,
) -> bytes:
    image = ThumbnailImage.from_bytes(data, rounding=rounding, engine=engine)
    try:
        if auto_orient:
            image = image.auto_orient()
        image = operation(image)
        return image.to_bytes(image_format, quality)
    finally:
        image.close()


def _describe(data: bytes, engine: RasterEngine, rounding: RoundingPolicy) -> ImageInfo:
    with ThumbnailImage.from_bytes(data, rounding=rounding, engine=engine) as image:
        orientation = image.orientation
        return ImageInfo(
            width=image.width,
            height=image.height,
            format=image.format.value,
            content_type=image.content_type(),
            orientation=orientation if isinstance(orientation, int) else None,
            transparent_index=image.transparent_index,
        )


@router.post(
    "/thumbnail/{name}",
    response_class=Response,
    responses=_IMAGE_RESPONSES,
    summary="Shrink an image to fit a bounding box",
)
async def thumbnail(
    request: Request,
    name: str,
    file: UploadFile,
    quality: Quality = None,
    auto_orient: AutoOrient = True,
) -> Response:
    """Resize an uploaded image to fit ``<width>x<height>`` and encode it as ``<ext>``."""
    settings = _get_settings(request)
    max_width, max_height, image_format = parse_bounds_name(name, ImageFormat(settings.default_format))
    data = await _read_upload(file, settings)

    body = await _get_transform_pool(request).run(
        _render,
        data,
        _get_engine(request),
        settings.rounding,
        lambda image: image.resize(max_width, max_height),
        image_format,
        quality,
        auto_orient,
    )
    return Response(content=body, media_type=image_format.mime_type)


@router.post(
    "/square/{name}",
    response_class=Response,
    responses=_IMAGE_RESPONSES,
    summary="Crop the centered square of an image",
)
async def square(
    request: Request,
    name: str,
    file: UploadFile,
    quality: Quality = None,
    auto_orient: AutoOrient = True,
) -> Response:
    """Crop the centered square of an uploaded image and scale it to ``<size>``."""
    settings = _get_settings(request)
    size, image_format = parse_square_name(name, ImageFormat(settings.default_format))
    data = await _read_upload(file, settings)

    body = await _get_transform_pool(request).run(
        _render,
        data,
        _get_engine(request),
        settings.rounding,
        lambda image: image.resize_from_center(size),
        image_format,
        quality,
        auto_orient,
    )
    return Response(content=body, media_type=image_format.mime_type)


@router.post(
    "/info",
    response_model=ImageInfo,
    responses={status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse}},
    summary="Describe an image",
)
async def info(request: Request, file: UploadFile) -> ImageInfo:
    """Return size, format and orientation of an uploaded image."""
    settings = _get_settings(request)
    data = await _read_upload(file, settings)
    return await _get_transform_pool(request).run(_describe, data, _get_engine(request), settings.rounding)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_transform_pool(request)
    return HealthResponse(
        status="ok",
        rounding=settings.rounding.value,
        resample_filter=settings.resample_filter,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
