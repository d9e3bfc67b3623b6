"""Tests for the ThumbnailX HTTP API."""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI, status
from PIL import ExifTags, Image

from thumbnailx.api.middleware import CONTENT_TOO_LARGE, UNPROCESSABLE_CONTENT, status_for
from thumbnailx.api.routes import parse_bounds_name, parse_square_name
from thumbnailx.config import get_settings
from thumbnailx.errors import (
    EngineFailureError,
    ImageDecodeError,
    ImageTooLargeError,
    InvalidGeometryError,
    UnsupportedFormatError,
)
from thumbnailx.imaging.formats import ImageFormat
from thumbnailx.imaging.pool import TransformPool
from thumbnailx.main import create_app, init_state


def _init_app_state(app: FastAPI, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    init_state(app, settings)


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: TransformPool = app.state.transform_pool
    pool.shutdown()


def _upload(data: bytes, filename: str = "upload.jpg", content_type: str = "image/jpeg") -> dict[str, tuple]:
    return {"file": (filename, io.BytesIO(data), content_type)}


def _jpeg(width: int = 800, height: int = 600, orientation: int | None = None) -> bytes:
    out = io.BytesIO()
    image = Image.new("RGB", (width, height), (90, 140, 200))
    if orientation is None:
        image.save(out, format="JPEG")
    else:
        exif = Image.Exif()
        exif[ExifTags.Base.Orientation] = orientation
        image.save(out, format="JPEG", exif=exif)
    return out.getvalue()


def _gif(width: int = 60, height: int = 40) -> bytes:
    out = io.BytesIO()
    image = Image.new("P", (width, height), 0)
    image.putpalette([0, 0, 0, 255, 255, 0])
    image.paste(1, (10, 10, 30, 30))
    image.save(out, format="GIF", transparency=0)
    return out.getvalue()


def _open(content: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(content))
    image.load()
    return image


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestNameParsing:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("400x300.png", (400, 300, ImageFormat.PNG)),
            ("400.jpg", (400, None, ImageFormat.JPEG)),
            ("x300.gif", (None, 300, ImageFormat.GIF)),
            ("400x300", (400, 300, ImageFormat.PNG)),
            ("400x.JPEG", (400, None, ImageFormat.JPEG)),
        ],
    )
    def test_bounds_names(self, name: str, expected: tuple) -> None:
        assert parse_bounds_name(name, ImageFormat.PNG) == expected

    @pytest.mark.parametrize("name", ["abc.png", "x.png", "", "400x300x2.png", "-1x5.png"])
    def test_invalid_bounds_names(self, name: str) -> None:
        with pytest.raises(InvalidGeometryError):
            parse_bounds_name(name, ImageFormat.PNG)

    def test_unknown_extension(self) -> None:
        with pytest.raises(UnsupportedFormatError):
            parse_bounds_name("400x300.bmp", ImageFormat.PNG)

    def test_square_names(self) -> None:
        assert parse_square_name("200.gif", ImageFormat.PNG) == (200, ImageFormat.GIF)
        assert parse_square_name("64", ImageFormat.JPEG) == (64, ImageFormat.JPEG)

    def test_invalid_square_name(self) -> None:
        with pytest.raises(InvalidGeometryError):
            parse_square_name("200x100.png", ImageFormat.PNG)


class TestErrorStatus:
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ImageTooLargeError("big"), 413),
            (ImageDecodeError("bad"), status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
            (UnsupportedFormatError("bmp"), status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
            (InvalidGeometryError("zero"), 422),
            (EngineFailureError("oom"), status.HTTP_500_INTERNAL_SERVER_ERROR),
        ],
    )
    def test_mapping(self, error: Exception, code: int) -> None:
        assert status_for(error) == code

    def test_status_names_are_plain_codes(self) -> None:
        assert CONTENT_TOO_LARGE == 413
        assert UNPROCESSABLE_CONTENT == 422


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["rounding"] == "floor"
        assert data["resample_filter"] == "lanczos"
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_reports_rounding(self) -> None:
        ceil_app = create_app()
        _init_app_state(ceil_app, THUMBNAILX_ROUNDING="ceil")
        async for ac in _make_client(ceil_app):
            response = await ac.get("/api/v1/health")
            assert response.json()["rounding"] == "ceil"


class TestThumbnailEndpoint:
    async def test_resizes_and_converts(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/400x300.png", files=_upload(_jpeg()))
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/png"
        image = _open(response.content)
        assert image.format == "PNG"
        assert image.size == (400, 300)

    async def test_single_bound(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/400.jpg", files=_upload(_jpeg()))
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/jpeg"
        assert _open(response.content).size == (400, 300)

    async def test_small_image_is_not_enlarged(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/400x300.jpg", files=_upload(_jpeg(100, 50)))
        assert response.status_code == status.HTTP_200_OK
        assert _open(response.content).size == (100, 50)

    async def test_rounding_from_settings(self) -> None:
        ceil_app = create_app()
        _init_app_state(ceil_app, THUMBNAILX_ROUNDING="ceil")
        async for ac in _make_client(ceil_app):
            response = await ac.post("/api/v1/thumbnail/350x350.png", files=_upload(_jpeg(700, 525)))
            assert _open(response.content).size == (350, 263)

    async def test_default_format(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/400x300", files=_upload(_jpeg()))
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/png"

    async def test_applies_exif_orientation(self, client: httpx.AsyncClient) -> None:
        data = _jpeg(800, 400, orientation=6)
        response = await client.post("/api/v1/thumbnail/400x400.jpg", files=_upload(data))
        assert _open(response.content).size == (200, 400)

    async def test_orientation_can_be_skipped(self, client: httpx.AsyncClient) -> None:
        data = _jpeg(800, 400, orientation=6)
        response = await client.post(
            "/api/v1/thumbnail/400x400.jpg",
            params={"auto_orient": "false"},
            files=_upload(data),
        )
        assert _open(response.content).size == (400, 200)

    async def test_gif_output(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/thumbnail/30x30.gif",
            files=_upload(_gif(), "anim.gif", "image/gif"),
        )
        assert response.status_code == status.HTTP_200_OK
        image = _open(response.content)
        assert image.format == "GIF"
        assert image.size == (30, 20)
        assert "transparency" in image.info

    async def test_invalid_image_returns_415(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/400x300.png", files=_upload(b"fake image data"))
        assert response.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE

    async def test_unknown_extension_returns_415(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/400x300.bmp", files=_upload(_jpeg()))
        assert response.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE

    async def test_bad_name_returns_422(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/abc.png", files=_upload(_jpeg()))
        assert response.status_code == UNPROCESSABLE_CONTENT

    async def test_zero_bound_returns_422(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/thumbnail/0x300.png", files=_upload(_jpeg()))
        assert response.status_code == UNPROCESSABLE_CONTENT

    @pytest.mark.filterwarnings("error")
    async def test_upload_too_large_returns_413(self) -> None:
        small_app = create_app()
        _init_app_state(small_app, THUMBNAILX_MAX_FILE_SIZE="100")
        async for ac in _make_client(small_app):
            response = await ac.post("/api/v1/thumbnail/400x300.png", files=_upload(_jpeg()))
            assert response.status_code == CONTENT_TOO_LARGE

    async def test_too_many_pixels_returns_413(self) -> None:
        small_app = create_app()
        _init_app_state(small_app, THUMBNAILX_MAX_IMAGE_PIXELS="1000")
        async for ac in _make_client(small_app):
            response = await ac.post("/api/v1/thumbnail/400x300.png", files=_upload(_jpeg()))
            assert response.status_code == CONTENT_TOO_LARGE

    async def test_busy_pool_returns_503(self, client: httpx.AsyncClient) -> None:
        with patch.object(TransformPool, "run", side_effect=TimeoutError):
            response = await client.post("/api/v1/thumbnail/400x300.png", files=_upload(_jpeg()))
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


class TestSquareEndpoint:
    @pytest.mark.parametrize(("width", "height"), [(800, 600), (400, 600), (120, 80)])
    async def test_crops_center_square(self, client: httpx.AsyncClient, width: int, height: int) -> None:
        response = await client.post("/api/v1/square/200.jpg", files=_upload(_jpeg(width, height)))
        assert response.status_code == status.HTTP_200_OK
        assert _open(response.content).size == (200, 200)

    async def test_gif_square(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/square/20.gif", files=_upload(_gif(), "a.gif", "image/gif"))
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/gif"
        assert _open(response.content).size == (20, 20)

    async def test_zero_size_returns_422(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/square/0.png", files=_upload(_jpeg()))
        assert response.status_code == UNPROCESSABLE_CONTENT


class TestInfoEndpoint:
    async def test_describes_jpeg(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/info", files=_upload(_jpeg(640, 480, orientation=6)))
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["width"] == 640
        assert data["height"] == 480
        assert data["format"] == "jpeg"
        assert data["content_type"] == "image/jpeg"
        assert data["orientation"] == 6
        assert data["transparent_index"] is None

    async def test_describes_gif_transparency(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/info", files=_upload(_gif(), "a.gif", "image/gif"))
        data = response.json()
        assert data["format"] == "gif"
        assert data["transparent_index"] is not None

    async def test_invalid_image_returns_415(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/info", files=_upload(b"not an image"))
        assert response.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBNAILX_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_bearer_key(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBNAILX_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_api_key_header(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBNAILX_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health", headers={"X-API-Key": "test-secret-key"})
            assert response.status_code == status.HTTP_200_OK

    async def test_wrong_key(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBNAILX_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer wrong-key"},
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
