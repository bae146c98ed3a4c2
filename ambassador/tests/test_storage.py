"""
Tests for screenshot uploads and the local blob store.
"""
import io

import pytest
from httpx import AsyncClient
from PIL import Image

from ambassador.app.core.exceptions import NotFoundError, ValidationError
from ambassador.app.core.image_convert import convert_screenshot_to_webp, validate_image_content
from ambassador.app.models.user import User
from ambassador.app.services.storage import LocalBlobStore
from ambassador.tests.conftest import tg_headers


def make_png(width: int = 40, height: int = 80, mode: str = "RGBA") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), (200, 30, 90, 255) if mode == "RGBA" else (200, 30, 90)).save(buf, "PNG")
    return buf.getvalue()


class TestImageConvert:
    def test_magic_bytes(self):
        assert validate_image_content(make_png())
        assert not validate_image_content(b"%PDF-1.4")

    def test_converts_to_webp(self):
        webp = convert_screenshot_to_webp(make_png())
        assert webp[:4] == b"RIFF"
        assert webp[8:12] == b"WEBP"

    def test_long_side_is_limited(self):
        webp = convert_screenshot_to_webp(make_png(100, 400, mode="RGB"), max_side_px=200)
        assert Image.open(io.BytesIO(webp)).size == (50, 200)

    def test_not_an_image(self):
        with pytest.raises(ValueError):
            convert_screenshot_to_webp(b"hello")

    def test_broken_image(self):
        with pytest.raises(ValueError):
            convert_screenshot_to_webp(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_store_and_read(self, blob_store: LocalBlobStore):
        url = await blob_store.store(make_png())

        assert url.startswith("/uploads/")
        assert url.endswith(".webp")
        content = await blob_store.read(url)
        assert content[8:12] == b"WEBP"

    @pytest.mark.asyncio
    async def test_rejects_empty_and_large_files(self, tmp_path):
        store = LocalBlobStore(str(tmp_path), "/uploads", max_bytes=100)
        with pytest.raises(ValidationError):
            await store.store(b"")
        with pytest.raises(ValidationError) as exc_info:
            await store.store(b"\x89PNG\r\n\x1a\n" + b"0" * 200)
        assert "file" in exc_info.value.errors

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", [
        "/uploads/../secret.txt",
        "/uploads/.hidden",
        "/uploads/sub/file.webp",
        "/other/file.webp",
        "/uploads/missing.webp",
    ])
    async def test_read_refuses_paths_outside_store(self, blob_store: LocalBlobStore, url):
        with pytest.raises(NotFoundError):
            await blob_store.read(url)


@pytest.mark.asyncio
async def test_upload_screenshot_endpoint(client: AsyncClient, ambassador: User, blob_store: LocalBlobStore):
    response = await client.post(
        "/api/reports/upload-screenshot",
        headers=tg_headers(ambassador),
        files={"screenshot": ("story.png", make_png(), "image/png")},
    )

    assert response.status_code == 201
    url = response.json()["url"]
    assert (await blob_store.read(url))[:4] == b"RIFF"


@pytest.mark.asyncio
async def test_upload_rejects_non_image(client: AsyncClient, ambassador: User):
    response = await client.post(
        "/api/reports/upload-screenshot",
        headers=tg_headers(ambassador),
        files={"screenshot": ("notes.txt", b"just text", "text/plain")},
    )
    assert response.status_code == 400
    assert "file" in response.json()["detail"]["errors"]


@pytest.mark.asyncio
async def test_upload_requires_complete_profile(client: AsyncClient, pending_ambassador: User):
    response = await client.post(
        "/api/reports/upload-screenshot",
        headers=tg_headers(pending_ambassador),
        files={"screenshot": ("story.png", make_png(), "image/png")},
    )
    assert response.status_code == 403
