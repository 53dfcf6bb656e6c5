"""Tests for the image loader's direct-fetch and re-encode paths."""

import asyncio
import base64
import io

import httpx
import pytest
from PIL import Image

from pipeline.image_loader import ImageLoader


def png_bytes(size=(2000, 1200), color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new("RGBA", size, color + (255,)).save(buf, format="PNG")
    return buf.getvalue()


def load_with(handler, uri, **kwargs):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ImageLoader(client, timeout_s=1.0, **kwargs).load(uri)

    return asyncio.run(run())


def test_direct_fetch_keeps_bytes_and_mime():
    body = png_bytes(size=(10, 10))

    def handler(request):
        return httpx.Response(200, content=body, headers={"content-type": "image/png"})

    payload = load_with(handler, "https://cdn.example.com/e.png")
    assert payload.data == body
    assert payload.mime_type == "image/png"


def test_untyped_response_is_reencoded_and_downscaled():
    body = png_bytes()

    def handler(request):
        return httpx.Response(200, content=body, headers={"content-type": "application/octet-stream"})

    payload = load_with(handler, "https://cdn.example.com/e", max_dimension=1024)
    assert payload.mime_type == "image/jpeg"
    with Image.open(io.BytesIO(payload.data)) as img:
        assert img.format == "JPEG"
        assert max(img.size) == 1024
        assert img.size == (1024, 614)


def test_failed_direct_fetch_then_failed_reencode_is_unavailable():
    def handler(request):
        return httpx.Response(404)

    assert load_with(handler, "https://cdn.example.com/missing.jpg") is None


def test_non_image_body_is_unavailable():
    def handler(request):
        return httpx.Response(200, content=b"<html>login</html>", headers={"content-type": "text/html"})

    assert load_with(handler, "https://cdn.example.com/e.jpg") is None


def test_network_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("dns", request=request)

    assert load_with(handler, "https://cdn.example.com/e.jpg") is None


def test_data_uri_is_reencoded():
    uri = "data:image/png;base64," + base64.b64encode(png_bytes(size=(40, 20))).decode()

    def handler(request):
        raise AssertionError("no HTTP call expected for data URIs")

    payload = load_with(handler, uri)
    assert payload.mime_type == "image/jpeg"
    with Image.open(io.BytesIO(payload.data)) as img:
        assert img.size == (40, 20)


def test_local_file_is_reencoded(tmp_path):
    path = tmp_path / "evidence.png"
    path.write_bytes(png_bytes(size=(64, 64)))

    def handler(request):
        raise AssertionError("no HTTP call expected for local files")

    payload = load_with(handler, str(path))
    assert payload is not None
    assert payload.mime_type == "image/jpeg"


def test_missing_local_file_is_unavailable(tmp_path):
    def handler(request):
        raise AssertionError("no HTTP call expected")

    assert load_with(handler, str(tmp_path / "nope.jpg")) is None


@pytest.mark.parametrize("uri", ["", "   ", None, "ftp://example.com/a.jpg"])
def test_invalid_reference_raises(uri):
    def handler(request):
        raise AssertionError("no HTTP call expected")

    with pytest.raises(ValueError):
        load_with(handler, uri)


def test_decompression_bomb_is_unavailable(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    uri = "data:image/png;base64," + base64.b64encode(png_bytes(size=(64, 64))).decode()

    def handler(request):
        raise AssertionError("no HTTP call expected for data URIs")

    assert load_with(handler, uri) is None
