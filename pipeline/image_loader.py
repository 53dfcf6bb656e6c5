"""
ImageLoader: turns an evidence media reference into an ImagePayload.

Flow
----
  1. Direct fetch - GET the URI; accept a 2xx image/* response as-is.
  2. Re-encode    - read the bytes another way (lenient GET, data: URI or
                    local file), decode with Pillow, downscale to
                    max_dimension and re-encode as JPEG.
  3. Unavailable  - return None; callers continue in text-only mode.

Network problems never raise. Only input that cannot possibly be an image
reference (blank, non-string, unsupported scheme) raises ValueError.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image

from analyzers.base_analyzer import DEFAULT_CALL_TIMEOUT_S, ImagePayload


logger = logging.getLogger(__name__)

MAX_DIMENSION = 1024
JPEG_QUALITY = 85
SUPPORTED_SCHEMES = {"http", "https", "data", "file", ""}


class ImageLoader:
    """Fetches evidence images with a Pillow re-encode fallback."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        max_dimension: int = MAX_DIMENSION,
        jpeg_quality: int = JPEG_QUALITY,
    ):
        self.client = client
        self.timeout_s = timeout_s
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality

    async def load(self, uri: str) -> ImagePayload | None:
        scheme = self._validate(uri)

        if scheme in ("http", "https"):
            payload = await self._fetch_direct(uri)
            if payload is not None:
                logger.info("Image fetch OK - %dKB %s", len(payload) // 1000, payload.mime_type)
                return payload

        payload = await self._reencode(uri, scheme)
        if payload is not None:
            logger.info("Image re-encode OK - %dKB", len(payload) // 1000)
            return payload

        logger.error("Could not load image %.120s - continuing text-only", uri)
        return None

    # ------------------------------------------------------------------
    # Input validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(uri: object) -> str:
        if not isinstance(uri, str) or not uri.strip():
            raise ValueError(f"Invalid media reference: {uri!r}")
        scheme = urlparse(uri.strip()).scheme.lower()
        # Windows drive letters parse as one-letter schemes.
        if len(scheme) == 1:
            scheme = ""
        if scheme not in SUPPORTED_SCHEMES:
            raise ValueError(f"Unsupported media reference scheme: {scheme!r}")
        return scheme

    # ------------------------------------------------------------------
    # Stage 1: direct fetch
    # ------------------------------------------------------------------

    async def _fetch_direct(self, url: str) -> ImagePayload | None:
        try:
            response = await self.client.get(url, timeout=self.timeout_s)
        except httpx.HTTPError as exc:
            logger.warning("Image fetch threw: %s", exc)
            return None

        if not response.is_success:
            logger.warning("Image fetch status: %d", response.status_code)
            return None

        mime = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if not response.content or not mime.startswith("image/"):
            logger.warning("Image fetch returned %r content, trying re-encode", mime or "untyped")
            return None
        return ImagePayload(data=response.content, mime_type=mime)

    # ------------------------------------------------------------------
    # Stage 2: decode + downscale + re-encode
    # ------------------------------------------------------------------

    async def _reencode(self, uri: str, scheme: str) -> ImagePayload | None:
        try:
            raw = await self._read_source(uri, scheme)
            data = await asyncio.to_thread(self._downscale_to_jpeg, raw)
        except (httpx.HTTPError, OSError, ValueError, Image.DecompressionBombError) as exc:
            # PIL.UnidentifiedImageError is an OSError; binascii.Error a ValueError.
            logger.warning("Image re-encode failed: %s", exc)
            return None
        return ImagePayload(data=data, mime_type="image/jpeg")

    async def _read_source(self, uri: str, scheme: str) -> bytes:
        if scheme in ("http", "https"):
            response = await self.client.get(
                uri,
                headers={"Accept": "image/*,*/*;q=0.8"},
                follow_redirects=True,
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            return response.content
        if scheme == "data":
            return self._decode_data_uri(uri)
        path = Path(unquote(urlparse(uri).path)) if scheme == "file" else Path(uri)
        return await asyncio.to_thread(path.read_bytes)

    @staticmethod
    def _decode_data_uri(uri: str) -> bytes:
        header, sep, body = uri.partition(",")
        if not sep:
            raise ValueError("Malformed data URI")
        if ";base64" in header:
            try:
                return base64.b64decode(body, validate=False)
            except binascii.Error as exc:
                raise ValueError(f"Bad base64 in data URI: {exc}") from exc
        return unquote(body).encode("latin-1")

    def _downscale_to_jpeg(self, raw: bytes) -> bytes:
        if not raw:
            raise ValueError("Empty image body")
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            if max(img.size) > self.max_dimension:
                img.thumbnail((self.max_dimension, self.max_dimension), Image.LANCZOS)
            rgb = img.convert("RGB")
        out = io.BytesIO()
        rgb.save(out, format="JPEG", quality=self.jpeg_quality)
        return out.getvalue()
