"""
Image Ingest - resolve image references into bytes Figma can use.

Pipeline stages, each returning either a ResolvedImage or an IngestionFailure:
    1. classify_reference: `data:` URIs are inline, anything else is remote.
    2. fetch (remote) or decode_data_uri (inline).
    3. normalize: SVG is rasterized at 2x the target size, other unsupported
       rasters are re-encoded as PNG, PNG/JPEG/GIF pass through untouched.

Failures are values, never exceptions, so the caller has a single place to
decide between a placeholder and an error result.
"""

import asyncio
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import unquote_to_bytes

import httpx
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Figma-Plugin/1.0"  # some CDNs reject requests without one
DEFAULT_FETCH_TIMEOUT_MS = 30000
SVG_SUPERSAMPLE = 2

SUPPORTED_CONTENT_TYPES = {"image/png", "image/jpeg", "image/gif"}
SVG_CONTENT_TYPE = "image/svg+xml"
PNG_CONTENT_TYPE = "image/png"

_DATA_URI_RE = re.compile(r"^data:([^;,]+)?((?:;[^;,]*)*?)(;base64)?,(.*)$", re.DOTALL)

INLINE = "inline"
REMOTE = "remote"


@dataclass(frozen=True)
class ResolvedImage:
    data: bytes
    content_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class IngestionFailure:
    """Why an image could not be used.

    kind is one of: invalid_data_uri, invalid_url, invalid_content_type,
    http_status, empty_response, timeout, network_error, transcode_failed.
    """

    kind: str
    reason: str


IngestionOutcome = Union[ResolvedImage, IngestionFailure]


def classify_reference(reference: str) -> str:
    return INLINE if reference.startswith("data:") else REMOTE


def _media_type(header_value: Optional[str]) -> str:
    return (header_value or "").split(";", 1)[0].strip().lower()


def decode_data_uri(uri: str) -> IngestionOutcome:
    """Decode `data:[<mediatype>][;base64],<data>` into raw bytes."""
    match = _DATA_URI_RE.match(uri)
    if not match:
        return IngestionFailure("invalid_data_uri", "Invalid data URI format")

    content_type = _media_type(match.group(1)) or PNG_CONTENT_TYPE
    is_base64 = match.group(3) is not None
    data = match.group(4)

    if not content_type.startswith("image/"):
        return IngestionFailure("invalid_content_type", f"Invalid content type in data URI: {content_type}")

    try:
        if is_base64:
            raw = base64.b64decode(data, validate=False)
        else:
            raw = unquote_to_bytes(data)
    except (binascii.Error, ValueError):
        return IngestionFailure("invalid_data_uri", "Failed to decode data URI")

    if not raw:
        return IngestionFailure("empty_response", "Data URI contains no image data")
    return ResolvedImage(raw, content_type)


def _rasterize_svg(data: bytes, width: int, height: int) -> bytes:
    # Lazy import: cairosvg loads the native cairo library at import time
    import cairosvg

    return cairosvg.svg2png(bytestring=data, output_width=width, output_height=height)


def _reencode_as_png(data: bytes) -> bytes:
    with Image.open(io.BytesIO(data)) as image:
        buffer = io.BytesIO()
        if image.mode in ("RGB", "RGBA", "L", "LA", "P"):
            image.save(buffer, format="PNG")
        else:
            with image.convert("RGBA") as converted:
                converted.save(buffer, format="PNG")
        return buffer.getvalue()


class ImageIngestor:
    """
    Resolves image references (HTTP(S) URLs or data URIs) for CREATE_IMAGE.

    Args:
        user_agent: Value of the User-Agent header for remote fetches
        transport: Optional httpx transport, used to fake the network in tests
    """

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.user_agent = user_agent
        self.transport = transport

    async def ingest(
        self,
        reference: str,
        width: float,
        height: float,
        timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS,
    ) -> IngestionOutcome:
        if classify_reference(reference) == INLINE:
            resolved = decode_data_uri(reference)
        else:
            resolved = await self.fetch(reference, timeout_ms)
        if isinstance(resolved, IngestionFailure):
            logger.warning(f"🖼️ Image ingestion failed ({resolved.kind}): {resolved.reason}")
            return resolved

        normalized = await self.normalize(resolved, width, height, source_hint=reference)
        if isinstance(normalized, IngestionFailure):
            logger.warning(f"🖼️ Image normalization failed: {normalized.reason}")
        return normalized

    async def fetch(self, url: str, timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS) -> IngestionOutcome:
        """Fetch a remote image, following redirects."""
        logger.info(f"🌐 Fetching image: {url[:120]}")
        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=timeout_ms / 1000,
                headers={"User-Agent": self.user_agent},
                transport=self.transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            return IngestionFailure("timeout", "Request timed out")
        except httpx.InvalidURL as e:
            return IngestionFailure("invalid_url", str(e) or "Invalid URL")
        except httpx.HTTPError as e:
            return IngestionFailure("network_error", str(e) or e.__class__.__name__)

        if not response.is_success:
            return IngestionFailure("http_status", f"HTTP {response.status_code}: {response.reason_phrase}")

        content_type = _media_type(response.headers.get("content-type"))
        if not content_type.startswith("image/"):
            return IngestionFailure("invalid_content_type", f"Invalid content type: {content_type}")

        if not response.content:
            return IngestionFailure("empty_response", "Empty image response")

        logger.debug(f"🌐 Fetched {len(response.content)} bytes ({content_type}) from {response.url}")
        return ResolvedImage(response.content, content_type)

    async def normalize(self, image: ResolvedImage, width: float, height: float, source_hint: str = "") -> IngestionOutcome:
        """Convert to a format Figma accepts as an image fill."""
        hint = source_hint.lower() if not source_hint.startswith("data:") else ""
        content_type = image.content_type

        if content_type == SVG_CONTENT_TYPE or hint.endswith(".svg"):
            target_width = max(1, int(round(width * SVG_SUPERSAMPLE)))
            target_height = max(1, int(round(height * SVG_SUPERSAMPLE)))
            try:
                png = await asyncio.to_thread(_rasterize_svg, image.data, target_width, target_height)
            except Exception as e:
                return IngestionFailure("transcode_failed", f"Failed to convert SVG to PNG: {e}")
            logger.info(f"🎨 Rasterized SVG at {target_width}x{target_height}")
            return ResolvedImage(png, PNG_CONTENT_TYPE)

        if content_type in SUPPORTED_CONTENT_TYPES and not hint.endswith(".webp"):
            return image

        try:
            png = await asyncio.to_thread(_reencode_as_png, image.data)
        except Exception as e:
            return IngestionFailure("transcode_failed", f"Failed to convert {content_type} to PNG: {e}")
        logger.info(f"🎨 Re-encoded {content_type} as PNG")
        return ResolvedImage(png, PNG_CONTENT_TYPE)
