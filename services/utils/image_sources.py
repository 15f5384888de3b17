"""
Resolve screenshot references to raw image bytes.

Screenshots reach the differ as raw bytes, base64 strings, data URLs or
links to the storage bucket.
"""
import base64
import binascii
import logging
from typing import Optional, Union

import aiohttp

from ..errors import ImageDecodeError

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str]

FETCH_TIMEOUT_SECONDS = 30
USER_AGENT = "Mozilla/5.0 (compatible; PageAuditBot/1.0)"


def decode_base64_image(value: str) -> bytes:
    """Decode a base64 string or a data URL into bytes."""
    payload = value.strip()
    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        if ";base64" not in header:
            raise ImageDecodeError("Only base64 data URLs are supported")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Invalid base64 image data: {e}") from e
    if not data:
        raise ImageDecodeError("Image data is empty")
    return data


async def fetch_image(
    url: str, session: Optional[aiohttp.ClientSession] = None, timeout: float = FETCH_TIMEOUT_SECONDS
) -> bytes:
    """Download an image. Non-200 responses and network errors raise ImageDecodeError."""
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"User-Agent": USER_AGENT},
        )
    try:
        async with session.get(url) as response:
            if response.status != 200:
                raise ImageDecodeError(f"Fetching {url} returned HTTP {response.status}")
            return await response.read()
    except aiohttp.ClientError as e:
        logger.warning(f"Error fetching image {url}: {e}")
        raise ImageDecodeError(f"Could not fetch image {url}: {e}") from e
    finally:
        if owns_session:
            await session.close()


async def load_image_bytes(
    source: Optional[ImageSource], session: Optional[aiohttp.ClientSession] = None
) -> bytes:
    """
    Normalize a screenshot reference to encoded image bytes.

    Args:
        source: Raw bytes, a base64 string, a data URL or an http(s) URL
        session: Optional shared aiohttp session for remote fetches

    Raises:
        ImageDecodeError: if the source is empty or cannot be resolved
    """
    if source is None:
        raise ImageDecodeError("No image provided")
    if isinstance(source, (bytes, bytearray)):
        if not source:
            raise ImageDecodeError("Image data is empty")
        return bytes(source)

    value = source.strip()
    if not value:
        raise ImageDecodeError("Image data is empty")
    if value.startswith(("http://", "https://")):
        return await fetch_image(value, session=session)
    return decode_base64_image(value)
