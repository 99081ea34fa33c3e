from __future__ import annotations

import base64
import binascii
from typing import Optional, Tuple

import httpx

DEFAULT_MIME = "image/jpeg"


class ImageFetchError(RuntimeError):
    pass


def is_data_url(value: str) -> bool:
    return (value or "").startswith("data:")


def is_remote_url(value: str) -> bool:
    v = value or ""
    return v.startswith("http://") or v.startswith("https://")


def mime_from_data_url(data_url: str, default: str = DEFAULT_MIME) -> str:
    if not is_data_url(data_url):
        return default
    header = data_url.split(",", 1)[0]
    mime = header[len("data:"):].split(";", 1)[0].strip()
    return mime or default


def split_data_url(data_url: str) -> Tuple[str, str]:
    """data:image/png;base64,AAAA -> ("image/png", "AAAA"). Bare base64 is accepted."""
    if "," in data_url:
        return mime_from_data_url(data_url), data_url.split(",", 1)[1]
    return DEFAULT_MIME, data_url


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    mime, payload = split_data_url(data_url)
    try:
        return base64.b64decode(payload, validate=False), mime
    except (binascii.Error, ValueError) as e:
        raise ImageFetchError(f"invalid base64 image: {e}") from e


def to_data_url(data: bytes, content_type: str) -> str:
    ct = (content_type or DEFAULT_MIME).split(";", 1)[0].strip() or DEFAULT_MIME
    return f"data:{ct};base64,{base64.b64encode(data).decode('ascii')}"


async def fetch_bytes(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> Tuple[bytes, str]:
    """GET a remote image. Returns (bytes, content_type)."""
    try:
        if client is not None:
            r = await client.get(url, timeout=timeout, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as c:
                r = await c.get(url)
    except httpx.HTTPError as e:
        raise ImageFetchError(f"Failed to fetch image from URL: {e}") from e

    if r.status_code >= 400:
        raise ImageFetchError(f"Failed to fetch image from URL: HTTP {r.status_code}")
    return r.content, (r.headers.get("content-type") or DEFAULT_MIME)


async def load_image_bytes(
    image: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Tuple[bytes, str]:
    """Bytes of a data URL or remote URL."""
    if is_remote_url(image):
        return await fetch_bytes(image, client=client)
    return decode_data_url(image)


async def ensure_data_url(
    image: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    if is_remote_url(image):
        data, ct = await fetch_bytes(image, client=client)
        return to_data_url(data, ct)
    return image
