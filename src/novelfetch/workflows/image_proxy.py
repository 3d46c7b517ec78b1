"""Fetch remote images on behalf of the reader without exposing internal networks.

Each hop is resolved and validated once, then requested through a connector
pinned to that validated address. Redirects are never followed by aiohttp;
they are followed here so every new host goes through the guard again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp

from .fetcher_config import (
    HDR_USER_AGENT,
    IMAGE_PROXY_DEFAULT_CONTENT_TYPE,
    IMAGE_PROXY_MAX_BYTES,
    IMAGE_PROXY_MAX_REDIRECTS,
    IMAGE_PROXY_TIMEOUT_SECONDS,
    IMAGE_PROXY_USER_AGENT,
)
from .net_guard import PinnedResolver, resolve_and_validate

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class ImageProxyError(Exception):
    """The image could not be fetched."""


class UnsupportedImageURL(ImageProxyError, ValueError):
    """Missing URL, or a scheme other than http/https."""


class PayloadTooLarge(ImageProxyError):
    """The image exceeds the proxy's size limit."""


@dataclass
class ProxiedImage:
    content: bytes
    content_type: str
    url: str


def _check_url(url: str) -> Tuple[str, int]:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise UnsupportedImageURL(f"Unsupported image URL: {url!r}")
    try:
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
    except ValueError as exc:
        raise UnsupportedImageURL(f"Invalid port in {url!r}") from exc
    return parsed.hostname, port


async def _request_pinned(
    url: str,
    host: str,
    address: str,
    family: int,
    max_bytes: int,
    timeout: float,
) -> Tuple[int, Optional[str], str, bytes]:
    connector = aiohttp.TCPConnector(resolver=PinnedResolver(host, address, family), use_dns_cache=False)
    async with aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout),
    ) as session:
        async with session.get(
            url,
            allow_redirects=False,
            headers={HDR_USER_AGENT: IMAGE_PROXY_USER_AGENT},
        ) as resp:
            if resp.content_length is not None and resp.content_length > max_bytes:
                raise PayloadTooLarge(f"Declared size {resp.content_length} exceeds {max_bytes} bytes")
            location = resp.headers.get("Location")
            content_type = resp.headers.get("Content-Type") or IMAGE_PROXY_DEFAULT_CONTENT_TYPE
            if 300 <= resp.status < 400:
                return resp.status, location, content_type, b""
            body = bytearray()
            async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
                body.extend(chunk)
                if len(body) > max_bytes:
                    raise PayloadTooLarge(f"Body exceeds {max_bytes} bytes")
            return resp.status, location, content_type, bytes(body)


async def fetch_image(
    url: str,
    *,
    max_bytes: int = IMAGE_PROXY_MAX_BYTES,
    max_redirects: int = IMAGE_PROXY_MAX_REDIRECTS,
    timeout: float = IMAGE_PROXY_TIMEOUT_SECONDS,
) -> ProxiedImage:
    """Fetch ``url`` (following at most ``max_redirects`` hops) and return the image.

    Raises UnsupportedImageURL for bad input, PayloadTooLarge for oversize
    images, BlockedAddress when any hop resolves to a private network and
    ImageProxyError for other upstream failures.
    """

    current = url
    for _ in range(max_redirects + 1):
        host, port = _check_url(current)
        address, family = await resolve_and_validate(host, port)
        status, location, content_type, body = await _request_pinned(
            current, host, address, family, max_bytes, timeout
        )
        if 300 <= status < 400:
            if not location:
                raise ImageProxyError("Redirect without location header")
            current = urljoin(current, location)
            logger.debug("Image redirect to %s", current)
            continue
        if not 200 <= status < 300:
            raise ImageProxyError(f"Upstream returned HTTP {status}")
        return ProxiedImage(content=body, content_type=content_type, url=current)
    raise ImageProxyError("Too many redirects")


__all__ = [
    "ImageProxyError",
    "PayloadTooLarge",
    "ProxiedImage",
    "UnsupportedImageURL",
    "fetch_image",
]
