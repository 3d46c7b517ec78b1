from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import aiohttp

from .fetcher_config import FetchConfig
from .fetcher_utils import build_headers, is_http_url, pick_user_agent
from .html_normalize import decode_bytes_auto
from .jobs import Cancelled, CancelToken
from .net_guard import BlockedAddress, GuardedResolver, find_blocked_cause, reject_private_literal

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A page could not be fetched."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class FetchExhausted(FetchError):
    """Every retry attempt for ``url`` failed; ``cause`` is the last failure."""

    def __init__(self, url: str, cause: Optional[BaseException], attempts: int) -> None:
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {cause}", url=url)
        self.cause = cause
        self.attempts = attempts


_RETRYABLE = (aiohttp.ClientError, asyncio.TimeoutError, OSError, FetchError)


class URLFetcher:
    """Async page fetcher with guarded DNS, jittered retries and cooperative cancellation.

    One instance owns one aiohttp session and one User-Agent for its lifetime,
    so a crawl and the batch downloads that follow it can present the same
    identity to the publisher.
    """

    def __init__(self, config: Optional[FetchConfig] = None, user_agent: Optional[str] = None) -> None:
        self.config = config or FetchConfig()
        self.user_agent = user_agent or self.config.user_agent or pick_user_agent()
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "URLFetcher":
        connector = aiohttp.TCPConnector(resolver=GuardedResolver(), use_dns_cache=False)
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            headers=build_headers(self.user_agent, self.config),
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(
        self,
        url: str,
        cancel: Optional[CancelToken] = None,
        attempts: Optional[int] = None,
    ) -> str:
        """Fetch ``url`` and return the decoded body.

        Raises Cancelled as soon as ``cancel`` fires, BlockedAddress without
        retrying, and FetchExhausted once every attempt has failed.
        """

        if not is_http_url(url):
            raise FetchError(f"Unsupported URL: {url}", url=url)
        total = max(1, attempts or self.config.max_attempts)
        last_exc: Optional[BaseException] = None
        for attempt in range(1, total + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                request = self._fetch_once(url)
                if cancel is not None:
                    return await cancel.guard(request)
                return await request
            except (Cancelled, BlockedAddress):
                raise
            except _RETRYABLE as exc:
                blocked = find_blocked_cause(exc)
                if blocked is not None:
                    raise blocked from exc
                last_exc = exc
                logger.debug("Attempt %d/%d for %s failed: %s", attempt, total, url, exc)
                if attempt == total:
                    break
                delay = self.config.backoff_base * attempt + random.uniform(0, self.config.backoff_jitter)
                if cancel is not None:
                    await cancel.sleep(delay)
                else:
                    await asyncio.sleep(delay)
        raise FetchExhausted(url, last_exc, total)

    async def _fetch_once(self, url: str) -> str:
        if self._session is None:
            raise RuntimeError("URLFetcher used outside of 'async with'")
        current = url
        # Redirects are followed here: IP-literal hops bypass the resolver.
        for _ in range(self.config.max_redirects + 1):
            if not is_http_url(current):
                raise FetchError(f"Redirect to unsupported URL: {current}", url=url)
            reject_private_literal(urlparse(current).hostname or "")
            async with self._session.get(current, allow_redirects=False) as resp:
                location = resp.headers.get("Location")
                if 300 <= resp.status < 400 and location:
                    current = urljoin(current, location)
                    continue
                raw = await resp.read()
                if resp.status >= 400:
                    raise FetchError(f"HTTP {resp.status} for {current}", url=url, status=resp.status)
                return decode_bytes_auto(raw, resp.headers)
        raise FetchError(f"Too many redirects for {url}", url=url)


__all__ = ["FetchError", "FetchExhausted", "URLFetcher"]
