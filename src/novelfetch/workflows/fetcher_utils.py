"""Shared helper functions used by the crawl and download workflows."""

from __future__ import annotations

import os
import random
from typing import Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlparse

from .fetcher_config import (
    DEFAULT_ACCEPT,
    HDR_USER_AGENT,
    MAX_TOC_PAGES,
    POLITENESS_DELAY_MIN,
    USER_AGENT_POOL,
    FetchConfig,
)


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except Exception:
        pass
    return h


def chapter_key(url: str) -> str:
    """Identity key for a URL: fragment dropped and one trailing slash stripped."""

    raw = (url or "").strip().split("#", 1)[0]
    if raw.endswith("/"):
        raw = raw[:-1]
    return raw


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def resolve_link(href: Optional[str], base_url: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; None unless the result is http(s)."""

    candidate = (href or "").strip()
    if not candidate:
        return None
    try:
        absolute = urljoin(base_url, candidate)
    except ValueError:
        return None
    return absolute if is_http_url(absolute) else None


def resolve_asset_url(url: Optional[str], base_url: str) -> Optional[str]:
    """Resolve an asset reference, leaving ``data:`` URIs and unparseable input untouched."""

    if not url or url.startswith("data:"):
        return url
    try:
        return urljoin(base_url, url)
    except ValueError:
        return url


def pick_user_agent(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(USER_AGENT_POOL)


def build_headers(user_agent: str, config: FetchConfig) -> Dict[str, str]:
    """Browser-like header set sent with every crawl request."""

    return {
        HDR_USER_AGENT: user_agent,
        "Accept": DEFAULT_ACCEPT,
        "Accept-Language": config.accept_language,
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
        "Referer": config.referer,
    }


def dedupe_preserving_order(urls: Sequence[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for url in urls:
        key = chapter_key(url)
        if key in seen:
            continue
        seen.add(key)
        out.append(url)
    return out


def collect_environment_warnings(config: Optional[FetchConfig] = None) -> List[Dict[str, str]]:
    """Return configuration smells worth surfacing in ``doctor`` output."""

    cfg = config or FetchConfig()
    warnings: List[Dict[str, str]] = []
    if cfg.politeness_max < POLITENESS_DELAY_MIN:
        warnings.append(
            {
                "code": "politeness_delay_low",
                "message": f"TOC politeness delay tops out at {cfg.politeness_max}s",
                "remedy": "Raise NOVELFETCH_POLITENESS_MAX to avoid hammering publisher sites.",
            }
        )
    if cfg.max_toc_pages > MAX_TOC_PAGES:
        warnings.append(
            {
                "code": "toc_page_cap_high",
                "message": f"TOC page cap is {cfg.max_toc_pages}",
                "remedy": f"Keep NOVELFETCH_MAX_TOC_PAGES at or below {MAX_TOC_PAGES}.",
            }
        )
    if cfg.max_attempts <= 1:
        warnings.append(
            {
                "code": "retries_disabled",
                "message": "Fetch retries are disabled",
                "remedy": "Set NOVELFETCH_MAX_ATTEMPTS to 2 or more for flaky sites.",
            }
        )
    if os.getenv("NOVELFETCH_USER_AGENT"):
        warnings.append(
            {
                "code": "user_agent_pinned",
                "message": "A fixed User-Agent is pinned for every session",
                "remedy": "Unset NOVELFETCH_USER_AGENT to rotate identities per session.",
            }
        )
    return warnings


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM") == "example.com"
    assert chapter_key("https://example.com/c/1/#top") == "https://example.com/c/1"
    assert resolve_link("javascript:void(0)", "https://example.com/") is None
    assert resolve_link("/c/2", "https://example.com/toc") == "https://example.com/c/2"


sanity_check()

__all__ = [
    "build_headers",
    "chapter_key",
    "collect_environment_warnings",
    "dedupe_preserving_order",
    "idna_normalize",
    "is_http_url",
    "pick_user_agent",
    "resolve_asset_url",
    "resolve_link",
    "sanity_check",
]
