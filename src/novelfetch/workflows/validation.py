"""Request validation run before any network activity."""

from __future__ import annotations

from typing import Any, List, Mapping, Sequence
from urllib.parse import urlparse

from ..core.keys import K_TITLE, K_URL
from .fetcher_config import BLOCKED_SOURCE_DOMAINS
from .fetcher_utils import idna_normalize


class MalformedRequest(ValueError):
    """The request is missing fields or names a target that is never crawled."""


def _is_blocked_source(host: str) -> bool:
    return any(host == domain or host.endswith("." + domain) for domain in BLOCKED_SOURCE_DOMAINS)


def validate_novel_url(url: Any) -> str:
    if not isinstance(url, str) or not url.strip():
        raise MalformedRequest("URL is required")
    candidate = url.strip()
    try:
        parsed = urlparse(candidate)
        host = parsed.hostname
    except ValueError as exc:
        raise MalformedRequest("Invalid URL format. Please include http:// or https://") from exc
    if not parsed.scheme or not host:
        raise MalformedRequest("Invalid URL format. Please include http:// or https://")
    if parsed.scheme.lower() not in ("http", "https"):
        raise MalformedRequest("URL must use HTTP or HTTPS protocol")
    if _is_blocked_source(idna_normalize(host)):
        raise MalformedRequest("Social media and search engine URLs are not supported.")
    return candidate


def validate_crawl_request(url: Any, job_id: Any) -> str:
    """Return the cleaned start URL, or raise MalformedRequest."""

    if not isinstance(job_id, str) or not job_id.strip():
        raise MalformedRequest("jobId is required for session tracking")
    return validate_novel_url(url)


def validate_batch_request(chapters: Any) -> List[Mapping[str, Any]]:
    """Check the chapter list shape: a list of objects each carrying a ``url`` string."""

    if not isinstance(chapters, Sequence) or isinstance(chapters, (str, bytes)):
        raise MalformedRequest("chapters array is required")
    checked: List[Mapping[str, Any]] = []
    for index, item in enumerate(chapters):
        if not isinstance(item, Mapping):
            raise MalformedRequest(f"chapters[{index}] must be an object")
        url = item.get(K_URL)
        if not isinstance(url, str) or not url.strip():
            raise MalformedRequest(f"chapters[{index}] is missing a url")
        title = item.get(K_TITLE)
        if title is not None and not isinstance(title, str):
            raise MalformedRequest(f"chapters[{index}] has a non-string title")
        checked.append(item)
    return checked


__all__ = ["MalformedRequest", "validate_batch_request", "validate_crawl_request", "validate_novel_url"]
