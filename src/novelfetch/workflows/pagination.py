"""Locate the "next page" link of a paginated table of contents."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

from .fetcher_config import ACTIVE_PAGE_SELECTORS, ACTIVE_SIBLING_DEPTH, NEXT_PAGE_TOKENS
from .fetcher_utils import resolve_link
from .html_normalize import collapse_whitespace

logger = logging.getLogger(__name__)


def _rel_values(tag: Tag) -> Iterable[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return (value.lower() for value in rel)


def _navigable_href(anchor: Tag) -> Optional[str]:
    href = (anchor.get("href") or "").strip()
    if not href or href.startswith("#") or href.lower().startswith("javascript"):
        return None
    return href


def _from_rel_next(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for tag in soup.find_all(["link", "a"], href=True):
        if "next" in _rel_values(tag):
            url = resolve_link(tag.get("href"), base_url)
            if url:
                return url
    return None


def _from_active_marker(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    marker = None
    for selector in ACTIVE_PAGE_SELECTORS:
        marker = soup.select_one(selector)
        if marker is not None:
            break
    if marker is None:
        return None
    for sibling in marker.find_next_siblings(limit=ACTIVE_SIBLING_DEPTH):
        anchor = sibling if sibling.name == "a" else sibling.find("a")
        if anchor is None or not anchor.get("href"):
            continue
        url = resolve_link(anchor.get("href"), base_url)
        if url:
            return url
    return None


def _from_next_text(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for anchor in soup.find_all("a", href=True):
        href = _navigable_href(anchor)
        if href is None:
            continue
        text = collapse_whitespace(anchor.get_text(" ")).lower()
        title = collapse_whitespace(anchor.get("title")).lower()
        if text in NEXT_PAGE_TOKENS or title in NEXT_PAGE_TOKENS:
            url = resolve_link(href, base_url)
            if url:
                return url
    return None


def _from_next_class(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for anchor in soup.find_all("a", href=True):
        href = _navigable_href(anchor)
        if href is None:
            continue
        classes = anchor.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        joined = " ".join(classes).lower()
        if ("next" in joined or "forward" in joined) and "prev" not in joined and "breadcrumb" not in joined:
            url = resolve_link(href, base_url)
            if url:
                return url
    return None


_STRATEGIES = (
    ("rel-next", _from_rel_next),
    ("active-marker", _from_active_marker),
    ("next-text", _from_next_text),
    ("next-class", _from_next_class),
)


def find_next_page(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """Return the absolute URL of the next TOC page, or None on the last page."""

    for name, strategy in _STRATEGIES:
        url = strategy(soup, base_url)
        if url:
            logger.debug("Next page via %s: %s", name, url)
            return url
    return None


__all__ = ["find_next_page"]
