"""Novel-level metadata (title, author, cover, description) from the first TOC page."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from .fetcher_config import (
    AUTHOR_PREFIX_RE,
    AUTHOR_SCAN_TAGS,
    COVER_SELECTORS,
    SUMMARY_SELECTORS,
    TITLE_SPLIT_RE,
    UNKNOWN_AUTHOR,
    UNKNOWN_TITLE,
)
from .fetcher_utils import resolve_asset_url
from .html_normalize import collapse_whitespace, minimal_text_fix

logger = logging.getLogger(__name__)


@dataclass
class NovelMetadata:
    title: str = UNKNOWN_TITLE
    author: str = UNKNOWN_AUTHOR
    cover: Optional[str] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "cover": self.cover,
            "description": self.description,
        }


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return collapse_whitespace(tag.get("content"))


def _clean(text: str) -> str:
    return collapse_whitespace(minimal_text_fix(text))


def _title(soup: BeautifulSoup) -> str:
    title = _meta_content(soup, property="og:title")
    if not title and soup.title is not None:
        title = TITLE_SPLIT_RE.split(soup.title.get_text(), maxsplit=1)[0]
    return _clean(title) or UNKNOWN_TITLE


def _cover(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    src = _meta_content(soup, property="og:image")
    if not src:
        img = soup.select_one(COVER_SELECTORS)
        if img is not None:
            src = (img.get("src") or "").strip()
    return resolve_asset_url(src, base_url) if src else None


def _description(soup: BeautifulSoup) -> str:
    text = _meta_content(soup, name="description") or _meta_content(soup, property="og:description")
    if not text:
        node = soup.select_one(SUMMARY_SELECTORS)
        if node is not None:
            text = node.get_text(" ")
    return _clean(text)


def _author(soup: BeautifulSoup) -> str:
    author = ""
    # Last match wins: the innermost element carrying the label.
    for node in soup.find_all(list(AUTHOR_SCAN_TAGS)):
        text = collapse_whitespace(node.get_text(" "))
        match = AUTHOR_PREFIX_RE.match(text)
        if match:
            candidate = text[match.end():].strip()
            if candidate:
                author = candidate
    return _clean(author) or UNKNOWN_AUTHOR


def extract_metadata(soup: BeautifulSoup, base_url: str) -> NovelMetadata:
    """Extract novel metadata; any field that cannot be determined keeps its default."""

    metadata = NovelMetadata()
    for name, extractor in (
        ("title", lambda: _title(soup)),
        ("cover", lambda: _cover(soup, base_url)),
        ("description", lambda: _description(soup)),
        ("author", lambda: _author(soup)),
    ):
        try:
            setattr(metadata, name, extractor())
        except Exception as exc:
            logger.warning("Metadata field %s failed for %s: %s", name, base_url, exc)
    return metadata


__all__ = ["NovelMetadata", "extract_metadata"]
