"""Chapter content extraction: isolate the readable text of a chapter page.

The pipeline is heuristic and never raises to callers. Junk is stripped first,
then the content node is chosen (known selectors, then a text-density scan,
then ``<body>``), cleaned, and serialized as a strict-XML fragment. Anything
that leaves nothing readable degrades to a fixed placeholder fragment.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup, Comment, Tag

from .fetcher_config import (
    BOILERPLATE_MAX_CHARS,
    BOILERPLATE_PATTERNS,
    BOILERPLATE_SCAN_TAGS,
    CONTENT_WRAPPER_CLASS,
    DENSITY_CONTAINER_TAGS,
    DENSITY_MIN_TEXT,
    HIDDEN_STYLE_RE,
    HIGH_PRIORITY_SELECTORS,
    IMAGE_STRIP_ATTRS,
    JUNK_SELECTORS,
    KEEP_EMPTY_TAGS,
    LAZY_IMAGE_ATTRS,
    LINK_STRIP_ATTRS,
    MAX_LINK_TEXT_RATIO,
    NESTED_DIV_PENALTY,
    NO_CONTENT_TEXT,
    PARAGRAPH_WEIGHT,
    PLACEHOLDER_SRC_HINTS,
    PRIORITY_MIN_TEXT,
    TEXT_LENGTH_WEIGHT,
)
from .fetcher_utils import resolve_asset_url
from .html_normalize import is_safe_xml_attribute, is_valid_xml_name, serialize_node

logger = logging.getLogger(__name__)

_TAG_LIKE_RE = re.compile(r"<[a-zA-Z!/]")
# Elements holding any of these are never "empty".
_CONTENT_BEARING_TAGS = ["img", "hr"]

PLACEHOLDER_CONTENT = f'<div class="{CONTENT_WRAPPER_CLASS}"><p>{NO_CONTENT_TEXT}</p></div>'


class ExtractionEmpty(Exception):
    """Nothing readable survived extraction."""


@dataclass
class ExtractionCandidate:
    node: Tag
    text_len: int
    link_ratio: float
    paragraphs: int
    nested_divs: int
    score: float


def _text_len(node: Tag) -> int:
    return len(node.get_text().strip())


def _strip_junk(soup: BeautifulSoup) -> None:
    for selector in JUNK_SELECTORS:
        for node in soup.select(selector):
            if not node.decomposed:
                node.decompose()
    for node in soup.find_all(style=HIDDEN_STYLE_RE):
        if not node.decomposed:
            node.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()


def score_candidate(node: Tag) -> Optional[ExtractionCandidate]:
    """Score ``node`` for text density; None for short nodes and link farms."""

    text_len = _text_len(node)
    if text_len < DENSITY_MIN_TEXT:
        return None
    link_len = sum(_text_len(a) for a in node.find_all("a"))
    link_ratio = link_len / text_len
    if link_ratio > MAX_LINK_TEXT_RATIO:
        return None
    paragraphs = len(node.find_all("p"))
    nested_divs = len(node.find_all("div"))
    score = PARAGRAPH_WEIGHT * paragraphs + TEXT_LENGTH_WEIGHT * text_len - NESTED_DIV_PENALTY * nested_divs
    return ExtractionCandidate(node, text_len, link_ratio, paragraphs, nested_divs, score)


def _select_content_node(soup: BeautifulSoup) -> Tag:
    for selector in HIGH_PRIORITY_SELECTORS:
        node = soup.select_one(selector)
        if node is not None and _text_len(node) > PRIORITY_MIN_TEXT:
            logger.debug("Content node via selector %s", selector)
            return node

    best: Optional[ExtractionCandidate] = None
    for node in soup.find_all(list(DENSITY_CONTAINER_TAGS)):
        candidate = score_candidate(node)
        if candidate is not None and (best is None or candidate.score > best.score):
            best = candidate
    if best is not None:
        logger.debug("Content node via density scan (score %.1f)", best.score)
        return best.node

    if soup.body is None:
        raise ExtractionEmpty("document has no body")
    return soup.body


def _strip_unsafe_attrs(tag: Tag) -> None:
    for name in list(tag.attrs):
        if name.lower().startswith("on") or not is_safe_xml_attribute(name):
            del tag[name]


def _fix_images(node: Tag, base_url: str) -> None:
    for img in node.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src or src.startswith("data:") or any(hint in src.lower() for hint in PLACEHOLDER_SRC_HINTS):
            for attr in LAZY_IMAGE_ATTRS:
                lazy = (img.get(attr) or "").strip()
                if lazy:
                    src = lazy
                    break
        if src:
            img["src"] = resolve_asset_url(src, base_url)
        for attr in IMAGE_STRIP_ATTRS:
            del img[attr]
        if not img.get("alt"):
            img["alt"] = "Image"


def _fix_links(node: Tag, base_url: str) -> None:
    for anchor in node.find_all("a"):
        href = (anchor.get("href") or "").strip()
        if href:
            anchor["href"] = resolve_asset_url(href, base_url)
        for attr in LINK_STRIP_ATTRS:
            del anchor[attr]


def _is_boilerplate(text: str) -> bool:
    return 0 < len(text) < BOILERPLATE_MAX_CHARS and any(p.search(text) for p in BOILERPLATE_PATTERNS)


def _clean_node(node: Tag, base_url: str) -> None:
    _fix_images(node, base_url)
    _fix_links(node, base_url)
    for tag in [node] + node.find_all(True):
        _strip_unsafe_attrs(tag)
        # Prefixed names such as o:p have no namespace binding in the fragment.
        if tag is not node and not is_valid_xml_name(tag.name):
            tag.unwrap()

    for el in node.find_all(list(BOILERPLATE_SCAN_TAGS)):
        if not el.decomposed and _is_boilerplate(el.get_text().strip()):
            el.decompose()

    for div in node.find_all("div"):
        if div.find(True) is None and div.get_text().strip():
            div.name = "p"
            div.attrs = {}

    # Deepest first, so a parent emptied by its children's removal goes too.
    elements: List[Tag] = node.find_all(True)
    for el in reversed(elements):
        if el.decomposed or el.name in KEEP_EMPTY_TAGS:
            continue
        if el.find(_CONTENT_BEARING_TAGS) is not None:
            continue
        if not el.get_text().strip():
            el.decompose()

    if not node.get_text().strip() and node.find(_CONTENT_BEARING_TAGS) is None:
        raise ExtractionEmpty("content node is empty after cleaning")


def _extract(html: str, base_url: str) -> str:
    if not html or not _TAG_LIKE_RE.search(html):
        raise ExtractionEmpty("input has no markup")
    soup = BeautifulSoup(html, "lxml")
    _strip_junk(soup)
    node = _select_content_node(soup)
    _clean_node(node, base_url)
    return f'<div class="{CONTENT_WRAPPER_CLASS}">{serialize_node(node)}</div>'


def extract_chapter_content(html: str, base_url: str) -> str:
    """Return the chapter's readable content as one strict-XML ``div`` fragment."""

    try:
        return _extract(html, base_url)
    except ExtractionEmpty as exc:
        logger.debug("No content extracted from %s: %s", base_url, exc)
        return PLACEHOLDER_CONTENT


__all__ = [
    "ExtractionCandidate",
    "ExtractionEmpty",
    "PLACEHOLDER_CONTENT",
    "extract_chapter_content",
    "score_candidate",
]
