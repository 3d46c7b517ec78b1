"""Find the chapter-link list on a table-of-contents page with unknown markup.

Anchors that look like chapter links are grouped by a structural signature
(parent tag and classes plus the anchor tag). Real chapter lists are long runs
of siblings sharing one signature, so the best-scoring group wins; when no
group is convincing the keyword-matching anchors are used as they are.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from .fetcher_config import (
    CHAPTER_TEXT_RE,
    CHAPTER_URL_RE,
    DEFAULT_CHAPTER_TITLE,
    DIGIT_WEIGHT,
    DIGITS_ONLY_RE,
    KEYWORD_WEIGHT,
    LEADING_NUMBER_RE,
    MAX_LINK_TEXT_CHARS,
    MIN_LINK_TEXT_CHARS,
    MIN_NUMERIC_HREF_CHARS,
    NON_CHAPTER_URL_RE,
    SKIP_HREF_PREFIXES,
    SMALL_CLUSTER_PENALTY,
    SMALL_CLUSTER_SIZE,
)
from .fetcher_utils import chapter_key, resolve_link
from .html_normalize import collapse_whitespace


@dataclass
class ChapterRef:
    title: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "url": self.url}


@dataclass
class _Candidate:
    text: str
    url: str
    keyword: bool


@dataclass
class LinkCluster:
    signature: str
    links: List[_Candidate] = field(default_factory=list)

    @property
    def score(self) -> int:
        count = len(self.links)
        keyword_hits = sum(1 for link in self.links if link.keyword)
        digit_hits = sum(1 for link in self.links if any(ch.isdigit() for ch in link.text))
        score = count + KEYWORD_WEIGHT * keyword_hits + DIGIT_WEIGHT * digit_hits
        if count < SMALL_CLUSTER_SIZE:
            score -= SMALL_CLUSTER_PENALTY
        return score


class ChapterManifest:
    """Ordered chapter list for one job, deduplicated by normalized URL."""

    def __init__(self) -> None:
        self._keys: set = set()
        self._chapters: List[ChapterRef] = []

    def extend(self, refs: Iterable[ChapterRef]) -> List[ChapterRef]:
        """Append unseen chapters and return the ones that were new."""

        added: List[ChapterRef] = []
        for ref in refs:
            key = chapter_key(ref.url)
            if key in self._keys:
                continue
            self._keys.add(key)
            self._chapters.append(ref)
            added.append(ref)
        return added

    @property
    def chapters(self) -> List[ChapterRef]:
        return list(self._chapters)

    def __len__(self) -> int:
        return len(self._chapters)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and chapter_key(url) in self._keys


def _structural_signature(anchor: Tag) -> str:
    parent = anchor.parent
    if not isinstance(parent, Tag):
        return f"root > {anchor.name}"
    classes = parent.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    prefix = parent.name + ("." + ".".join(classes) if classes else "")
    return f"{prefix} > {anchor.name}"


def _denylisted(absolute: str, base_host: str) -> bool:
    parsed = urlparse(absolute)
    target = parsed.path + ("?" + parsed.query if parsed.query else "")
    if parsed.netloc.lower() != base_host:
        target = parsed.netloc + target
    return bool(NON_CHAPTER_URL_RE.search(target))


def _candidate_for(anchor: Tag, base_url: str, base_host: str) -> Optional[_Candidate]:
    href = (anchor.get("href") or "").strip()
    if not href or href.lower().startswith(SKIP_HREF_PREFIXES):
        return None
    text = collapse_whitespace(anchor.get_text(" "))
    if len(text) > MAX_LINK_TEXT_CHARS:
        return None
    numeric = bool(DIGITS_ONLY_RE.match(text))
    if len(text) < MIN_LINK_TEXT_CHARS and not numeric:
        return None
    absolute = resolve_link(href, base_url)
    if absolute is None or _denylisted(absolute, base_host):
        return None
    keyword = bool(CHAPTER_TEXT_RE.search(text))
    if (
        keyword
        or CHAPTER_URL_RE.search(absolute)
        or (numeric and len(href) > MIN_NUMERIC_HREF_CHARS)
        or LEADING_NUMBER_RE.match(text)
    ):
        return _Candidate(text=text, url=absolute, keyword=keyword)
    return None


def cluster_links(candidates: Iterable[_Candidate], anchors: Iterable[Tag]) -> List[LinkCluster]:
    clusters: Dict[str, LinkCluster] = {}
    for candidate, anchor in zip(candidates, anchors):
        signature = _structural_signature(anchor)
        clusters.setdefault(signature, LinkCluster(signature)).links.append(candidate)
    return list(clusters.values())


def mine_chapter_list(soup: BeautifulSoup, base_url: str) -> List[ChapterRef]:
    """Return the page's chapter links in document order, deduplicated by URL."""

    base_host = urlparse(base_url).netloc.lower()
    candidates: List[_Candidate] = []
    anchors: List[Tag] = []
    for anchor in soup.find_all("a", href=True):
        candidate = _candidate_for(anchor, base_url, base_host)
        if candidate is not None:
            candidates.append(candidate)
            anchors.append(anchor)
    if not candidates:
        return []

    best: Optional[LinkCluster] = None
    best_score = 0
    for cluster in cluster_links(candidates, anchors):
        score = cluster.score
        if best is None or score > best_score:
            best, best_score = cluster, score

    keyword_links = [c for c in candidates if c.keyword]
    if best is not None and (best_score >= 0 or not keyword_links):
        chosen = best.links
    else:
        chosen = keyword_links

    manifest = ChapterManifest()
    return manifest.extend(
        ChapterRef(title=c.text or DEFAULT_CHAPTER_TITLE, url=c.url) for c in chosen
    )


__all__ = ["ChapterManifest", "ChapterRef", "LinkCluster", "cluster_links", "mine_chapter_list"]
