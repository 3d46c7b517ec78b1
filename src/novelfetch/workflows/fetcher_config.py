"""Novelfetch defaults (headers, caps, selectors, denylists).

Centralizes static defaults so the crawl and extraction modules have no
embedded magic strings. ``FetchConfig`` carries the tunable subset; callers
can build their own instance (or use ``load_fetch_config``) to override it.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

# Network
REQUEST_TIMEOUT_SECONDS = 30.0
MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 2.0
BACKOFF_JITTER_SECONDS = 1.0
MAX_REDIRECTS = 5
BATCH_CONCURRENCY = 15
BATCH_PROGRESS_EVERY = 10
MAX_TOC_PAGES = 500
POLITENESS_DELAY_MIN = 0.8
POLITENESS_DELAY_MAX = 1.3

# Image proxy
IMAGE_PROXY_MAX_BYTES = 10 * 1024 * 1024
IMAGE_PROXY_MAX_REDIRECTS = 5
IMAGE_PROXY_TIMEOUT_SECONDS = 10.0
IMAGE_PROXY_USER_AGENT = "Mozilla/5.0"
IMAGE_PROXY_DEFAULT_CONTENT_TYPE = "image/jpeg"

# Headers
HDR_USER_AGENT = "User-Agent"
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.5"
DEFAULT_REFERER = "https://google.com/"

USER_AGENT_POOL: Tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4_1) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
)

# Chapter-list mining
CHAPTER_TEXT_RE = re.compile(
    r"(chapter|ch\.|episode|vol|volume|part|prologue|epilogue|side\s*story)\s*(\d+)?",
    re.I,
)
CHAPTER_URL_RE = re.compile(r"(chapter|ch|vol|episode|part)[-_]?\d+", re.I)
LEADING_NUMBER_RE = re.compile(r"^\d+\s+")
DIGITS_ONLY_RE = re.compile(r"^\d+$")
NON_CHAPTER_URL_RE = re.compile(
    r"login|register|forum|search|author|category|tag|comment|feed|facebook|twitter"
    r"|google|share|print|mailto|wp-login|wp-admin|sign-up",
    re.I,
)
SKIP_HREF_PREFIXES = ("#", "javascript", "mailto")
MAX_LINK_TEXT_CHARS = 150
MIN_LINK_TEXT_CHARS = 2
MIN_NUMERIC_HREF_CHARS = 5
SMALL_CLUSTER_SIZE = 5
SMALL_CLUSTER_PENALTY = 10
KEYWORD_WEIGHT = 5
DIGIT_WEIGHT = 1
DEFAULT_CHAPTER_TITLE = "Chapter"

# Pagination
ACTIVE_PAGE_SELECTORS = (
    ".active",
    ".current",
    ".selected",
    "span.page-numbers.current",
    "li.active",
    ".disabled",
)
ACTIVE_SIBLING_DEPTH = 2
NEXT_PAGE_TOKENS = frozenset(
    {
        "next",
        "next page",
        ">",
        "»",
        "next >>",
        "next »",
        "next >",
        "older posts",
        "older entries",
    }
)

# Content extraction
JUNK_SELECTORS = (
    "script", "style", "iframe", "nav", "footer", "header", "form", "svg", "noscript",
    "button", "input", "textarea",
    ".ads", ".advertisement", ".sidebar", ".widget", ".comments", ".comment-section",
    ".disqus", "#disqus_thread", ".share-buttons", ".social-share", ".related-posts",
    ".post-navigation", ".bread-crumb", ".print-only", "#comments", "#sidebar", "#header",
    "#footer", ".breadcrumb", ".paginator", ".pagination", ".hidden", ".popup",
    ".cookie-consent", ".modal", ".nav-links", ".post-meta", ".cat-links", ".tags-links",
    ".author-info", ".entry-meta", ".alignnone", ".sharedaddy", ".google-auto-placed",
    'div[class*="ad-"]', 'div[id*="ad-"]', 'div[class*="banner"]', "aside",
    ".jp-relatedposts", 'div[class*="pop"]', ".flyout", "#toast", ".toast", ".alert",
    ".announcement",
)
HIGH_PRIORITY_SELECTORS = (
    "#chapter-content",
    ".chapter-content",
    ".entry-content",
    ".reading-content",
    ".text-content",
    "#content",
    ".post-content",
    "article.post",
    ".rd-text",
    "#reader-content",
)
BOILERPLATE_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (
        r"read.*at.*(com|net|org|io|me|co)",
        r"please.*read.*at",
        r"translated.*by",
        r"donate.*patreon",
        r"support.*us",
        r"this.*chapter.*upload",
        r"check.*out.*our",
        r"join.*discord",
        r"share.*this",
        r"^prev(ious)?(\s+chapter)?$",
        r"^next(\s+chapter)?$",
        r"^index$",
        r"click.*here.*to.*read",
        r"continue.*reading",
        r"loading.*chapter",
    )
)
HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none", re.I)
DENSITY_CONTAINER_TAGS = ("div", "section", "main", "article", "td")
BOILERPLATE_SCAN_TAGS = ("p", "div", "span", "h1", "h2", "h3", "h4", "h5", "h6", "strong", "em", "b", "i")
KEEP_EMPTY_TAGS = frozenset({"br", "img", "hr"})
LAZY_IMAGE_ATTRS = ("data-src", "data-original", "data-lazy-src")
PLACEHOLDER_SRC_HINTS = ("placeholder", "loading")
IMAGE_STRIP_ATTRS = ("srcset", "sizes", "style", "class", "loading", "width", "height") + LAZY_IMAGE_ATTRS
LINK_STRIP_ATTRS = ("style", "class", "target")
PRIORITY_MIN_TEXT = 300
DENSITY_MIN_TEXT = 200
MAX_LINK_TEXT_RATIO = 0.5
PARAGRAPH_WEIGHT = 20.0
TEXT_LENGTH_WEIGHT = 0.05
NESTED_DIV_PENALTY = 5.0
BOILERPLATE_MAX_CHARS = 150
CONTENT_WRAPPER_CLASS = "chapter-content"
NO_CONTENT_TEXT = "No content extracted."

# Metadata
UNKNOWN_TITLE = "Unknown Novel"
UNKNOWN_AUTHOR = "Unknown"
COVER_SELECTORS = ".book-img img, .cover img, .detail-info img"
SUMMARY_SELECTORS = ".description, .summary, .synopsis"
AUTHOR_SCAN_TAGS = ("div", "span", "p", "li")
AUTHOR_PREFIX_RE = re.compile(r"^(Author|Written by)\s*[:\-]\s*", re.I)
TITLE_SPLIT_RE = re.compile(r"[-|]")

# Request validation
BLOCKED_SOURCE_DOMAINS = (
    "facebook.com",
    "twitter.com",
    "instagram.com",
    "youtube.com",
    "google.com",
    "pinterest.com",
    "linkedin.com",
    "tiktok.com",
)

# Server
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
MAX_REQUEST_BYTES = 50 * 1024 * 1024


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


@dataclass
class FetchConfig:
    """Configuration parameters for crawling and batch downloads."""

    timeout: float = REQUEST_TIMEOUT_SECONDS
    max_attempts: int = MAX_ATTEMPTS
    backoff_base: float = BACKOFF_BASE_SECONDS
    backoff_jitter: float = BACKOFF_JITTER_SECONDS
    max_redirects: int = MAX_REDIRECTS
    batch_concurrency: int = BATCH_CONCURRENCY
    batch_progress_every: int = BATCH_PROGRESS_EVERY
    max_toc_pages: int = MAX_TOC_PAGES
    politeness_min: float = POLITENESS_DELAY_MIN
    politeness_max: float = POLITENESS_DELAY_MAX
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    referer: str = DEFAULT_REFERER
    # Pinned identity; None rotates through USER_AGENT_POOL per session.
    user_agent: Optional[str] = None


def load_fetch_config() -> FetchConfig:
    """Build a FetchConfig from ``NOVELFETCH_*`` environment variables (.env aware)."""

    load_dotenv()
    return FetchConfig(
        timeout=_env_float("NOVELFETCH_TIMEOUT", REQUEST_TIMEOUT_SECONDS),
        max_attempts=max(1, _env_int("NOVELFETCH_MAX_ATTEMPTS", MAX_ATTEMPTS)),
        backoff_base=max(0.0, _env_float("NOVELFETCH_BACKOFF_BASE", BACKOFF_BASE_SECONDS)),
        backoff_jitter=max(0.0, _env_float("NOVELFETCH_BACKOFF_JITTER", BACKOFF_JITTER_SECONDS)),
        max_redirects=max(0, _env_int("NOVELFETCH_MAX_REDIRECTS", MAX_REDIRECTS)),
        batch_concurrency=max(1, _env_int("NOVELFETCH_BATCH_CONCURRENCY", BATCH_CONCURRENCY)),
        max_toc_pages=max(1, _env_int("NOVELFETCH_MAX_TOC_PAGES", MAX_TOC_PAGES)),
        politeness_min=max(0.0, _env_float("NOVELFETCH_POLITENESS_MIN", POLITENESS_DELAY_MIN)),
        politeness_max=max(0.0, _env_float("NOVELFETCH_POLITENESS_MAX", POLITENESS_DELAY_MAX)),
        accept_language=os.getenv("NOVELFETCH_ACCEPT_LANGUAGE", DEFAULT_ACCEPT_LANGUAGE),
        referer=os.getenv("NOVELFETCH_REFERER", DEFAULT_REFERER),
        user_agent=os.getenv("NOVELFETCH_USER_AGENT") or None,
    )
