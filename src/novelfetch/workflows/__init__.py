"""High-level exports for the novelfetch workflows."""

from .batch import ChapterResult, fetch_chapters_batch
from .chapter_list import ChapterRef, mine_chapter_list
from .crawl import CrawlOutcome, CrawlState, crawl_novel
from .extract_utils import extract_chapter_content
from .fetcher_config import FetchConfig, load_fetch_config
from .image_proxy import PayloadTooLarge, ProxiedImage, fetch_image
from .jobs import DEFAULT_REGISTRY, Cancelled, CancelToken, JobRegistry
from .metadata import NovelMetadata, extract_metadata
from .net_guard import BlockedAddress, is_safe_public_address
from .pagination import find_next_page
from .validation import MalformedRequest, validate_batch_request, validate_crawl_request
from .web_fetch import FetchError, FetchExhausted, URLFetcher

__all__ = [
    "BlockedAddress",
    "Cancelled",
    "CancelToken",
    "ChapterRef",
    "ChapterResult",
    "CrawlOutcome",
    "CrawlState",
    "DEFAULT_REGISTRY",
    "FetchConfig",
    "FetchError",
    "FetchExhausted",
    "JobRegistry",
    "MalformedRequest",
    "NovelMetadata",
    "PayloadTooLarge",
    "ProxiedImage",
    "URLFetcher",
    "crawl_novel",
    "extract_chapter_content",
    "extract_metadata",
    "fetch_chapters_batch",
    "fetch_image",
    "find_next_page",
    "is_safe_public_address",
    "load_fetch_config",
    "mine_chapter_list",
    "validate_batch_request",
    "validate_crawl_request",
]
