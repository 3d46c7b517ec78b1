"""Crawl orchestration: metadata discovery and TOC pagination for one job.

A crawl walks ``STARTING -> DISCOVERING_METADATA -> PAGINATING`` and ends in
exactly one of ``DONE``, ``CANCELLED`` or ``FAILED``. Progress is published on
the job's channel as it happens; the final manifest is published once as
``novel-ready`` and also returned as a ``CrawlOutcome``.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup

from ..core.keys import (
    K_CHAPTERS,
    K_EVENT_ERROR,
    K_EVENT_LOG,
    K_EVENT_NOVEL_METADATA,
    K_EVENT_NOVEL_READY,
    K_EVENT_PROGRESS_UPDATE,
    K_MESSAGE,
    K_TOTAL_CHAPTERS,
    K_USER_AGENT,
)
from .chapter_list import ChapterManifest, ChapterRef, mine_chapter_list
from .fetcher_config import FetchConfig
from .fetcher_utils import chapter_key
from .jobs import DEFAULT_REGISTRY, Cancelled, CancelToken, JobRegistry
from .metadata import NovelMetadata, extract_metadata
from .pagination import find_next_page
from .web_fetch import URLFetcher

logger = logging.getLogger(__name__)

Publisher = Callable[[str, str, Any], None]


class CrawlState(str, Enum):
    STARTING = "starting"
    DISCOVERING_METADATA = "discovering_metadata"
    PAGINATING = "paginating"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class CrawlOutcome:
    state: CrawlState
    metadata: NovelMetadata
    chapters: List[ChapterRef] = field(default_factory=list)
    pages_scanned: int = 0
    error: Optional[str] = None
    user_agent: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            **self.metadata.to_dict(),
            K_CHAPTERS: [c.to_dict() for c in self.chapters],
            "pagesScanned": self.pages_scanned,
            "error": self.error,
            K_USER_AGENT: self.user_agent,
        }


def _discard(job_id: str, event: str, payload: Any) -> None:
    return None


class NovelCrawler:
    """Runs one crawl job against an already-open fetcher."""

    def __init__(
        self,
        job_id: str,
        start_url: str,
        fetcher: Any,
        token: CancelToken,
        publish: Publisher,
        config: FetchConfig,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.job_id = job_id
        self.start_url = start_url
        self.fetcher = fetcher
        self.token = token
        self.config = config
        self.state = CrawlState.STARTING
        self.metadata = NovelMetadata()
        self.manifest = ChapterManifest()
        self.pages_scanned = 0
        self._publish = publish
        self._rng = rng or random.Random()
        self._first_page: Optional[BeautifulSoup] = None

    @property
    def user_agent(self) -> str:
        return getattr(self.fetcher, "user_agent", "") or ""

    def _emit(self, event: str, payload: Any) -> None:
        try:
            self._publish(self.job_id, event, payload)
        except Exception as exc:
            logger.warning("Publishing %s for job %s failed: %s", event, self.job_id, exc)

    def _outcome(self, error: Optional[str] = None) -> CrawlOutcome:
        return CrawlOutcome(
            state=self.state,
            metadata=self.metadata,
            chapters=self.manifest.chapters,
            pages_scanned=self.pages_scanned,
            error=error,
            user_agent=self.user_agent,
        )

    async def run(self) -> CrawlOutcome:
        try:
            await self._discover_metadata()
            await self._paginate()
        except Cancelled:
            self.state = CrawlState.CANCELLED
            logger.info("Job %s was cancelled", self.job_id)
            self._emit(K_EVENT_LOG, "Scan cancelled.")
            return self._outcome()
        except Exception as exc:
            self.state = CrawlState.FAILED
            logger.warning("Crawl %s failed: %s", self.job_id, exc)
            self._emit(K_EVENT_ERROR, {K_MESSAGE: str(exc) or exc.__class__.__name__})
            return self._outcome(error=str(exc))

        self.state = CrawlState.DONE
        total = len(self.manifest)
        logger.info("Crawl %s finished: %d chapters over %d pages", self.job_id, total, self.pages_scanned)
        self._emit(K_EVENT_LOG, f"Analysis Complete. Total chapters: {total}")
        self._emit(
            K_EVENT_NOVEL_READY,
            {
                **self.metadata.to_dict(),
                K_CHAPTERS: [c.to_dict() for c in self.manifest.chapters],
                K_USER_AGENT: self.user_agent,
            },
        )
        return self._outcome()

    async def _discover_metadata(self) -> None:
        self.state = CrawlState.DISCOVERING_METADATA
        self._emit(K_EVENT_LOG, f"Connecting to {self.start_url}...")
        html = await self.fetcher.fetch(self.start_url, cancel=self.token)
        self._first_page = BeautifulSoup(html, "lxml")
        try:
            self.metadata = extract_metadata(self._first_page, self.start_url)
        except Exception as exc:
            logger.warning("Metadata extraction failed for %s: %s", self.start_url, exc)
        self._emit(K_EVENT_NOVEL_METADATA, {**self.metadata.to_dict(), K_USER_AGENT: self.user_agent})

    async def _next_soup(self, url: str) -> Optional[BeautifulSoup]:
        if self.pages_scanned == 0 and self._first_page is not None:
            return self._first_page
        await self.token.sleep(self._rng.uniform(self.config.politeness_min, self.config.politeness_max))
        try:
            html = await self.fetcher.fetch(url, cancel=self.token)
        except Cancelled:
            raise
        except Exception as exc:
            logger.warning("TOC page %s for job %s failed: %s", url, self.job_id, exc)
            self._emit(K_EVENT_LOG, f"Error scanning page: {exc}")
            return None
        return BeautifulSoup(html, "lxml")

    async def _paginate(self) -> None:
        self.state = CrawlState.PAGINATING
        visited = set()
        current: Optional[str] = self.start_url
        while current:
            self.token.raise_if_cancelled()
            if self.pages_scanned >= self.config.max_toc_pages:
                logger.info("Job %s reached the %d page cap", self.job_id, self.config.max_toc_pages)
                self._emit(K_EVENT_LOG, f"Reached the limit of {self.config.max_toc_pages} TOC pages. Stopping.")
                break
            key = chapter_key(current)
            if key in visited:
                break
            visited.add(key)

            page_number = self.pages_scanned + 1
            self._emit(K_EVENT_LOG, f"Scanning TOC Page {page_number}...")
            soup = await self._next_soup(current)
            if soup is None:
                break
            self.pages_scanned = page_number

            found = mine_chapter_list(soup, current)
            if found:
                added = self.manifest.extend(found)
                if added:
                    total = len(self.manifest)
                    self._emit(
                        K_EVENT_PROGRESS_UPDATE,
                        {
                            K_TOTAL_CHAPTERS: total,
                            K_MESSAGE: f"Found {len(added)} new chapters (Total: {total})",
                        },
                    )
            elif page_number > 1:
                self._emit(K_EVENT_LOG, f"No chapters found on page {page_number}. Stopping scan.")
                break

            next_url = find_next_page(soup, current)
            if next_url and chapter_key(next_url) in visited:
                logger.info("Pagination loop detected for job %s at %s", self.job_id, next_url)
                self._emit(K_EVENT_LOG, "Pagination loop detected. Stopping.")
                break
            current = next_url


async def crawl_novel(
    start_url: str,
    job_id: str,
    *,
    publish: Optional[Publisher] = None,
    registry: Optional[JobRegistry] = None,
    config: Optional[FetchConfig] = None,
    fetcher: Any = None,
    rng: Optional[random.Random] = None,
) -> CrawlOutcome:
    """Crawl the TOC at ``start_url`` under ``job_id``.

    Starting a job supersedes any active job with the same id. ``fetcher`` is
    anything with ``user_agent`` and ``async fetch(url, cancel=...)``; when
    omitted a URLFetcher is opened for the duration of the crawl.
    """

    registry = registry if registry is not None else DEFAULT_REGISTRY
    config = config or FetchConfig()
    token = registry.start(job_id)
    logger.info("Starting crawl %s for %s", job_id, start_url)
    try:
        if fetcher is None:
            async with URLFetcher(config) as owned:
                crawler = NovelCrawler(job_id, start_url, owned, token, publish or _discard, config, rng)
                return await crawler.run()
        crawler = NovelCrawler(job_id, start_url, fetcher, token, publish or _discard, config, rng)
        return await crawler.run()
    finally:
        registry.release(job_id, token)


__all__ = ["CrawlOutcome", "CrawlState", "NovelCrawler", "Publisher", "crawl_novel"]
