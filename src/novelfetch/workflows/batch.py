"""Bounded-concurrency chapter downloads with per-item failure isolation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from html import escape
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..core.keys import (
    K_COMPLETED,
    K_CONTENT,
    K_EVENT_BATCH_PROGRESS,
    K_MESSAGE,
    K_SUCCESS,
    K_TITLE,
    K_TOTAL,
    K_URL,
)
from .chapter_list import ChapterRef
from .crawl import Publisher
from .extract_utils import extract_chapter_content
from .fetcher_config import DEFAULT_CHAPTER_TITLE, FetchConfig
from .jobs import CancelToken
from .web_fetch import URLFetcher

logger = logging.getLogger(__name__)

ChapterInput = Union[ChapterRef, Mapping[str, Any]]


@dataclass
class ChapterResult:
    url: str
    title: str
    content: str
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {K_URL: self.url, K_TITLE: self.title, K_CONTENT: self.content, K_SUCCESS: self.success}


def _as_ref(item: ChapterInput) -> ChapterRef:
    if isinstance(item, ChapterRef):
        return item
    return ChapterRef(
        title=str(item.get(K_TITLE) or DEFAULT_CHAPTER_TITLE),
        url=str(item.get(K_URL) or ""),
    )


def failure_content(message: str) -> str:
    return f"<p>Error fetching chapter: {escape(message)}</p>"


async def _download_one(fetcher: Any, ref: ChapterRef, cancel: Optional[CancelToken]) -> ChapterResult:
    if cancel is not None and cancel.cancelled:
        return ChapterResult(ref.url, ref.title, failure_content("Download cancelled"), False)
    try:
        html = await fetcher.fetch(ref.url, cancel=cancel)
        content = extract_chapter_content(html, ref.url)
    except Exception as exc:
        # One chapter's failure never aborts its siblings.
        logger.warning("Chapter %s failed: %s", ref.url, exc)
        return ChapterResult(ref.url, ref.title, failure_content(str(exc) or exc.__class__.__name__), False)
    return ChapterResult(ref.url, ref.title, content, True)


async def _run_pool(
    fetcher: Any,
    refs: List[ChapterRef],
    job_id: Optional[str],
    publish: Optional[Publisher],
    config: FetchConfig,
    cancel: Optional[CancelToken],
) -> List[ChapterResult]:
    total = len(refs)
    results: List[Optional[ChapterResult]] = [None] * total
    queue: "asyncio.Queue[tuple]" = asyncio.Queue()
    for index, ref in enumerate(refs):
        queue.put_nowait((index, ref))
    completed = 0
    every = max(1, config.batch_progress_every)

    async def worker() -> None:
        nonlocal completed
        while True:
            try:
                index, ref = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[index] = await _download_one(fetcher, ref, cancel)
            completed += 1
            if publish is not None and job_id and (completed % every == 0 or completed == total):
                try:
                    publish(
                        job_id,
                        K_EVENT_BATCH_PROGRESS,
                        {K_COMPLETED: completed, K_TOTAL: total, K_MESSAGE: f"Downloaded {completed}/{total}"},
                    )
                except Exception as exc:
                    logger.warning("Publishing batch progress for %s failed: %s", job_id, exc)

    workers = [asyncio.create_task(worker()) for _ in range(min(max(1, config.batch_concurrency), total))]
    await asyncio.gather(*workers)
    return [r for r in results if r is not None]


async def fetch_chapters_batch(
    chapters: Iterable[ChapterInput],
    job_id: Optional[str] = None,
    user_agent: Optional[str] = None,
    publish: Optional[Publisher] = None,
    *,
    config: Optional[FetchConfig] = None,
    fetcher: Any = None,
    cancel: Optional[CancelToken] = None,
) -> List[ChapterResult]:
    """Download and extract every chapter, returning results in input order.

    At most ``config.batch_concurrency`` fetches are in flight. Pass the crawl's
    ``user_agent`` to keep the identity the publisher already saw.
    """

    refs = [_as_ref(item) for item in chapters]
    if not refs:
        return []
    config = config or FetchConfig()
    logger.info("Downloading %d chapters (job %s)", len(refs), job_id or "-")
    if fetcher is None:
        async with URLFetcher(config, user_agent=user_agent) as owned:
            return await _run_pool(owned, refs, job_id, publish, config, cancel)
    return await _run_pool(fetcher, refs, job_id, publish, config, cancel)


__all__ = ["ChapterResult", "failure_content", "fetch_chapters_batch"]
