from __future__ import annotations

import asyncio
import json
import secrets
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, TextIO, Tuple

from .core.keys import (
    K_CHAPTERS,
    K_EVENT_BATCH_PROGRESS,
    K_EVENT_ERROR,
    K_EVENT_NOVEL_METADATA,
    K_EVENT_NOVEL_READY,
    K_EVENT_PROGRESS_UPDATE,
    K_MESSAGE,
    K_TITLE,
    K_URL,
)
from .workflows.batch import fetch_chapters_batch
from .workflows.crawl import CrawlState, crawl_novel
from .workflows.fetcher_config import DEFAULT_CHAPTER_TITLE, FetchConfig, load_fetch_config
from .workflows.fetcher_utils import collect_environment_warnings, dedupe_preserving_order
from .workflows.validation import validate_batch_request, validate_novel_url


def parse_manifest_lines(lines: Iterable[str]) -> List[str]:
    urls: List[str] = []
    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#"):
            continue
        if any(ch.isspace() for ch in line):
            raise ValueError(f"Invalid manifest line (inline metadata not allowed): {raw_line.rstrip()}")
        urls.append(line)
    return urls


def load_chapter_manifest(path_or_dash: str, *, stdin: Optional[TextIO] = None) -> List[Dict[str, str]]:
    """Load chapters from a JSON array/``novel-ready`` payload or a line manifest of URLs."""

    if path_or_dash == "-":
        text = (stdin or sys.stdin).read()
    else:
        path = Path(path_or_dash)
        if not path.exists():
            raise FileNotFoundError(f"Manifest not found: {path}")
        text = path.read_text(encoding="utf-8")

    stripped = text.strip()
    if stripped.startswith("[") or stripped.startswith("{"):
        data = json.loads(stripped)
        if isinstance(data, dict):
            data = data.get(K_CHAPTERS)
        return [
            {K_TITLE: str(item.get(K_TITLE) or DEFAULT_CHAPTER_TITLE), K_URL: item[K_URL].strip()}
            for item in validate_batch_request(data)
        ]
    urls = dedupe_preserving_order(parse_manifest_lines(stripped.splitlines()))
    return [{K_TITLE: DEFAULT_CHAPTER_TITLE, K_URL: url} for url in urls]


def generate_job_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"cli_{stamp}_{suffix}"


def format_event_line(event: str, payload: Any) -> str:
    if isinstance(payload, str):
        text = payload
    elif event in (K_EVENT_NOVEL_METADATA, K_EVENT_NOVEL_READY) and isinstance(payload, dict):
        text = f"{payload.get('title')} by {payload.get('author')}"
        if event == K_EVENT_NOVEL_READY:
            text = f"{text}: {len(payload.get(K_CHAPTERS) or [])} chapters"
    elif event in (K_EVENT_PROGRESS_UPDATE, K_EVENT_BATCH_PROGRESS, K_EVENT_ERROR) and isinstance(payload, dict):
        text = str(payload.get(K_MESSAGE, ""))
    else:
        text = json.dumps(payload, ensure_ascii=False)
    return f"[{event}] {text}"


class EventRecorder:
    """Publisher that keeps every event and optionally echoes it as a line."""

    def __init__(self, echo: Optional[TextIO] = None) -> None:
        self.events: List[Dict[str, Any]] = []
        self._echo = echo

    def __call__(self, job_id: str, event: str, payload: Any) -> None:
        self.events.append({"job_id": job_id, "event": event, "data": payload})
        if self._echo is not None:
            self._echo.write(format_event_line(event, payload) + "\n")
            self._echo.flush()

    def names(self) -> List[str]:
        return [entry["event"] for entry in self.events]


def _report_environment(config: FetchConfig) -> List[Dict[str, str]]:
    env_warnings = collect_environment_warnings(config)
    for warning in env_warnings:
        message = warning.get("message") or warning.get("code") or "environment warning"
        remedy = warning.get("remedy")
        if remedy:
            print(f"[novelfetch] warning: {message} ({remedy})", file=sys.stderr)
        else:
            print(f"[novelfetch] warning: {message}", file=sys.stderr)
    return env_warnings


def _timestamp(value: datetime) -> str:
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def run_analyze(
    url: str,
    *,
    job_id: Optional[str] = None,
    config: Optional[FetchConfig] = None,
    soft_fail: bool = False,
    echo: Optional[TextIO] = None,
    fetcher: Any = None,
) -> Tuple[Dict[str, Any], int]:
    """Crawl one TOC and return ``(summary, exit_code)``.

    Raises MalformedRequest before any network activity when ``url`` is unusable.
    """

    start_url = validate_novel_url(url)
    config = config or load_fetch_config()
    env_warnings = _report_environment(config)
    job_id = job_id or generate_job_id()
    recorder = EventRecorder(echo)
    started_at = datetime.now(timezone.utc)
    outcome = asyncio.run(crawl_novel(start_url, job_id, publish=recorder, config=config, fetcher=fetcher))
    finished_at = datetime.now(timezone.utc)

    summary: Dict[str, Any] = {
        "command": "analyze",
        "job_id": job_id,
        "start_url": start_url,
        "started_at": _timestamp(started_at),
        "finished_at": _timestamp(finished_at),
        **outcome.to_dict(),
        "counts": {"chapters": len(outcome.chapters), "pages": outcome.pages_scanned},
        "events": recorder.names(),
    }
    if env_warnings:
        summary["environment_warnings"] = env_warnings

    if outcome.state is not CrawlState.DONE:
        return summary, 3
    if not outcome.chapters and not soft_fail:
        return summary, 1
    return summary, 0


def run_batch(
    chapters: Sequence[Dict[str, Any]],
    *,
    job_id: Optional[str] = None,
    user_agent: Optional[str] = None,
    config: Optional[FetchConfig] = None,
    soft_fail: bool = False,
    echo: Optional[TextIO] = None,
    fetcher: Any = None,
) -> Tuple[Dict[str, Any], int]:
    """Download ``chapters`` and return ``(summary, exit_code)``; 1 when any item failed."""

    config = config or load_fetch_config()
    env_warnings = _report_environment(config)
    job_id = job_id or generate_job_id()
    recorder = EventRecorder(echo)
    started_at = datetime.now(timezone.utc)
    results = asyncio.run(
        fetch_chapters_batch(
            chapters,
            job_id,
            user_agent,
            recorder,
            config=config,
            fetcher=fetcher,
        )
    )
    finished_at = datetime.now(timezone.utc)
    failed = sum(1 for r in results if not r.success)
    summary: Dict[str, Any] = {
        "command": "batch",
        "job_id": job_id,
        "started_at": _timestamp(started_at),
        "finished_at": _timestamp(finished_at),
        "counts": {"total": len(results), "ok": len(results) - failed, "failed": failed},
        "results": [r.to_dict() for r in results],
    }
    if env_warnings:
        summary["environment_warnings"] = env_warnings
    exit_code = 1 if failed and not soft_fail else 0
    return summary, exit_code


__all__ = [
    "EventRecorder",
    "format_event_line",
    "generate_job_id",
    "load_chapter_manifest",
    "parse_manifest_lines",
    "run_analyze",
    "run_batch",
]
