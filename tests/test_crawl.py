import asyncio
import random

from novelfetch.workflows import crawl as crawl_module
from novelfetch.workflows.crawl import CrawlState, crawl_novel
from novelfetch.workflows.fetcher_config import FetchConfig
from novelfetch.workflows.jobs import JobRegistry
from novelfetch.workflows.web_fetch import FetchExhausted

START = "https://novels.example/novel/toc"


def _config(**overrides):
    return FetchConfig(politeness_min=0.0, politeness_max=0.0, **overrides)


def _toc(first, last, next_href=None, title="The Long Road"):
    items = "".join(f'<li><a href="/novel/chapter-{i}">Chapter {i}</a></li>' for i in range(first, last + 1))
    head = f'<link rel="next" href="{next_href}">' if next_href else ""
    return (
        f'<html><head><title>{title} - Novels</title>{head}</head>'
        f'<body><span>Author: Jane Doe</span><ul class="toc">{items}</ul></body></html>'
    )


class FakeFetcher:
    user_agent = "FakeAgent/1.0"

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def fetch(self, url, cancel=None):
        self.calls.append(url)
        page = self.pages[url]
        if callable(page):
            page = await page(cancel)
        if isinstance(page, Exception):
            raise page
        return page


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, job_id, event, payload):
        self.events.append((job_id, event, payload))

    def names(self):
        return [event for _, event, _ in self.events]

    def logs(self):
        return [payload for _, event, payload in self.events if event == "log"]


def _crawl(pages, *, config=None, registry=None, job_id="job-1"):
    fetcher = FakeFetcher(pages)
    recorder = Recorder()
    outcome = asyncio.run(
        crawl_novel(
            START,
            job_id,
            publish=recorder,
            registry=registry if registry is not None else JobRegistry(),
            config=config or _config(),
            fetcher=fetcher,
            rng=random.Random(7),
        )
    )
    return outcome, fetcher, recorder


def test_multi_page_crawl_builds_manifest_in_order():
    pages = {
        START: _toc(1, 3, next_href="/novel/toc?page=2"),
        START + "?page=2": _toc(4, 5),
    }
    outcome, fetcher, recorder = _crawl(pages)

    assert outcome.state is CrawlState.DONE
    assert [c.title for c in outcome.chapters] == [f"Chapter {i}" for i in range(1, 6)]
    assert outcome.pages_scanned == 2
    assert fetcher.calls == [START, START + "?page=2"]
    assert recorder.names() == [
        "log",
        "novel-metadata",
        "log",
        "progress-update",
        "log",
        "progress-update",
        "log",
        "novel-ready",
    ]
    assert recorder.logs() == [
        f"Connecting to {START}...",
        "Scanning TOC Page 1...",
        "Scanning TOC Page 2...",
        "Analysis Complete. Total chapters: 5",
    ]

    metadata = recorder.events[1][2]
    assert metadata["title"] == "The Long Road"
    assert metadata["author"] == "Jane Doe"
    assert metadata["userAgent"] == "FakeAgent/1.0"

    progress = [payload for _, event, payload in recorder.events if event == "progress-update"]
    assert progress == [
        {"totalChapters": 3, "message": "Found 3 new chapters (Total: 3)"},
        {"totalChapters": 5, "message": "Found 2 new chapters (Total: 5)"},
    ]

    ready = recorder.events[-1][2]
    assert ready["title"] == "The Long Road"
    assert ready["userAgent"] == "FakeAgent/1.0"
    assert ready["chapters"][0] == {"title": "Chapter 1", "url": "https://novels.example/novel/chapter-1"}
    assert len(ready["chapters"]) == 5
    assert all(job_id == "job-1" for job_id, _, _ in recorder.events)


def test_pagination_cycle_fetches_each_page_once():
    pages = {
        START: _toc(1, 3, next_href="/novel/toc?page=2"),
        START + "?page=2": _toc(4, 6, next_href="/novel/toc"),
    }
    outcome, fetcher, recorder = _crawl(pages)

    assert outcome.state is CrawlState.DONE
    assert len(outcome.chapters) == 6
    assert fetcher.calls == [START, START + "?page=2"]
    assert "Pagination loop detected. Stopping." in recorder.logs()


def test_page_cap_stops_the_crawl():
    pages = {
        START: _toc(1, 2, next_href="/novel/toc?page=2"),
        START + "?page=2": _toc(3, 4, next_href="/novel/toc?page=3"),
        START + "?page=3": _toc(5, 6),
    }
    outcome, fetcher, recorder = _crawl(pages, config=_config(max_toc_pages=2))

    assert outcome.state is CrawlState.DONE
    assert outcome.pages_scanned == 2
    assert len(outcome.chapters) == 4
    assert START + "?page=3" not in fetcher.calls
    assert "Reached the limit of 2 TOC pages. Stopping." in recorder.logs()


def test_page_without_chapters_ends_the_scan():
    pages = {
        START: _toc(1, 2, next_href="/novel/toc?page=2"),
        START + "?page=2": '<html><body><a rel="next" href="/novel/toc?page=3">more</a></body></html>',
    }
    outcome, fetcher, recorder = _crawl(pages)

    assert outcome.state is CrawlState.DONE
    assert len(outcome.chapters) == 2
    assert "No chapters found on page 2. Stopping scan." in recorder.logs()
    assert fetcher.calls == [START, START + "?page=2"]


def test_failed_later_page_keeps_partial_results():
    pages = {
        START: _toc(1, 3, next_href="/novel/toc?page=2"),
        START + "?page=2": FetchExhausted(START + "?page=2", RuntimeError("HTTP 503"), 3),
    }
    outcome, _, recorder = _crawl(pages)

    assert outcome.state is CrawlState.DONE
    assert len(outcome.chapters) == 3
    assert outcome.pages_scanned == 1
    assert any(line.startswith("Error scanning page:") for line in recorder.logs())
    assert recorder.names()[-1] == "novel-ready"


def test_first_page_failure_fails_the_job():
    pages = {START: RuntimeError("connection refused")}
    outcome, _, recorder = _crawl(pages)

    assert outcome.state is CrawlState.FAILED
    assert outcome.error == "connection refused"
    assert outcome.chapters == []
    assert recorder.names() == ["log", "error"]
    assert recorder.events[-1][2] == {"message": "connection refused"}


def test_metadata_failure_falls_back_to_defaults(monkeypatch):
    def broken(soup, base_url):
        raise ValueError("weird markup")

    monkeypatch.setattr(crawl_module, "extract_metadata", broken)
    outcome, _, recorder = _crawl({START: _toc(1, 2)})

    assert outcome.state is CrawlState.DONE
    assert outcome.metadata.title == "Unknown Novel"
    assert outcome.metadata.author == "Unknown"
    assert len(outcome.chapters) == 2
    assert recorder.names()[1] == "novel-metadata"


def test_cancellation_stops_before_ready():
    registry = JobRegistry()

    async def second_page(cancel):
        registry.cancel("job-1")
        return _toc(4, 5, next_href="/novel/toc?page=3")

    pages = {
        START: _toc(1, 3, next_href="/novel/toc?page=2"),
        START + "?page=2": second_page,
    }
    outcome, fetcher, recorder = _crawl(pages, registry=registry)

    assert outcome.state is CrawlState.CANCELLED
    assert "Scan cancelled." in recorder.logs()
    assert "novel-ready" not in recorder.names()
    assert START + "?page=3" not in fetcher.calls
    assert "job-1" not in registry


def test_new_job_supersedes_running_one():
    async def scenario():
        registry = JobRegistry()
        entered = asyncio.Event()
        gate = asyncio.Event()

        async def stalled_first_page(cancel):
            entered.set()
            await cancel.guard(gate.wait())
            return _toc(1, 2)

        slow = FakeFetcher({START: stalled_first_page})
        fast = FakeFetcher({START: _toc(1, 4)})
        first = asyncio.create_task(
            crawl_novel(START, "job-1", registry=registry, config=_config(), fetcher=slow)
        )
        await entered.wait()
        second = await crawl_novel(START, "job-1", registry=registry, config=_config(), fetcher=fast)
        first_outcome = await first
        return first_outcome, second, registry

    first, second, registry = asyncio.run(scenario())

    assert first.state is CrawlState.CANCELLED
    assert second.state is CrawlState.DONE
    assert len(second.chapters) == 4
    assert len(registry) == 0


def test_failing_publisher_does_not_break_the_crawl():
    def explode(job_id, event, payload):
        raise RuntimeError("socket closed")

    outcome = asyncio.run(
        crawl_novel(
            START,
            "job-1",
            publish=explode,
            registry=JobRegistry(),
            config=_config(),
            fetcher=FakeFetcher({START: _toc(1, 2)}),
        )
    )

    assert outcome.state is CrawlState.DONE
    assert len(outcome.chapters) == 2


def test_outcome_serializes_for_the_wire():
    outcome, _, _ = _crawl({START: _toc(1, 1)})
    data = outcome.to_dict()

    assert data["state"] == "done"
    assert data["chapters"] == [{"title": "Chapter 1", "url": "https://novels.example/novel/chapter-1"}]
    assert data["userAgent"] == "FakeAgent/1.0"
    assert data["pagesScanned"] == 1
