import asyncio

from novelfetch.workflows.batch import ChapterResult, failure_content, fetch_chapters_batch
from novelfetch.workflows.chapter_list import ChapterRef
from novelfetch.workflows.fetcher_config import FetchConfig
from novelfetch.workflows.jobs import CancelToken

PARAGRAPH = "<p>" + " ".join(["The caravan crossed the dunes before the storm arrived."] * 6) + "</p>"


def _chapter_html(n):
    return f'<html><body><div class="chapter-content"><h1>Chapter {n}</h1>{PARAGRAPH}{PARAGRAPH}</div></body></html>'


class FakeFetcher:
    user_agent = "FakeAgent/1.0"

    def __init__(self, failures=None, delay=0.0):
        self.failures = failures or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.peak = 0

    async def fetch(self, url, cancel=None):
        self.calls.append(url)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if url in self.failures:
                raise self.failures[url]
            return _chapter_html(url.rsplit("-", 1)[-1])
        finally:
            self.in_flight -= 1


def _refs(count):
    return [ChapterRef(f"Chapter {i}", f"https://novels.example/novel/chapter-{i}") for i in range(1, count + 1)]


def test_one_failure_does_not_abort_the_batch():
    refs = _refs(5)
    fetcher = FakeFetcher(failures={refs[2].url: RuntimeError("HTTP 404 <Not Found>")})

    results = asyncio.run(fetch_chapters_batch(refs, fetcher=fetcher, config=FetchConfig()))

    assert [r.url for r in results] == [r.url for r in refs]
    assert [r.success for r in results] == [True, True, False, True, True]
    failed = results[2]
    assert failed.title == "Chapter 3"
    assert failed.content == "<p>Error fetching chapter: HTTP 404 &lt;Not Found&gt;</p>"
    assert results[0].content.startswith('<div class="chapter-content">')
    assert "caravan crossed the dunes" in results[0].content


def test_progress_is_published_every_ten_and_at_the_end():
    events = []
    refs = _refs(25)

    def publish(job_id, event, payload):
        events.append((job_id, event, payload))

    asyncio.run(
        fetch_chapters_batch(refs, job_id="job-9", publish=publish, fetcher=FakeFetcher(), config=FetchConfig())
    )

    assert [payload["completed"] for _, _, payload in events] == [10, 20, 25]
    assert all(job_id == "job-9" and event == "batch-progress" for job_id, event, _ in events)
    assert events[-1][2] == {"completed": 25, "total": 25, "message": "Downloaded 25/25"}


def test_progress_needs_a_job_id():
    events = []
    asyncio.run(
        fetch_chapters_batch(
            _refs(3), publish=lambda *args: events.append(args), fetcher=FakeFetcher(), config=FetchConfig()
        )
    )
    assert events == []


def test_concurrency_is_bounded():
    fetcher = FakeFetcher(delay=0.01)
    results = asyncio.run(
        fetch_chapters_batch(_refs(12), fetcher=fetcher, config=FetchConfig(batch_concurrency=3))
    )

    assert len(results) == 12
    assert all(r.success for r in results)
    assert 1 < fetcher.peak <= 3


def test_cancelled_batch_marks_every_item_failed():
    async def scenario():
        token = CancelToken()
        token.cancel()
        fetcher = FakeFetcher()
        results = await fetch_chapters_batch(_refs(4), fetcher=fetcher, config=FetchConfig(), cancel=token)
        return results, fetcher

    results, fetcher = asyncio.run(scenario())

    assert fetcher.calls == []
    assert all(not r.success for r in results)
    assert results[0].content == failure_content("Download cancelled")


def test_empty_batch_returns_immediately():
    assert asyncio.run(fetch_chapters_batch([], fetcher=FakeFetcher())) == []


def test_accepts_plain_mappings():
    chapters = [
        {"url": "https://novels.example/novel/chapter-1", "title": "Opening"},
        {"url": "https://novels.example/novel/chapter-2"},
    ]
    results = asyncio.run(fetch_chapters_batch(chapters, fetcher=FakeFetcher(), config=FetchConfig()))

    assert [r.title for r in results] == ["Opening", "Chapter"]
    assert results[1].to_dict()["success"] is True
    assert set(results[1].to_dict()) == {"url", "title", "content", "success"}


def test_result_serialization():
    result = ChapterResult("https://n.example/c/1", "One", "<p>x</p>", False)
    assert result.to_dict() == {"url": "https://n.example/c/1", "title": "One", "content": "<p>x</p>", "success": False}
