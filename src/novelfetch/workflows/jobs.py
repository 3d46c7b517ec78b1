"""Per-job cancellation tokens and the process-wide registry of active crawls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class Cancelled(Exception):
    """Raised when a job's cancellation token has fired."""


class CancelToken:
    """Cooperative cancellation signal shared by everything a job awaits."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first (then raise Cancelled)."""

        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise Cancelled()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable``; abort it and raise Cancelled if the token fires first."""

        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # the request is being abandoned; its failure is moot
            logger.debug("Cancelled request finished with %s", exc)
        raise Cancelled()


class JobRegistry:
    """Maps job ids to the token of the crawl currently running under that id.

    Starting a job whose id is already active cancels the old token and replaces
    it. Release is token-matched, so a superseded crawl winding down never
    evicts its successor.
    """

    def __init__(self) -> None:
        self._tokens: Dict[str, CancelToken] = {}

    def start(self, job_id: str) -> CancelToken:
        previous = self._tokens.pop(job_id, None)
        if previous is not None:
            logger.info("Superseding active job %s", job_id)
            previous.cancel()
        token = CancelToken()
        self._tokens[job_id] = token
        return token

    def release(self, job_id: str, token: CancelToken) -> bool:
        if self._tokens.get(job_id) is token:
            del self._tokens[job_id]
            return True
        return False

    def cancel(self, job_id: str) -> bool:
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        return True

    def get(self, job_id: str) -> Optional[CancelToken]:
        return self._tokens.get(job_id)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tokens))


DEFAULT_REGISTRY = JobRegistry()

__all__ = ["Cancelled", "CancelToken", "DEFAULT_REGISTRY", "JobRegistry"]
