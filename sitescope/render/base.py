"""Render engine contract.

An engine is handed seed requests, a page callback and a failure callback.
It fetches pages up to ``max_requests`` and lets the page callback extend the
frontier through :meth:`PageContext.enqueue`. Fetch/render failures go to the
failure callback and never stop the run, as does a page callback that overruns
``request_handler_timeout``. Any other exception escaping the page callback
aborts the run and is re-raised from :meth:`RenderEngine.run`.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, Optional, Sequence

from loguru import logger

from sitescope.exceptions import RenderError
from sitescope.monitoring.metrics_server import FAILED_PAGES, FETCH_LATENCY


@dataclass
class CrawlRequest:
    url: str
    depth: int = 0
    unique_key: Optional[str] = None

    @property
    def key(self) -> str:
        return self.unique_key or self.url


@dataclass
class RenderedPage:
    url: str
    loaded_url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    html: str = ""
    response_time_ms: int = 0
    http_version: Optional[str] = None
    screenshot: Optional[bytes] = None


@dataclass
class PageContext:
    request: CrawlRequest
    page: RenderedPage
    enqueue: Callable[[Sequence[CrawlRequest]], Awaitable[int]]


@dataclass
class RunStats:
    requested: int = 0
    handled: int = 0
    failed: int = 0


PageHandlerFn = Callable[[PageContext], Awaitable[None]]
FailureHandlerFn = Callable[[CrawlRequest, Exception], Awaitable[None]]


class RenderEngine(ABC):
    name = "base"

    def __init__(
        self,
        *,
        max_requests: int,
        concurrency: int = 1,
        navigation_timeout: float = 30,
        request_handler_timeout: float = 60,
        request_delay: float = 0,
    ) -> None:
        self.max_requests = max_requests
        self.concurrency = max(1, concurrency)
        self.navigation_timeout = navigation_timeout
        self.request_handler_timeout = request_handler_timeout
        self.request_delay = request_delay

        self._queue: asyncio.Queue[CrawlRequest] = asyncio.Queue()
        self._seen_keys: set[str] = set()
        self._handler_lock = asyncio.Lock()
        self._abort: Optional[BaseException] = None
        self._stats = RunStats()

    @abstractmethod
    async def _render(self, request: CrawlRequest) -> RenderedPage:
        """Fetch one page or raise :class:`RenderError`."""

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[None]:
        yield

    async def enqueue(self, requests: Iterable[CrawlRequest]) -> int:
        added = 0
        for request in requests:
            if request.key in self._seen_keys:
                continue
            self._seen_keys.add(request.key)
            self._queue.put_nowait(request)
            added += 1
        return added

    async def run(
        self,
        seeds: Sequence[CrawlRequest],
        on_page: PageHandlerFn,
        on_failure: FailureHandlerFn,
    ) -> RunStats:
        self._stats = RunStats()
        self._abort = None
        await self.enqueue(seeds)

        async with self._session():
            workers = [
                asyncio.create_task(self._worker(on_page, on_failure))
                for _ in range(self.concurrency)
            ]
            try:
                await self._queue.join()
            finally:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)

        if self._abort is not None:
            raise self._abort

        logger.info(
            f"[{self.name}] Run finished: {self._stats.handled} handled, "
            f"{self._stats.failed} failed, {self._stats.requested} requested"
        )
        return self._stats

    async def _worker(self, on_page: PageHandlerFn, on_failure: FailureHandlerFn) -> None:
        while True:
            request = await self._queue.get()
            try:
                if self._abort is not None or self._stats.requested >= self.max_requests:
                    continue
                self._stats.requested += 1
                await self._process(request, on_page, on_failure)
            finally:
                self._queue.task_done()

    async def _process(
        self, request: CrawlRequest, on_page: PageHandlerFn, on_failure: FailureHandlerFn
    ) -> None:
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)

        start = time.perf_counter()
        try:
            page = await asyncio.wait_for(self._render(request), self.navigation_timeout)
        except Exception as exc:
            self._stats.failed += 1
            reason = exc.reason if isinstance(exc, RenderError) else exc.__class__.__name__
            FAILED_PAGES.labels(reason=reason).inc()
            await on_failure(request, exc)
            return
        finally:
            FETCH_LATENCY.labels(engine=self.name).observe(time.perf_counter() - start)

        context = PageContext(request=request, page=page, enqueue=self.enqueue)
        try:
            async with self._handler_lock:
                await asyncio.wait_for(on_page(context), self.request_handler_timeout)
            self._stats.handled += 1
        except asyncio.TimeoutError:
            self._stats.failed += 1
            FAILED_PAGES.labels(reason="handler_timeout").inc()
            await on_failure(
                request,
                RenderError(
                    "handler_timeout",
                    f"Page handler exceeded {self.request_handler_timeout}s on {request.url}",
                ),
            )
        except Exception as exc:
            logger.error(f"[{self.name}] Aborting run after handler error on {request.url}: {exc}")
            self._abort = exc
