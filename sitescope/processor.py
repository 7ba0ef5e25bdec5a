"""Job orchestration.

One call to :meth:`CrawlProcessor.poll_and_process` takes the oldest eligible
job and runs it end to end: robots.txt, sitemap discovery, the render run,
link scoring, completion and notifications. Calls that arrive while a job is
still in flight return immediately.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Optional, Sequence, Set

import httpx
from loguru import logger

from sitescope.exceptions import PersistenceError
from sitescope.link_graph import LinkGraph
from sitescope.monitoring.metrics_server import ACTIVE_JOB, JOB_DURATION, JOBS_PROCESSED
from sitescope.notifications import WebhookNotifier
from sitescope.page_handler import CrawlState, PageHandler
from sitescope.render.base import CrawlRequest, RenderEngine
from sitescope.render.browser_engine import BrowserRenderEngine
from sitescope.render.http_engine import HttpRenderEngine
from sitescope.sitemaps import SitemapCrawler, extract_urls_for_crawling
from sitescope.storage.crawl_store import CrawlStore
from sitescope.storage.models import CrawlJob
from sitescope.utils.config_loader import Config
from sitescope.utils.filters import is_crawlable_link
from sitescope.utils.logger import job_logger
from sitescope.utils.robots import RobotsFetcher, RobotsResult


EngineFactory = Callable[[CrawlJob, int, float], RenderEngine]
ClientFactory = Callable[[], httpx.AsyncClient]


class CrawlProcessor:
    def __init__(
        self,
        store: CrawlStore,
        config: Config,
        *,
        engine_factory: Optional[EngineFactory] = None,
        client_factory: Optional[ClientFactory] = None,
        notifiers: Sequence[WebhookNotifier] = (),
    ) -> None:
        self.store = store
        self.config = config
        self.user_agent = config.crawler_user_agent
        self.engine_factory = engine_factory or self._default_engine_factory
        self.client_factory = client_factory or (lambda: httpx.AsyncClient(follow_redirects=True))
        self.notifiers = list(notifiers)

        self._processing = False
        self._background: Set[asyncio.Task] = set()

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def poll_and_process(self) -> bool:
        """Process at most one job; returns True if a job was taken."""
        if self._processing:
            logger.debug("Previous crawl still in progress, skipping this tick")
            return False

        self._processing = True
        try:
            try:
                job = await self.store.find_next_job()
            except PersistenceError as exc:
                logger.error(f"Could not poll for crawl jobs: {exc}")
                return False

            if job is None:
                return False

            await self.process_job(job)
            return True
        finally:
            self._processing = False

    async def process_job(self, job: CrawlJob) -> None:
        log = job_logger(job.id)
        started = time.perf_counter()
        ACTIVE_JOB.set(1)
        log.info(f"Processing crawl job for {job.url} (max_pages={job.max_pages})")

        try:
            await self.store.mark_running(job)

            robots, sitemap_urls = await self._discover(job)

            persisted = await self.store.list_page_addresses(job.id)
            if persisted:
                log.info(f"Resuming job with {len(persisted)} pages already stored")

            state = CrawlState.for_job(
                job,
                user_agent=self.user_agent,
                robots=robots.directives,
                sample_quota=self.config.sample_quota,
                persisted_addresses=persisted,
            )
            seeds = self.build_frontier(job, state, sitemap_urls)

            remaining = job.max_pages - state.pages_saved
            if remaining > 0:
                engine = self.engine_factory(job, remaining, self._request_delay(robots))
                handler = PageHandler(self.store, state, screenshot_dir=self.config.screenshot_dir)
                log.info(f"Starting crawl with {len(seeds)} seed URL(s)")
                await engine.run(seeds, handler.handle_page, handler.handle_failure)

            await LinkGraph(
                self.store,
                job.id,
                job.url,
                domain_state=state.domain,
                ignore_query=state.ignore_query,
            ).finalize()

            pages = await self.store.complete_job(job.id)
            JOBS_PROCESSED.labels(status="completed").inc()
            log.info(f"Completed job with {pages} pages")

            self._dispatch_notifications(job.id)

        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log.error(f"Job failed: {message}")
            JOBS_PROCESSED.labels(status="failed").inc()
            try:
                await self.store.fail_job(job.id, message)
            except PersistenceError as store_error:
                log.error(f"Could not record job failure: {store_error}")
        finally:
            ACTIVE_JOB.set(0)
            JOB_DURATION.observe(time.perf_counter() - started)

    async def _discover(self, job: CrawlJob) -> tuple[RobotsResult, List[str]]:
        """Fetch robots.txt and the sitemap forest, store both, return crawlable sitemap URLs."""
        async with self.client_factory() as client:
            robots = await RobotsFetcher(
                client, self.user_agent, timeout=self.config.robots_timeout
            ).fetch(job.url)
            await self.store.save_robots_result(job.id, robots)

            sitemaps = await SitemapCrawler(
                client,
                self.user_agent,
                max_sitemaps=self.config.max_sitemaps,
                timeout=self.config.sitemap_timeout,
            ).discover(job.url, robots.sitemap_urls)
            await self.store.save_sitemaps(job.id, sitemaps)

        urls = extract_urls_for_crawling(sitemaps, job.url, limit=self.config.max_sitemap_urls)
        return robots, urls

    def build_frontier(
        self, job: CrawlJob, state: CrawlState, sitemap_urls: Sequence[str]
    ) -> List[CrawlRequest]:
        target = state.normalize(job.url)
        seeds = [CrawlRequest(url=target, depth=0, unique_key=target)]
        state.discovered.add(target)

        if not job.crawl_sitemap:
            return seeds

        keys = {target}
        for url in sitemap_urls:
            address = state.normalize(url)
            if address in keys or not is_crawlable_link(address):
                continue
            keys.add(address)
            state.discovered.add(address)
            seeds.append(CrawlRequest(url=address, depth=1, unique_key=address))

        logger.info(f"Initial frontier: {len(seeds)} URL(s), {len(seeds) - 1} from sitemaps")
        return seeds

    def _request_delay(self, robots: RobotsResult) -> float:
        delay = robots.directives.get_crawl_delay(self.user_agent) or 0
        return min(delay, self.config.max_crawl_delay)

    def _default_engine_factory(self, job: CrawlJob, max_requests: int, request_delay: float) -> RenderEngine:
        options = dict(
            max_requests=max_requests,
            # a crawl-delay only holds with one request in flight
            concurrency=1 if request_delay > 0 else self.config.render_concurrency,
            navigation_timeout=self.config.navigation_timeout,
            request_handler_timeout=self.config.request_handler_timeout,
            request_delay=request_delay,
        )
        if self.config.render_engine == "browser":
            return BrowserRenderEngine(
                user_agent=self.user_agent,
                take_screenshots=job.take_screenshots,
                **options,
            )
        return HttpRenderEngine(user_agent=self.user_agent, **options)

    # --------------------------
    #  Notifications
    # --------------------------
    def _dispatch_notifications(self, job_id) -> None:
        for notifier in self.notifiers:
            if not notifier.enabled:
                continue
            task = asyncio.create_task(self._notify(notifier, job_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _notify(self, notifier: WebhookNotifier, job_id) -> None:
        try:
            await notifier.notify(job_id)
        except Exception as exc:
            logger.error(f"[{notifier.name}] notification failed for job {job_id}: {exc}")

    async def wait_for_notifications(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
