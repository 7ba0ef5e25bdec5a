"""Per-page callback handed to the render engine.

All mutable crawl bookkeeping for a job lives in one :class:`CrawlState`
created per job run; nothing here is shared between jobs.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Set
from urllib.parse import quote, urlsplit

from tortoise.exceptions import IntegrityError

from sitescope.link_graph import LinkGraph
from sitescope.monitoring.metrics_server import CRAWLED_PAGES, SKIPPED_PAGES
from sitescope.parsing.html_extractor import extract_anchors, extract_page_data
from sitescope.parsing.page_metrics import (
    compute_page_metrics,
    header_value,
    indexability,
    status_text,
)
from sitescope.render.base import CrawlRequest, PageContext
from sitescope.sampling import SampledCrawlPolicy
from sitescope.storage.crawl_store import CrawlStore
from sitescope.storage.models import CrawlJob
from sitescope.utils.logger import job_logger
from sitescope.utils.robots import RobotsDirectives
from sitescope.utils.url_utils import (
    DomainState,
    folder_depth,
    is_internal_url,
    normalize_url,
)


@dataclass
class CrawlState:
    job_id: object
    job_url: str
    max_pages: int
    user_agent: str
    ignore_query: bool = False
    take_screenshots: bool = False
    robots: RobotsDirectives = field(default_factory=RobotsDirectives)
    sampling: Optional[SampledCrawlPolicy] = None
    domain: Optional[DomainState] = None
    seen: Set[str] = field(default_factory=set)
    discovered: Set[str] = field(default_factory=set)
    pages_saved: int = 0

    def __post_init__(self) -> None:
        if self.domain is None:
            self.domain = DomainState.for_job_url(self.job_url)

    @classmethod
    def for_job(
        cls,
        job: CrawlJob,
        *,
        user_agent: str,
        robots: Optional[RobotsDirectives] = None,
        sample_quota: int = 3,
        persisted_addresses: Iterable[str] = (),
    ) -> "CrawlState":
        seen = set(persisted_addresses)
        return cls(
            job_id=job.id,
            job_url=job.url,
            max_pages=job.max_pages,
            user_agent=user_agent,
            ignore_query=job.ignore_url_parameters,
            take_screenshots=job.take_screenshots,
            robots=robots or RobotsDirectives(),
            sampling=SampledCrawlPolicy(quota=sample_quota) if job.sampled_crawl else None,
            seen=seen,
            discovered=set(seen),
            pages_saved=len(seen),
        )

    def normalize(self, url: str) -> str:
        return normalize_url(url, self.ignore_query)

    def is_allowed_by_robots(self, url: str) -> bool:
        return self.robots.is_url_allowed(url, self.user_agent)


class PageHandler:
    def __init__(
        self,
        store: CrawlStore,
        state: CrawlState,
        link_graph: Optional[LinkGraph] = None,
        screenshot_dir: str = "storage/screenshots",
    ) -> None:
        self.store = store
        self.state = state
        self.link_graph = link_graph or LinkGraph(
            store,
            state.job_id,
            state.job_url,
            domain_state=state.domain,
            ignore_query=state.ignore_query,
        )
        self.screenshot_dir = Path(screenshot_dir)
        self.log = job_logger(state.job_id)

    def _skip(self, reason: str, message: str) -> None:
        SKIPPED_PAGES.labels(reason=reason).inc()
        self.log.info(message)

    async def handle_page(self, context: PageContext) -> None:
        state = self.state
        request, rendered = context.request, context.page
        address = state.normalize(rendered.loaded_url or request.url)

        state.domain.observe_first_page(request.url, rendered.loaded_url)

        # --------------------------
        # 1) Admission
        # --------------------------
        if address in state.seen:
            self._skip("duplicate", f"Skipping duplicate: {address}")
            return

        if state.pages_saved >= state.max_pages:
            self._skip("max_pages", f"Reached max pages limit ({state.max_pages}); skipping {address}")
            return

        if not state.is_allowed_by_robots(address):
            self._skip("robots", f"Skipping disallowed by robots.txt for {state.user_agent}: {address}")
            return

        if state.sampling is not None and not state.sampling.should_admit(address):
            self._skip("sampled", f"Skipping {address}: post type quota reached")
            return

        state.seen.add(address)
        state.discovered.add(address)

        # --------------------------
        # 2) Extraction
        # --------------------------
        base_url = rendered.loaded_url or request.url
        try:
            data = extract_page_data(rendered.html)
            metrics = compute_page_metrics(
                data,
                rendered.html,
                rendered.response_time_ms,
                headers=rendered.headers,
                http_version=rendered.http_version,
            )
            anchors = extract_anchors(base_url, rendered.html)
        except Exception as exc:
            self._skip("extraction_error", f"Could not extract {address}: {exc}")
            return

        if state.sampling is not None:
            post_type = state.sampling.record_processed(address, data.title)
            if post_type is not None:
                count = state.sampling.counters[post_type]
                self.log.info(f"Post type '{post_type}': {count}/{state.sampling.quota} pages crawled")

        screenshot_url = None
        if state.take_screenshots and rendered.screenshot:
            screenshot_url = await self._save_screenshot(address, rendered.screenshot)

        # --------------------------
        # 3) Storage
        # --------------------------
        page_indexability = indexability(data, rendered.headers)
        try:
            page = await self.store.create_page(
                state.job_id,
                address,
                url_encoded_address=quote(address, safe="-_.!~*'()"),
                content_type=header_value(rendered.headers, "content-type") or "text/html",
                status_code=rendered.status_code,
                status=status_text(rendered.status_code),
                indexability=page_indexability,
                indexability_status=page_indexability,
                title=data.title,
                meta_description=data.meta_description,
                meta_keywords=data.meta_keywords,
                meta_robots=data.meta_robots,
                h1=data.h1[0] if data.h1 else None,
                canonical_link_element=data.canonical_url,
                rel_next=data.rel_next,
                rel_prev=data.rel_prev,
                amphtml_link_element=data.amphtml,
                mobile_alternate_link=data.mobile_alternate,
                language=data.language,
                size_bytes=metrics.size_bytes,
                transferred_bytes=metrics.transferred_bytes,
                co2_mg=metrics.co2_mg,
                carbon_rating=metrics.carbon_rating,
                response_time=metrics.response_time_ms,
                word_count=metrics.word_count,
                sentence_count=metrics.sentence_count,
                avg_words_per_sentence=metrics.avg_words_per_sentence,
                flesch_reading_ease_score=metrics.flesch_reading_ease_score,
                readability=metrics.readability,
                text_ratio=metrics.text_ratio,
                crawl_depth=request.depth,
                folder_depth=folder_depth(address),
                last_modified=metrics.last_modified,
                http_version=metrics.http_version,
                cookies=metrics.cookies,
                html_content=rendered.html,
                screenshot_url=screenshot_url,
            )
        except IntegrityError:
            self._skip("duplicate", f"Page already stored: {address}")
            return

        state.pages_saved += 1
        CRAWLED_PAGES.inc()

        # --------------------------
        # 4) Links and frontier
        # --------------------------
        internal_targets = await self.link_graph.record_page_links(page, anchors)
        enqueued = await context.enqueue(self._frontier_candidates(internal_targets, request.depth + 1))

        await self.store.update_job_progress(state.job_id, address, len(state.discovered))
        self.log.info(
            f"Crawled: {address} (status={rendered.status_code}, links={len(anchors)}, queued={enqueued})"
        )

    def _frontier_candidates(self, targets: Iterable[str], depth: int) -> List[CrawlRequest]:
        state = self.state
        requests: List[CrawlRequest] = []
        queued: Set[str] = set()

        for target in targets:
            if target in state.seen or target in queued:
                continue
            if not is_internal_url(target, state.job_url, state.domain):
                continue
            if not state.is_allowed_by_robots(target):
                continue
            # optimistic; handle_page re-checks once the counters have moved
            if state.sampling is not None and not state.sampling.should_admit(target):
                continue

            queued.add(target)
            state.discovered.add(target)
            requests.append(CrawlRequest(url=target, depth=depth, unique_key=target))

        return requests

    async def handle_failure(self, request: CrawlRequest, error: Exception) -> None:
        self.log.warning(f"Failed to crawl {request.url}: {error}")

    async def _save_screenshot(self, address: str, image: bytes) -> Optional[str]:
        parts = urlsplit(address)
        filename = (
            f"{parts.hostname}_{re.sub(r'[^a-zA-Z0-9]', '_', parts.path)}_"
            f"{int(time.time() * 1000)}.png"
        )
        directory = self.screenshot_dir / str(self.state.job_id)
        try:
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread((directory / filename).write_bytes, image)
        except OSError as exc:
            self.log.warning(f"Screenshot could not be saved for {address}: {exc}")
            return None
        return f"/screenshots/{self.state.job_id}/{filename}"
