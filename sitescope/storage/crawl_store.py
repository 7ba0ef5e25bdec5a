"""Persistence for crawl jobs and their results.

Every public coroutine runs through :meth:`CrawlStore._with_retry`: up to
``max_retries`` attempts, ``retry_delay * attempt`` seconds apart, with the
connection pool dropped before each retry. Integrity and lookup errors are
not retried. When the attempts run out a :class:`PersistenceError` is raised
and the caller fails the job.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from loguru import logger
from tortoise.exceptions import DoesNotExist, IntegrityError, MultipleObjectsReturned, ValidationError

from sitescope.exceptions import PersistenceError
from sitescope.monitoring.metrics_server import STORE_RETRIES
from sitescope.sitemaps import FROM_WELL_KNOWN, SitemapRecord
from sitescope.storage.models import CrawlJob, ExternalLink, Inlink, Page, Sitemap
from sitescope.storage.models.crawl_job_model import (
    POLLABLE_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RUNNING,
)
from sitescope.storage.models.inlink_model import EDGE_INTERNAL
from sitescope.storage.postgres.postgres_init import reconnect as reconnect_database
from sitescope.utils.robots import RobotsResult


T = TypeVar("T")

NON_RETRYABLE = (IntegrityError, DoesNotExist, MultipleObjectsReturned, ValidationError)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CrawlStore:
    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        reconnect: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._reconnect = reconnect or reconnect_database

    async def _with_retry(
        self, operation: str, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except NON_RETRYABLE:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning(
                    f"{operation} failed (attempt {attempt}/{self.max_retries}): {exc}"
                )
                if attempt == self.max_retries:
                    break

                STORE_RETRIES.labels(operation=operation).inc()
                await asyncio.sleep(self.retry_delay * attempt)
                try:
                    await self._reconnect()
                except Exception as reconnect_error:
                    logger.error(f"Database reconnect failed: {reconnect_error}")

        raise PersistenceError(
            f"{operation} failed after {self.max_retries} attempts: {last_error}",
            cause=last_error,
        )

    # --------------------------
    #  Jobs
    # --------------------------
    async def find_next_job(self) -> Optional[CrawlJob]:
        async def _query() -> Optional[CrawlJob]:
            return (
                await CrawlJob.filter(status__in=POLLABLE_STATUSES, can_continue=True)
                .order_by("created_at")
                .first()
            )

        return await self._with_retry("find_next_job", _query)

    async def mark_running(self, job: CrawlJob) -> CrawlJob:
        async def _update() -> CrawlJob:
            job.status = STATUS_RUNNING
            if job.started_at is None:
                job.started_at = _now()
            if job.pages_remaining is None:
                job.pages_remaining = max(0, job.max_pages - job.pages_crawled)
            await job.save(update_fields=["status", "started_at", "pages_remaining", "updated_at"])
            return job

        return await self._with_retry("mark_running", _update)

    async def save_robots_result(self, job_id, result: RobotsResult) -> None:
        values = {
            "robots_txt_url": result.url,
            "robots_txt_content": result.content,
            "robots_txt_status_code": result.status_code,
            "robots_txt_response_time": result.response_time_ms,
            "robots_txt_fetched_at": result.fetched_at,
            "robots_rules": result.directives.to_dict(),
            "robots_crawl_delay": result.directives.crawl_delay,
        }
        await self._with_retry(
            "save_robots_result", CrawlJob.filter(id=job_id).update, **values
        )

    async def update_job_progress(self, job_id, last_crawled_url: str, total_unique_found: int) -> int:
        async def _update() -> int:
            job = await CrawlJob.get(id=job_id)
            count = await Page.filter(job_id=job_id).count()
            await CrawlJob.filter(id=job_id).update(
                pages_crawled=count,
                pages_remaining=max(0, job.max_pages - count),
                last_crawled_url=last_crawled_url,
                total_unique_pages_found=max(count, total_unique_found),
            )
            return count

        return await self._with_retry("update_job_progress", _update)

    async def complete_job(self, job_id) -> int:
        async def _update() -> int:
            count = await Page.filter(job_id=job_id).count()
            await CrawlJob.filter(id=job_id).update(
                status=STATUS_COMPLETED,
                completed_at=_now(),
                pages_crawled=count,
                pages_remaining=0,
            )
            return count

        return await self._with_retry("complete_job", _update)

    async def fail_job(self, job_id, error_message: str) -> None:
        await self._with_retry(
            "fail_job",
            CrawlJob.filter(id=job_id).update,
            status=STATUS_FAILED,
            completed_at=_now(),
            error_message=error_message,
        )

    # --------------------------
    #  Sitemaps
    # --------------------------
    async def save_sitemaps(self, job_id, records: Sequence[SitemapRecord]) -> int:
        """Persist a discovery forest. Parents precede children in ``records``,
        so arena ids can be mapped to row ids in one pass. Well-known paths that
        do not exist are not stored."""

        async def _save() -> int:
            row_ids: Dict[int, int] = {}
            saved = 0
            for record in records:
                if not record.ok and record.discovered_from == FROM_WELL_KNOWN:
                    continue

                parent_id = row_ids.get(record.parent_id) if record.parent_id is not None else None
                sitemap, _ = await Sitemap.update_or_create(
                    defaults={
                        "parent_id": parent_id,
                        "content": record.content,
                        "status_code": record.status_code,
                        "response_time": record.response_time_ms,
                        "url_count": record.url_count,
                        "urls": [entry.to_dict() for entry in record.urls],
                        "last_mod": record.last_mod,
                        "change_freq": record.parsed.change_freq,
                        "priority": record.parsed.priority,
                        "discovered_from": record.discovered_from,
                        "error": record.error,
                    },
                    job_id=job_id,
                    url=record.url,
                )
                row_ids[record.id] = sitemap.id
                saved += 1

            await CrawlJob.filter(id=job_id).update(sitemaps_discovered=saved)
            return saved

        return await self._with_retry("save_sitemaps", _save)

    # --------------------------
    #  Pages and edges
    # --------------------------
    async def list_page_addresses(self, job_id) -> Set[str]:
        async def _query() -> Set[str]:
            rows = await Page.filter(job_id=job_id).values_list("address", flat=True)
            return set(rows)

        return await self._with_retry("list_page_addresses", _query)

    async def create_page(self, job_id, address: str, **fields: Any) -> Page:
        return await self._with_retry(
            "create_page", Page.create, job_id=job_id, address=address, **fields
        )

    async def get_or_create_external_link(self, job_id, address: str) -> ExternalLink:
        async def _get_or_create() -> ExternalLink:
            link, _ = await ExternalLink.get_or_create(
                job_id=job_id,
                address=address,
                defaults={"status": "Not Checked"},
            )
            return link

        return await self._with_retry("get_or_create_external_link", _get_or_create)

    async def create_edges(self, edges: List[Inlink]) -> None:
        if not edges:
            return
        await self._with_retry("create_edges", Inlink.bulk_create, edges)

    async def list_pages(self, job_id) -> List[Tuple[int, str]]:
        async def _query() -> List[Tuple[int, str]]:
            rows = await Page.filter(job_id=job_id).order_by("id").values_list("id", "address")
            return [(page_id, address) for page_id, address in rows]

        return await self._with_retry("list_pages", _query)

    async def list_edges(self, job_id) -> List[Dict[str, Any]]:
        async def _query() -> List[Dict[str, Any]]:
            return await Inlink.filter(job_id=job_id).values(
                "id",
                "type",
                "from_address",
                "to_address",
                "from_page_id",
                "to_page_id",
                "to_external_id",
            )

        return await self._with_retry("list_edges", _query)

    async def resolve_edge_targets(self, job_id, page_ids: Dict[str, int]) -> int:
        """Point internal edges at the page record of their target address."""

        async def _update() -> int:
            resolved = 0
            for address, page_id in page_ids.items():
                resolved += await Inlink.filter(
                    job_id=job_id,
                    type=EDGE_INTERNAL,
                    to_address=address,
                    to_page_id__isnull=True,
                ).update(to_page_id=page_id)
            return resolved

        return await self._with_retry("resolve_edge_targets", _update)

    async def update_page_link_metrics(self, page_id: int, **metrics: Any) -> None:
        await self._with_retry(
            "update_page_link_metrics", Page.filter(id=page_id).update, **metrics
        )

    async def list_external_link_ids(self, job_id) -> List[int]:
        async def _query() -> List[int]:
            return list(await ExternalLink.filter(job_id=job_id).values_list("id", flat=True))

        return await self._with_retry("list_external_link_ids", _query)

    async def update_external_inlinks(self, counts: Iterable[Tuple[int, int]]) -> None:
        async def _update() -> None:
            for link_id, inlinks in counts:
                await ExternalLink.filter(id=link_id).update(inlinks=inlinks)

        await self._with_retry("update_external_inlinks", _update)
