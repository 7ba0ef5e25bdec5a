from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Set
from urllib.parse import urlsplit

import httpx
from loguru import logger

from sitescope.monitoring.metrics_server import SITEMAP_FETCHES
from sitescope.parsing.sitemap_parser import (
    ParsedSitemap,
    SitemapUrlEntry,
    decode_sitemap_body,
    parse_sitemap_xml,
)
from sitescope.utils.url_utils import get_hostname, is_matching_domain


FROM_ROBOTS = "robots-txt"
FROM_WELL_KNOWN = "well-known-path"
FROM_SITEMAP_INDEX = "sitemap-index"

WELL_KNOWN_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemaps.xml",
    "/sitemap1.xml",
)

MAX_SITEMAPS = 50
MAX_SITEMAP_URLS = 2000


@dataclass
class SitemapRecord:
    """One fetched sitemap. ``id`` and ``parent_id`` are positions in the
    discovery arena, not database keys."""

    id: int
    url: str
    parent_id: Optional[int]
    discovered_from: str
    content: Optional[str] = None
    status_code: Optional[int] = None
    response_time_ms: int = 0
    parsed: ParsedSitemap = field(default_factory=ParsedSitemap)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.content is not None

    @property
    def urls(self) -> List[SitemapUrlEntry]:
        return self.parsed.urls

    @property
    def url_count(self) -> int:
        return self.parsed.url_count

    @property
    def child_sitemap_urls(self) -> List[str]:
        return self.parsed.child_sitemap_urls

    @property
    def last_mod(self) -> Optional[datetime]:
        return self.parsed.last_mod


@dataclass
class _DiscoveryRun:
    arena: List[SitemapRecord] = field(default_factory=list)
    processed: Set[str] = field(default_factory=set)


class SitemapCrawler:
    """Recursively fetch sitemap indexes and urlsets into a bounded forest."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str,
        *,
        max_sitemaps: int = MAX_SITEMAPS,
        timeout: float = 15,
    ) -> None:
        self.client = client
        self.user_agent = user_agent
        self.max_sitemaps = max_sitemaps
        self.timeout = timeout

    async def discover(
        self, base_url: str, robots_sitemap_urls: Iterable[str] = ()
    ) -> List[SitemapRecord]:
        logger.info(f"Starting sitemap discovery for: {base_url}")

        seeds = list(dict.fromkeys(url for url in robots_sitemap_urls if url))
        provenance = FROM_ROBOTS
        if not seeds:
            parsed = urlsplit(base_url)
            origin = f"{parsed.scheme}://{parsed.netloc}"
            seeds = [f"{origin}{path}" for path in WELL_KNOWN_SITEMAP_PATHS]
            provenance = FROM_WELL_KNOWN

        run = _DiscoveryRun()
        for url in seeds:
            if len(run.arena) >= self.max_sitemaps:
                logger.warning(f"Reached maximum sitemap limit ({self.max_sitemaps})")
                break
            await self._crawl(url, None, provenance, run)

        logger.info(f"Sitemap discovery complete. Found {len(run.arena)} sitemap(s)")
        return run.arena

    async def _crawl(
        self, url: str, parent_id: Optional[int], provenance: str, run: _DiscoveryRun
    ) -> None:
        record = await self.fetch_and_parse(url, parent_id, provenance, run)
        if record is None:
            return

        for child_url in record.child_sitemap_urls:
            if len(run.arena) >= self.max_sitemaps:
                break
            await self._crawl(child_url, record.id, FROM_SITEMAP_INDEX, run)

    async def fetch_and_parse(
        self,
        url: str,
        parent_id: Optional[int],
        provenance: str,
        run: _DiscoveryRun,
    ) -> Optional[SitemapRecord]:
        if url in run.processed:
            logger.debug(f"Skipping already processed sitemap: {url}")
            return None
        if len(run.arena) >= self.max_sitemaps:
            return None

        run.processed.add(url)
        record = SitemapRecord(
            id=len(run.arena),
            url=url,
            parent_id=parent_id,
            discovered_from=provenance,
        )
        run.arena.append(record)

        start = time.perf_counter()
        logger.debug(f"Fetching sitemap: {url}")
        try:
            response = await self.client.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/xml, text/xml, */*",
                },
                timeout=self.timeout,
            )
        except Exception as exc:
            record.response_time_ms = _elapsed_ms(start)
            record.error = str(exc) or exc.__class__.__name__
            SITEMAP_FETCHES.labels(outcome="error").inc()
            logger.warning(f"Failed to fetch sitemap {url}: {record.error}")
            return record

        record.response_time_ms = _elapsed_ms(start)
        record.status_code = response.status_code

        if not response.is_success:
            record.error = f"HTTP {response.status_code}: {response.reason_phrase}"
            SITEMAP_FETCHES.labels(outcome="missing").inc()
            logger.info(f"Sitemap not accessible: {url} ({response.status_code})")
            return record

        record.content = decode_sitemap_body(response.content, response.encoding)
        record.parsed = parse_sitemap_xml(record.content)
        SITEMAP_FETCHES.labels(outcome="ok").inc()
        logger.info(
            f"Parsed sitemap: {url} - {record.url_count} URLs, "
            f"{len(record.child_sitemap_urls)} child sitemaps"
        )
        return record


def extract_urls_for_crawling(
    sitemaps: Iterable[SitemapRecord], base_url: str, limit: int = MAX_SITEMAP_URLS
) -> List[str]:
    """Flatten urlset entries of the forest into same-site, deduplicated URLs."""
    base_hostname = get_hostname(base_url)
    urls: dict[str, None] = {}

    for sitemap in sitemaps:
        for entry in sitemap.urls:
            hostname = get_hostname(entry.loc)
            if not hostname:
                logger.debug(f"Skipping invalid URL from sitemap: {entry.loc}")
                continue
            if hostname == base_hostname or is_matching_domain(hostname, base_hostname):
                urls.setdefault(entry.loc, None)

    extracted = list(urls)
    logger.info(f"Extracted {len(extracted)} URLs from sitemaps for crawling")
    return extracted[:limit]


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
