from __future__ import annotations

import math
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger

from sitescope.parsing.html_extractor import Anchor
from sitescope.storage.crawl_store import CrawlStore
from sitescope.storage.models import Inlink, Page
from sitescope.storage.models.inlink_model import EDGE_EXTERNAL, EDGE_INTERNAL
from sitescope.utils.url_utils import DomainState, is_internal_host, normalize_url


def link_score(inlinks: int, outlinks: int) -> float:
    return math.log(inlinks + 1) * 0.8 + math.log(outlinks + 1) * 0.2


@dataclass
class LinkMetrics:
    inlinks: int = 0
    unique_inlinks: int = 0
    outlinks: int = 0
    unique_outlinks: int = 0
    external_outlinks: int = 0
    unique_external_outlinks: int = 0
    link_score: float = 0.0
    percent_of_total: float = 0.0

    def as_fields(self) -> Dict[str, Any]:
        return asdict(self)


def compute_link_metrics(
    incoming: Sequence[Mapping[str, Any]],
    outgoing: Sequence[Mapping[str, Any]],
    total_pages: int,
) -> LinkMetrics:
    external = [edge for edge in outgoing if edge["type"] == EDGE_EXTERNAL]

    metrics = LinkMetrics(
        inlinks=len(incoming),
        unique_inlinks=len({edge["from_address"] for edge in incoming}),
        outlinks=len(outgoing),
        unique_outlinks=len({edge["to_address"] for edge in outgoing}),
        external_outlinks=len(external),
        unique_external_outlinks=len({edge["to_address"] for edge in external}),
    )
    metrics.link_score = link_score(metrics.inlinks, metrics.outlinks)
    metrics.percent_of_total = metrics.inlinks / total_pages * 100 if total_pages > 0 else 0.0
    return metrics


class LinkGraph:
    """Edges of one job: recorded per page while crawling, scored once at the end."""

    def __init__(
        self,
        store: CrawlStore,
        job_id,
        job_url: str,
        domain_state: Optional[DomainState] = None,
        ignore_query: bool = False,
    ) -> None:
        self.store = store
        self.job_id = job_id
        self.job_url = job_url
        self.domain_state = domain_state
        self.ignore_query = ignore_query

    async def record_page_links(self, page: Page, anchors: Sequence[Anchor]) -> List[str]:
        """Store one edge per anchor; returns the normalized internal targets in page order."""
        edges: List[Inlink] = []
        internal_targets: List[str] = []
        external_ids: Dict[str, int] = {}

        for anchor in anchors:
            internal = is_internal_host(anchor.href, self.job_url, self.domain_state)
            edge = Inlink(
                job_id=self.job_id,
                type=EDGE_INTERNAL if internal else EDGE_EXTERNAL,
                from_address=page.address,
                anchor_text=anchor.anchor_text,
                alt_text=anchor.alt_text,
                follow=anchor.follow,
                target=anchor.target,
                rel=anchor.rel,
                link_position=anchor.position,
                link_origin=anchor.origin,
                from_page_id=page.id,
            )

            if internal:
                edge.to_address = normalize_url(anchor.href, self.ignore_query)
                internal_targets.append(edge.to_address)
            else:
                edge.to_address = anchor.href
                if anchor.href not in external_ids:
                    external = await self.store.get_or_create_external_link(self.job_id, anchor.href)
                    external_ids[anchor.href] = external.id
                edge.to_external_id = external_ids[anchor.href]

            edges.append(edge)

        await self.store.create_edges(edges)
        logger.debug(
            f"Recorded {len(edges)} links from {page.address} "
            f"({len(internal_targets)} internal, {len(external_ids)} external targets)"
        )
        return internal_targets

    async def finalize(self) -> int:
        """Recompute every aggregate from the stored edges. Safe to run again."""
        pages = await self.store.list_pages(self.job_id)
        page_ids = {address: page_id for page_id, address in pages}

        resolved = await self.store.resolve_edge_targets(self.job_id, page_ids)
        logger.info(f"Resolved {resolved} internal links to crawled pages")

        incoming: Dict[int, List[Mapping[str, Any]]] = defaultdict(list)
        outgoing: Dict[int, List[Mapping[str, Any]]] = defaultdict(list)
        external_counts: Counter = Counter()

        for edge in await self.store.list_edges(self.job_id):
            outgoing[edge["from_page_id"]].append(edge)
            if edge["to_page_id"] is not None:
                incoming[edge["to_page_id"]].append(edge)
            if edge["to_external_id"] is not None:
                external_counts[edge["to_external_id"]] += 1

        total_pages = len(pages)
        for page_id, _ in pages:
            metrics = compute_link_metrics(incoming[page_id], outgoing[page_id], total_pages)
            await self.store.update_page_link_metrics(page_id, **metrics.as_fields())

        external_ids = await self.store.list_external_link_ids(self.job_id)
        await self.store.update_external_inlinks(
            [(link_id, external_counts[link_id]) for link_id in external_ids]
        )

        logger.info(
            f"Link scores calculated for {total_pages} pages and {len(external_ids)} external links"
        )
        return total_pages
