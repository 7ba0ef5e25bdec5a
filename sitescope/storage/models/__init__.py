from .crawl_job_model import CrawlJob
from .page_model import Page
from .inlink_model import Inlink
from .external_link_model import ExternalLink
from .sitemap_model import Sitemap

__all__ = [
    "CrawlJob",
    "Page",
    "Inlink",
    "ExternalLink",
    "Sitemap",
]
