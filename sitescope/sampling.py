"""Sampled crawling: keep deep pages of the same kind to a small quota.

Candidate URLs are labelled with a post type by an ordered list of path rules,
then title keywords, then a depth-based default. Pages at level 0 or 1 are
always admitted; deeper pages only while their post type's counter is under
the quota. Counters move when a page is processed, never when it is enqueued.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple
from urllib.parse import urlsplit

BLOG_POST = "blog-post"
PRODUCT = "product"
CATEGORY = "category"
SERVICE = "service"
ABOUT = "about"
DOCUMENTATION = "documentation"
HOMEPAGE = "homepage"
SECTION = "section"
CONTENT = "content"
OTHER = "other"

DEFAULT_QUOTA = 3


@dataclass(frozen=True)
class PathRule:
    pattern: re.Pattern
    category: str

    def matches(self, path: str) -> bool:
        return self.pattern.search(path) is not None


def _rule(regex: str, category: str) -> PathRule:
    return PathRule(re.compile(regex), category)


# evaluated top to bottom, first match wins
PATH_RULES: Tuple[PathRule, ...] = (
    _rule(r"/(blog|post|article|news)/.*\d{4}", BLOG_POST),
    _rule(r"/\d{4}/\d{2}/\d{2}/", BLOG_POST),
    _rule(r"/(blog|post|article|news)/", BLOG_POST),
    _rule(r"/(product|item|shop)/", PRODUCT),
    _rule(r"/p/|/products/", PRODUCT),
    _rule(r"/(category|tag|archive|topics)/", CATEGORY),
    _rule(r"/cat/|/tags/", CATEGORY),
    _rule(r"/(services|solutions|features)/", SERVICE),
    _rule(r"/(about|company|team|contact)/", ABOUT),
    _rule(r"/(docs|help|support|faq|guide)/", DOCUMENTATION),
    _rule(r"^/?$", HOMEPAGE),
)

TITLE_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("blog", "post", "article"), BLOG_POST),
    (("product", "buy", "price"), PRODUCT),
    (("category", "archive"), CATEGORY),
)


def url_level(url: str) -> int:
    """Number of non-empty path segments; the root is level 0."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return 1
    return len([segment for segment in path.split("/") if segment])


def detect_post_type(
    url: str,
    page_title: Optional[str] = None,
    path_rules: Sequence[PathRule] = PATH_RULES,
) -> str:
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return OTHER

    for rule in path_rules:
        if rule.matches(path):
            return rule.category

    if page_title:
        title = page_title.lower()
        for keywords, category in TITLE_RULES:
            if any(keyword in title for keyword in keywords):
                return category

    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return HOMEPAGE
    if len(segments) == 1:
        return SECTION
    return CONTENT


@dataclass
class SampledCrawlPolicy:
    quota: int = DEFAULT_QUOTA
    counters: Counter = field(default_factory=Counter)

    def should_admit(self, url: str) -> bool:
        if url_level(url) <= 1:
            return True
        return self.counters[detect_post_type(url)] < self.quota

    def record_processed(self, url: str, page_title: Optional[str] = None) -> Optional[str]:
        """Count a processed page against its post type; shallow pages are free."""
        if url_level(url) <= 1:
            return None

        post_type = detect_post_type(url, page_title)
        self.counters[post_type] += 1
        return post_type
