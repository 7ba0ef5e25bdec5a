"""Defensive sitemap parsing.

Sitemaps in the wild are frequently not well-formed XML, so blocks are located
with regular expressions and every ``<url>``/``<sitemap>`` entry is handled on
its own. A broken entry is skipped; the rest of the document is kept.
"""

from __future__ import annotations

import gzip
import html
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

SITEMAP_INDEX = "index"
SITEMAP_URLSET = "urlset"
SITEMAP_UNKNOWN = "unknown"

_FLAGS = re.IGNORECASE | re.DOTALL

_SITEMAP_BLOCK_RE = re.compile(r"<(?:\w+:)?sitemap(?:\s[^>]*)?>(.*?)</(?:\w+:)?sitemap\s*>", _FLAGS)
_URL_BLOCK_RE = re.compile(r"<(?:\w+:)?url(?:\s[^>]*)?>(.*?)</(?:\w+:)?url\s*>", _FLAGS)


def _tag_re(tag: str) -> re.Pattern:
    return re.compile(rf"<(?:\w+:)?{tag}(?:\s[^>]*)?>(.*?)</(?:\w+:)?{tag}\s*>", _FLAGS)


_LOC_RE = _tag_re("loc")
_LASTMOD_RE = _tag_re("lastmod")
_CHANGEFREQ_RE = _tag_re("changefreq")
_PRIORITY_RE = _tag_re("priority")
_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)


@dataclass
class SitemapUrlEntry:
    loc: str
    lastmod: Optional[str] = None
    changefreq: Optional[str] = None
    priority: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "loc": self.loc,
            "lastmod": self.lastmod,
            "changefreq": self.changefreq,
            "priority": self.priority,
        }


@dataclass
class ParsedSitemap:
    kind: str = SITEMAP_UNKNOWN
    urls: List[SitemapUrlEntry] = field(default_factory=list)
    child_sitemap_urls: List[str] = field(default_factory=list)
    last_mod: Optional[datetime] = None
    change_freq: Optional[str] = None
    priority: Optional[float] = None

    @property
    def url_count(self) -> int:
        return len(self.urls)


def decode_sitemap_body(body: bytes, encoding: Optional[str] = None) -> str:
    """Decode a sitemap response body, inflating ``.xml.gz`` payloads."""
    if body[:2] == b"\x1f\x8b":
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError):
            return ""
    return body.decode(encoding or "utf-8", errors="replace")


def parse_sitemap_xml(content: str) -> ParsedSitemap:
    if not content:
        return ParsedSitemap()

    if _SITEMAP_BLOCK_RE.search(content):
        return parse_sitemap_index(content)
    if _URL_BLOCK_RE.search(content):
        return parse_urlset(content)
    return ParsedSitemap()


def parse_sitemap_index(content: str) -> ParsedSitemap:
    result = ParsedSitemap(kind=SITEMAP_INDEX)

    for match in _SITEMAP_BLOCK_RE.finditer(content):
        block = match.group(1)
        loc = _extract(_LOC_RE, block)
        if not loc:
            continue

        result.child_sitemap_urls.append(loc)
        if result.last_mod is None:
            result.last_mod = parse_lastmod(_extract(_LASTMOD_RE, block))

    return result


def parse_urlset(content: str) -> ParsedSitemap:
    result = ParsedSitemap(kind=SITEMAP_URLSET)

    for match in _URL_BLOCK_RE.finditer(content):
        block = match.group(1)
        loc = _extract(_LOC_RE, block)
        if not loc:
            continue

        entry = SitemapUrlEntry(
            loc=loc,
            lastmod=_extract(_LASTMOD_RE, block),
            changefreq=_extract(_CHANGEFREQ_RE, block),
            priority=_parse_priority(_extract(_PRIORITY_RE, block)),
        )

        if result.last_mod is None:
            result.last_mod = parse_lastmod(entry.lastmod)
        if result.change_freq is None:
            result.change_freq = entry.changefreq
        if result.priority is None:
            result.priority = entry.priority

        result.urls.append(entry)

    return result


def parse_lastmod(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _extract(pattern: re.Pattern, block: str) -> Optional[str]:
    match = pattern.search(block)
    if not match:
        return None

    value = match.group(1)
    cdata = _CDATA_RE.search(value)
    if cdata:
        value = cdata.group(1)
    value = html.unescape(value).strip()
    return value or None


def _parse_priority(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
