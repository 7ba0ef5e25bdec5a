from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup


@dataclass
class PageData:
    title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_keywords: Optional[str] = None
    meta_robots: Optional[str] = None
    language: Optional[str] = None
    canonical_url: Optional[str] = None
    rel_next: Optional[str] = None
    rel_prev: Optional[str] = None
    amphtml: Optional[str] = None
    mobile_alternate: Optional[str] = None
    h1: List[str] = field(default_factory=list)
    h2: List[str] = field(default_factory=list)
    h3: List[str] = field(default_factory=list)
    text: str = ""
    link_count: int = 0
    image_count: int = 0


@dataclass
class Anchor:
    href: str
    anchor_text: str
    alt_text: Optional[str]
    rel: Optional[str]
    target: Optional[str]
    follow: bool
    position: int
    origin: str = "html"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": name}) or soup.find("meta", attrs={"property": name})
    if tag is None:
        return None
    content = tag.get("content")
    return content.strip() if content else None


def _link_href(soup: BeautifulSoup, rel: str) -> Optional[str]:
    for tag in soup.find_all("link", href=True):
        rels = tag.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        if rel in [value.lower() for value in rels]:
            return tag["href"].strip()
    return None


def extract_page_data(html: str) -> PageData:
    soup = _soup(html)
    data = PageData()

    if soup.title and soup.title.string:
        data.title = soup.title.string.strip() or None

    data.meta_description = _meta_content(soup, "description")
    data.meta_keywords = _meta_content(soup, "keywords")
    data.meta_robots = _meta_content(soup, "robots")

    html_tag = soup.find("html")
    if html_tag is not None and html_tag.get("lang"):
        data.language = html_tag["lang"].strip()

    data.canonical_url = _link_href(soup, "canonical")
    data.rel_next = _link_href(soup, "next")
    data.rel_prev = _link_href(soup, "prev")
    data.amphtml = _link_href(soup, "amphtml")
    data.mobile_alternate = _link_href(soup, "alternate")

    for level in ("h1", "h2", "h3"):
        headings = [tag.get_text(" ", strip=True) for tag in soup.find_all(level)]
        setattr(data, level, [text for text in headings if text])

    data.link_count = len(soup.find_all("a", href=True))
    data.image_count = len(soup.find_all("img"))

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    body = soup.body or soup
    data.text = " ".join(body.get_text(separator=" ", strip=True).split())

    return data


def extract_anchors(base_url: str, html: str) -> List[Anchor]:
    """
    Every ``a[href]`` resolved against ``base_url``; non-http(s) targets are dropped.
    ``position`` is the 1-based index among all anchors of the page.
    """
    anchors: List[Anchor] = []
    soup = _soup(html)

    for index, tag in enumerate(soup.find_all("a", href=True), start=1):
        href = tag["href"].strip()
        if not href:
            continue

        full_url = urljoin(base_url, href)
        if urlsplit(full_url).scheme not in ("http", "https"):
            continue

        rel_values = tag.get("rel") or []
        if isinstance(rel_values, str):
            rel_values = rel_values.split()
        rel = " ".join(rel_values) or None

        image = tag.find("img")
        alt_text = image.get("alt") if image is not None else None

        anchors.append(
            Anchor(
                href=full_url,
                anchor_text=tag.get_text(" ", strip=True),
                alt_text=alt_text,
                rel=rel,
                target=tag.get("target"),
                follow="nofollow" not in [value.lower() for value in rel_values],
                position=index,
            )
        )

    return anchors
