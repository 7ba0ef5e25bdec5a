from __future__ import annotations

import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlsplit

import httpx
from loguru import logger

from sitescope.monitoring.metrics_server import ROBOTS_FETCHES


@dataclass
class AgentRules:
    disallow: List[str] = field(default_factory=list)
    allow: List[str] = field(default_factory=list)
    crawl_delay: Optional[float] = None


@dataclass
class RobotsDirectives:
    """Per-agent rule blocks parsed from a robots.txt file.

    Each agent's rules are independent; ``*`` is only consulted as a fallback
    when checking a path.
    """

    user_agents: Dict[str, AgentRules] = field(default_factory=dict)
    sitemap_urls: List[str] = field(default_factory=list)
    crawl_delay: Optional[float] = None

    def is_allowed(self, path: str, user_agent: str = "*") -> bool:
        agents = [product_token(user_agent), "*"]

        for agent in agents:
            rules = self.user_agents.get(agent)
            if rules is None:
                continue

            for disallow_pattern in rules.disallow:
                if path_matches(path, disallow_pattern):
                    # a strictly longer matching Allow wins
                    return any(
                        path_matches(path, allow_pattern)
                        and len(allow_pattern) > len(disallow_pattern)
                        for allow_pattern in rules.allow
                    )

            # explicit allow list present but nothing matched
            if rules.allow:
                return any(path_matches(path, pattern) for pattern in rules.allow)

        return True

    def is_url_allowed(self, url: str, user_agent: str = "*") -> bool:
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return self.is_allowed(path, user_agent)

    def get_crawl_delay(self, user_agent: str = "*") -> Optional[float]:
        for agent in (product_token(user_agent), "*"):
            rules = self.user_agents.get(agent)
            if rules is not None and rules.crawl_delay is not None:
                return rules.crawl_delay
        return self.crawl_delay

    def to_dict(self) -> dict:
        return {
            "userAgents": {agent: asdict(rules) for agent, rules in self.user_agents.items()},
            "sitemapUrls": list(self.sitemap_urls),
            "crawlDelay": self.crawl_delay,
        }


def product_token(user_agent: str) -> str:
    """``SiteScope-Bot/1.0 (+https://...)`` -> ``sitescope-bot``, the name robots.txt groups use."""
    return user_agent.split("/", 1)[0].strip().lower() or "*"


def path_matches(path: str, pattern: str) -> bool:
    """Match a robots.txt pattern: ``*`` is a wildcard, a trailing ``$`` anchors
    the end, anything else is a prefix match."""
    if not pattern:
        return False

    anchored = pattern.endswith("$")
    body = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    regex = "^" + regex + ("$" if anchored else "")
    return re.match(regex, path) is not None


def parse_robots_txt(content: str) -> RobotsDirectives:
    directives = RobotsDirectives()
    current_agent: Optional[str] = None

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue

        directive, value = line.split(":", 1)
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "user-agent":
            current_agent = product_token(value)
            directives.user_agents.setdefault(current_agent, AgentRules())

        elif directive in ("disallow", "allow"):
            # an empty value carries no rule
            if current_agent is None or not value:
                continue
            rules = directives.user_agents[current_agent]
            getattr(rules, directive).append(value)

        elif directive == "crawl-delay":
            try:
                delay = float(value)
            except ValueError:
                continue
            if current_agent is not None:
                directives.user_agents[current_agent].crawl_delay = delay
            directives.crawl_delay = delay

        elif directive == "sitemap":
            if value and value not in directives.sitemap_urls:
                directives.sitemap_urls.append(value)

    return directives


@dataclass
class RobotsResult:
    url: str
    content: Optional[str]
    status_code: Optional[int]
    response_time_ms: int
    directives: RobotsDirectives = field(default_factory=RobotsDirectives)
    error: Optional[str] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def sitemap_urls(self) -> List[str]:
        return self.directives.sitemap_urls


def robots_url_for(base_url: str) -> str:
    parsed = urlsplit(base_url)
    return f"{parsed.scheme or 'http'}://{parsed.netloc.lower()}/robots.txt"


class RobotsFetcher:
    """Fetch robots.txt for a site; never raises."""

    def __init__(self, client: httpx.AsyncClient, user_agent: str, timeout: float = 10):
        self.client = client
        self.user_agent = user_agent
        self.timeout = timeout

    async def fetch(self, base_url: str) -> RobotsResult:
        robots_url = robots_url_for(base_url)
        start = time.perf_counter()
        logger.info(f"Fetching robots.txt from: {robots_url}")

        try:
            response = await self.client.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.warning(f"Failed to fetch robots.txt from {robots_url}: {exc}")
            ROBOTS_FETCHES.labels(outcome="error").inc()
            return RobotsResult(
                url=robots_url,
                content=None,
                status_code=None,
                response_time_ms=_elapsed_ms(start),
                error=str(exc) or exc.__class__.__name__,
            )

        response_time_ms = _elapsed_ms(start)

        if not response.is_success:
            logger.info(f"robots.txt not found or inaccessible: {response.status_code}")
            ROBOTS_FETCHES.labels(outcome="missing").inc()
            return RobotsResult(
                url=robots_url,
                content=None,
                status_code=response.status_code,
                response_time_ms=response_time_ms,
                error=f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        content = response.text
        directives = parse_robots_txt(content)
        ROBOTS_FETCHES.labels(outcome="ok").inc()
        logger.info(
            f"robots.txt fetched successfully. Found {len(directives.sitemap_urls)} sitemap(s)"
        )

        return RobotsResult(
            url=robots_url,
            content=content,
            status_code=response.status_code,
            response_time_ms=response_time_ms,
            directives=directives,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
