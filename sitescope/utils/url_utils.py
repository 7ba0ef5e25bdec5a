from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Set
from urllib.parse import urlsplit, urlunsplit

from sitescope.utils.filters import is_crawlable_link


def normalize_url(url: str, ignore_query: bool = False) -> str:
    """Return the identity key of ``url`` within a job.

    The fragment is always dropped and the query string only when
    ``ignore_query`` is set; both happen before the trailing slash of a
    non-root path is collapsed. Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url

    if not parts.scheme or not parts.netloc:
        return url

    query = "" if ignore_query else parts.query
    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def get_hostname(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def strip_www(hostname: str) -> str:
    hostname = hostname.lower()
    return hostname[4:] if hostname.startswith("www.") else hostname


def is_matching_domain(hostname1: str, hostname2: str) -> bool:
    """Treat ``example.com`` and ``www.example.com`` as the same site."""
    if not hostname1 or not hostname2:
        return False
    return strip_www(hostname1) == strip_www(hostname2)


def _path_segments(url: str) -> list[str]:
    try:
        path = urlsplit(url).path
    except ValueError:
        return []
    return [segment for segment in path.split("/") if segment]


def folder_depth(url: str) -> int:
    return len(_path_segments(url))


@dataclass
class DomainState:
    """Hostnames considered part of the crawled site for one job.

    The first successfully fetched page makes the requested hostname and the
    hostname actually reached after redirects mutually valid, so a bare
    domain redirecting to ``www`` does not turn the rest of the site external.
    """

    job_hostname: str
    valid_hostnames: Set[str] = field(default_factory=set)
    initialized: bool = False

    def __post_init__(self) -> None:
        self.job_hostname = self.job_hostname.lower()
        self.valid_hostnames.add(self.job_hostname)

    @classmethod
    def for_job_url(cls, job_url: str) -> "DomainState":
        return cls(job_hostname=get_hostname(job_url))

    def observe_first_page(self, requested_url: str, loaded_url: Optional[str]) -> None:
        if self.initialized:
            return

        requested = get_hostname(requested_url)
        reached = get_hostname(loaded_url or requested_url)
        for hostname in (requested, reached):
            if hostname:
                self.valid_hostnames.add(hostname)
        self.initialized = True

    def is_valid_hostname(self, hostname: str) -> bool:
        hostname = hostname.lower()
        if not hostname:
            return False
        if hostname in self.valid_hostnames:
            return True

        if any(is_matching_domain(hostname, known) for known in self.valid_hostnames):
            self.valid_hostnames.add(hostname)
            return True
        return False


def is_internal_host(url: str, job_url: str, domain_state: Optional[DomainState] = None) -> bool:
    """Hostname-only check used to label edges internal or external."""
    hostname = get_hostname(url)
    if not hostname:
        return False

    job_hostname = get_hostname(job_url)
    if hostname == job_hostname or is_matching_domain(hostname, job_hostname):
        if domain_state is not None:
            domain_state.valid_hostnames.add(hostname)
        return True

    return domain_state is not None and domain_state.is_valid_hostname(hostname)


def is_internal_url(url: str, job_url: str, domain_state: Optional[DomainState] = None) -> bool:
    """True when ``url`` is an http(s) page of the job's site worth crawling."""
    if not is_crawlable_link(url):
        return False
    return is_internal_host(url, job_url, domain_state)
