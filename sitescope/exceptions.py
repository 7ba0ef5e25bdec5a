"""Error taxonomy for the crawl engine.

Discovery failures (robots.txt, sitemaps) never raise; they degrade to empty
results. Per-page render failures surface as :class:`RenderError` and only skip
the page. :class:`PersistenceError` is fatal to the job being processed.
"""

from typing import Optional


class SiteScopeError(Exception):
    """Base exception for all crawl engine errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class PersistenceError(SiteScopeError):
    """A store operation kept failing after its retries were exhausted."""


class RenderError(SiteScopeError):
    """A single page could not be fetched or rendered."""

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
