"""
Exceptions raised by the crawl engine.

Budget and frontier exhaustion are not errors: the frontier reports them by
returning None from next().
"""
from __future__ import annotations


class CrawlerError(Exception):
    """Base class for crawler errors."""


class TransientFetchError(CrawlerError):
    """Network error or timeout while probing or rendering a URL. Retried by the frontier."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class ExtractionError(CrawlerError):
    """A single metadata field could not be extracted. Never escapes the extractors."""


class PersistenceConflict(CrawlerError):
    """The store could not resolve the id of an upserted row."""


class FatalOrchestrationError(CrawlerError):
    """The crawl could not continue, e.g. the store is unreachable."""
