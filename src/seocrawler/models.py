"""Data models passed between the pipeline, frontier and store."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ANCHOR = "anchor"
IMAGE = "image"
INTERNAL = "internal"
EXTERNAL = "external"


@dataclass
class ProbeResult:
    """Header-only view of a URL."""

    status: int
    content_type: Optional[str]
    content_length: int = 0


@dataclass
class Extracted:
    """Outcome of extracting one field.

    A field is present (value set), absent (nothing on the page) or failed
    (the lookup raised; `error` holds the reason). Only present fields carry a
    value into the page record.
    """

    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.value is not None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class PageResult:
    """Content of a page row, minus identifiers."""

    url: str
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    content_length: int = 0
    title: Optional[str] = None
    meta_description: Optional[str] = None
    canonical: Optional[str] = None
    meta_robots: Optional[str] = None
    hreflang: Optional[str] = None
    extra_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return self.content_length


@dataclass
class LinkResult:
    """A reference found on a page, already normalized and scope-classified."""

    to_url: str
    kind: str
    scope: str
    alt_text: Optional[str] = None
    lazy_load: Optional[str] = None

    @property
    def followable(self) -> bool:
        return self.kind == ANCHOR and self.scope == INTERNAL


@dataclass
class FetchedPage:
    page: PageResult
    links: List[LinkResult] = field(default_factory=list)


@dataclass
class CrawlStats:
    """Summary of one crawl run."""

    crawl_run_id: int
    pages: int = 0
    links: int = 0
    link_errors: int = 0
    retries: int = 0
    failed: List[str] = field(default_factory=list)
