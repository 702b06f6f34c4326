from __future__ import annotations
import logging
from typing import Awaitable, Dict, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

from .document import Document
from .models import ANCHOR, EXTERNAL, IMAGE, INTERNAL, Extracted, LinkResult

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

# ------------------ URL helpers ------------------

def normalize_url(href: Optional[str], base: str) -> Optional[str]:
    """Resolve `href` against `base` and drop the fragment.

    Returns None for empty or malformed references and for anything that does
    not resolve to an http(s) URL (mailto:, javascript:, data:...).
    """
    if not href or not href.strip():
        return None
    try:
        joined, _ = urldefrag(urljoin(base, href.strip()))
        parts = urlsplit(joined)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in DEFAULT_PORTS or not host:
        return None

    netloc = f"[{host}]" if ":" in host else host
    if port and port != DEFAULT_PORTS[parts.scheme]:
        netloc = f"{netloc}:{port}"
    if "@" in parts.netloc:
        netloc = parts.netloc.rsplit("@", 1)[0] + "@" + netloc
    return urlunsplit((parts.scheme, netloc, parts.path or "/", parts.query, ""))

def _origin(url: str) -> Tuple[str, str, int]:
    parts = urlsplit(url)
    if parts.scheme not in DEFAULT_PORTS or not parts.hostname:
        raise ValueError(f"not an http(s) URL: {url!r}")
    return parts.scheme, parts.hostname, parts.port or DEFAULT_PORTS[parts.scheme]

def classify_scope(url: str, seed: str) -> str:
    """Return 'internal' when `url` shares the seed's origin, 'external' otherwise (including on parse errors)."""
    try:
        return INTERNAL if _origin(url) == _origin(seed) else EXTERNAL
    except (ValueError, TypeError, AttributeError):
        return EXTERNAL

# ------------------ classification ------------------

def is_html(content_type: Optional[str]) -> bool:
    ct = (content_type or "").lower()
    return any(t in ct for t in HTML_CONTENT_TYPES)

# ------------------ extractors ------------------

async def _extract(field: str, lookup: Awaitable[Optional[str]]) -> Extracted:
    try:
        value = await lookup
    except Exception as e:
        logger.debug("Extraction of %s failed: %s", field, e)
        return Extracted(error=f"{type(e).__name__}: {e}")
    if isinstance(value, str):
        value = value.strip() or None
    return Extracted(value=value)

async def _hreflang(doc: Document) -> Optional[str]:
    values = await doc.attribute_all('link[rel="alternate"]', "hreflang")
    values = [v.strip() for v in values if v and v.strip()]
    return ", ".join(values) or None

async def _canonical(doc: Document) -> Optional[str]:
    href = await doc.attribute('link[rel="canonical"]', "href")
    if not href or not href.strip():
        return None
    return urljoin(doc.url, href.strip())

async def extract_metadata(doc: Document) -> Dict[str, Extracted]:
    """Extract title, meta description, canonical, meta robots and hreflang. Each field fails independently."""
    return {
        "title": await _extract("title", doc.title()),
        "meta_description": await _extract("meta_description", doc.attribute('meta[name="description"]', "content")),
        "canonical": await _extract("canonical", _canonical(doc)),
        "meta_robots": await _extract("meta_robots", doc.attribute('meta[name="robots"]', "content")),
        "hreflang": await _extract("hreflang", _hreflang(doc)),
    }

async def extract_links(doc: Document, seed: str) -> Tuple[List[LinkResult], Dict[str, str]]:
    """Collect anchors and images as normalized, scope-classified links.

    Returns (links, errors). Unparseable references are skipped. A reference
    seen several times on the page is reported once, carrying the attributes of
    its last occurrence.
    """
    found: Dict[Tuple[str, str], LinkResult] = {}
    errors: Dict[str, str] = {}

    try:
        hrefs = await doc.attribute_all("a[href]", "href")
    except Exception as e:
        logger.debug("Anchor extraction failed on %s: %s", doc.url, e)
        errors["anchors"] = f"{type(e).__name__}: {e}"
        hrefs = []
    for href in hrefs:
        url = normalize_url(href, doc.url)
        if not url:
            continue
        found[(url, ANCHOR)] = LinkResult(to_url=url, kind=ANCHOR, scope=classify_scope(url, seed))

    try:
        images = await doc.elements("img", ("src", "currentSrc", "alt", "loading"))
    except Exception as e:
        logger.debug("Image extraction failed on %s: %s", doc.url, e)
        errors["images"] = f"{type(e).__name__}: {e}"
        images = []
    for img in images:
        url = normalize_url(img.get("src") or img.get("currentSrc"), doc.url)
        if not url:
            continue
        alt = (img.get("alt") or "").strip() or None
        loading = (img.get("loading") or "").strip().lower() or "eager"
        found[(url, IMAGE)] = LinkResult(
            to_url=url, kind=IMAGE, scope=classify_scope(url, seed), alt_text=alt, lazy_load=loading
        )

    return list(found.values()), errors
