"""
Per-URL fetch-and-classify pipeline.

probe -> (HTML? render -> extract) -> FetchedPage

A failed probe raises TransientFetchError and produces nothing, so a transient
error never leaves a page row behind. Everything after a successful probe
degrades instead of failing: a render error keeps the probe data, a failed
extraction step leaves that field empty.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from .config import HttpConfig
from .document import Document
from .errors import TransientFetchError
from .models import IMAGE, FetchedPage, PageResult, ProbeResult
from .parse import extract_links, extract_metadata, is_html

logger = logging.getLogger(__name__)


class FetchClient(Protocol):
    async def probe(self, url: str) -> ProbeResult: ...

    async def render(self, url: str) -> Document: ...

    async def probe_size(self, url: str) -> Optional[int]: ...


async def probe_image_sizes(client: FetchClient, urls: List[str], cfg: HttpConfig,
                            limiter: asyncio.Semaphore | None = None) -> Dict[str, Optional[int]]:
    """Probe image sizes one after another or concurrently, per `cfg.image_size_probes`.

    `limiter` bounds the size probes in flight; a crawl shares one across all of
    its workers. Without it the bound applies to this call only.
    """
    sem = limiter if limiter is not None else asyncio.Semaphore(max(1, cfg.max_concurrency))

    async def _size(u: str) -> Optional[int]:
        async with sem:
            try:
                return await asyncio.wait_for(client.probe_size(u), cfg.timeout)
            except (TransientFetchError, asyncio.TimeoutError) as e:
                logger.debug("Size probe failed for %s: %s", u, e)
                return None

    if cfg.image_size_probes == "sequential":
        return {u: await _size(u) for u in urls}

    sizes = await asyncio.gather(*(_size(u) for u in urls))
    return dict(zip(urls, sizes))


async def _extract_into(page: PageResult, doc: Document, seed: str):
    fields = await extract_metadata(doc)
    links, errors = await extract_links(doc, seed)
    for name, field in fields.items():
        if field.present:
            setattr(page, name, field.value)
        elif field.failed:
            errors[name] = field.error
    if errors:
        page.extra_data["extraction_errors"] = errors
    return links


async def fetch_page(url: str, client: FetchClient, seed: str, cfg: HttpConfig | None = None,
                     size_limiter: asyncio.Semaphore | None = None) -> FetchedPage:
    cfg = cfg or HttpConfig()

    try:
        probe = await asyncio.wait_for(client.probe(url), cfg.timeout)
    except asyncio.TimeoutError as e:
        raise TransientFetchError(url, "probe timed out") from e

    page = PageResult(
        url=url,
        status_code=probe.status,
        content_type=probe.content_type,
        content_length=probe.content_length,
    )
    html = is_html(probe.content_type)
    logger.info("[%s] %s (type: %s)", probe.status, url, "html" if html else probe.content_type or "unknown")
    if not html:
        return FetchedPage(page)

    try:
        doc = await asyncio.wait_for(client.render(url), cfg.timeout)
    except (TransientFetchError, asyncio.TimeoutError) as e:
        reason = str(e) or "render timed out"
        logger.warning("Render failed for %s, keeping probe data: %s", url, reason)
        page.extra_data["render_error"] = reason
        return FetchedPage(page)

    try:
        links = await asyncio.wait_for(_extract_into(page, doc, seed), cfg.timeout)
    except asyncio.TimeoutError:
        logger.warning("Extraction timed out for %s", url)
        page.extra_data["extraction_errors"] = {"page": "extraction timed out"}
        links = []
    finally:
        await doc.close()

    images = [link.to_url for link in links if link.kind == IMAGE]
    if images and cfg.image_size_probes != "off":
        page.extra_data["image_sizes"] = await probe_image_sizes(client, images, cfg, size_limiter)

    logger.debug("  -> %d links on %s", len(links), url)
    return FetchedPage(page, links)
