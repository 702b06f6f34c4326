from __future__ import annotations
import asyncio
import logging
import sqlite3

from .config import MAX_CONCURRENCY, CrawlLimits, HttpConfig
from .db import CrawlStore
from .errors import FatalOrchestrationError, PersistenceConflict, TransientFetchError
from .fetch import HttpClient
from .frontier import Frontier
from .models import CrawlStats, FetchedPage
from .parse import normalize_url
from .pipeline import FetchClient, fetch_page

logger = logging.getLogger(__name__)

def _worker_count(cfg: HttpConfig) -> int:
    if cfg.max_concurrency > MAX_CONCURRENCY:
        logger.warning("Concurrency %d capped to %d fetches per crawl", cfg.max_concurrency, MAX_CONCURRENCY)
        return MAX_CONCURRENCY
    return max(1, cfg.max_concurrency)

async def _persist(fetched: FetchedPage, crawl_run_id: int, store: CrawlStore, frontier: Frontier, stats: CrawlStats):
    page = fetched.page
    try:
        page_id = await store.upsert_page(crawl_run_id, page)
    except (sqlite3.Error, PersistenceConflict) as e:
        raise FatalOrchestrationError(f"could not persist page {page.url}: {e}") from e
    stats.pages += 1

    enqueued = 0
    for link in fetched.links:
        if await store.upsert_link(crawl_run_id, page_id, link):
            stats.links += 1
        else:
            stats.link_errors += 1
        if link.followable and await frontier.enqueue(link.to_url, link.scope):
            enqueued += 1
            logger.debug("  -> Enqueued: %s", link.to_url)
    if fetched.links:
        logger.info("  -> %s: %d links saved, %d new URLs enqueued", page.url, len(fetched.links), enqueued)

async def _worker(seed: str, crawl_run_id: int, frontier: Frontier, store: CrawlStore, client: FetchClient,
                  cfg: HttpConfig, stats: CrawlStats, size_limiter: asyncio.Semaphore):
    while True:
        url = await frontier.next()
        if url is None:
            return
        try:
            fetched = await fetch_page(url, client, seed, cfg, size_limiter)
        except TransientFetchError as e:
            await frontier.retry(url, e.reason)
            continue
        try:
            await _persist(fetched, crawl_run_id, store, frontier, stats)
        finally:
            await frontier.done(url)
        if cfg.delay_between_requests > 0:
            await asyncio.sleep(cfg.delay_between_requests)

async def _run_workers(seed: str, crawl_run_id: int, frontier: Frontier, store: CrawlStore, client: FetchClient,
                       cfg: HttpConfig, stats: CrawlStats):
    workers = _worker_count(cfg)
    # one cap on in-flight image size probes across all workers
    size_limiter = asyncio.Semaphore(workers)
    tasks = [
        asyncio.create_task(_worker(seed, crawl_run_id, frontier, store, client, cfg, stats, size_limiter))
        for _ in range(workers)
    ]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

async def _finalize_after_error(store: CrawlStore, crawl_run_id: int):
    try:
        await store.finalize_crawl(crawl_run_id)
    except Exception as e:
        logger.error("Could not finalize crawl %s: %s", crawl_run_id, e)

async def crawl(start: str, store: CrawlStore, client: FetchClient | None = None, limits: CrawlLimits | None = None,
                http_config: HttpConfig | None = None) -> CrawlStats:
    """Breadth-first, same-origin crawl from `start` into a new crawl run.

    - Starts a crawl run in `store` and returns its stats once the frontier is
      exhausted or `limits.max_requests` distinct URLs have been fetched.
    - Per-URL fetch failures are retried with backoff, then logged and dropped.
    - The crawl run always gets its end time, also when the crawl fails or is
      cancelled; the error is re-raised afterwards.
    - Without `client`, an HttpClient is created from `http_config` and closed on exit.
    """
    cfg = http_config or HttpConfig()
    limits = limits or CrawlLimits()

    seed = normalize_url(start, start)
    if seed is None:
        raise ValueError(f"Not an http(s) URL: {start!r}")

    try:
        crawl_run_id = await store.start_crawl(seed)
    except sqlite3.Error as e:
        raise FatalOrchestrationError(f"could not start crawl for {seed}: {e}") from e
    logger.info("Crawl ID: %s | Seed: %s | Budget: %d requests", crawl_run_id, seed, limits.max_requests)

    stats = CrawlStats(crawl_run_id=crawl_run_id)
    frontier = Frontier(
        max_requests=limits.max_requests,
        max_retries=limits.max_retries,
        retry_delay=cfg.retry_delay,
        backoff_factor=cfg.retry_backoff_factor,
    )
    await frontier.enqueue(seed)

    owns_client = client is None
    try:
        if owns_client:
            client = HttpClient(cfg)
            await client.open()
        try:
            await _run_workers(seed, crawl_run_id, frontier, store, client, cfg, stats)
        finally:
            if owns_client:
                await client.close()
    except BaseException:
        await _finalize_after_error(store, crawl_run_id)
        raise
    await store.finalize_crawl(crawl_run_id)

    stats.retries = frontier.retries
    stats.failed = list(frontier.failed)
    logger.info(
        "Crawl %s complete: %d pages, %d links, %d retries, %d failed URLs, %d URLs left queued",
        crawl_run_id, stats.pages, stats.links, stats.retries, len(stats.failed), frontier.queued,
    )
    return stats
