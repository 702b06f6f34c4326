import asyncio
import dataclasses
import sqlite3

import pytest

from helpers import ABOUT, HOME, SEED, FakeClient, page
from seocrawler.crawl import crawl
from seocrawler.db import CrawlStore
from seocrawler.errors import FatalOrchestrationError
from seocrawler.models import ANCHOR, EXTERNAL, IMAGE, INTERNAL

ABOUT_URL = "https://ex.test/about"


def run_crawl(db_path, client, limits, http_config, start=SEED):
    async def scenario():
        async with CrawlStore(db_path) as store:
            stats = await crawl(start, store, client=client, limits=limits, http_config=http_config)
            return stats, await store.list_pages(stats.crawl_run_id), await store.list_links(stats.crawl_run_id)

    return asyncio.run(scenario())


def crawl_runs(db_path):
    async def scenario():
        async with CrawlStore(db_path) as store:
            return await store.list_crawl_runs()

    return asyncio.run(scenario())


def test_home_page_scenario(db_path, limits, http_config):
    client = FakeClient({SEED: page(HOME), ABOUT_URL: page(ABOUT)})
    stats, pages, links = run_crawl(db_path, client, limits, http_config)

    assert [p["url"] for p in pages] == [SEED, ABOUT_URL]
    home = pages[0]
    assert (home["title"], home["meta_description"], home["hreflang"]) == ("Home", "Example home page", "en, de")

    home_links = {(l["to_url"], l["link_kind"]): l for l in links if l["from_page_id"] == home["id"]}
    assert set(home_links) == {
        (ABOUT_URL, ANCHOR),
        ("https://other.test/", ANCHOR),
        ("https://ex.test/logo.png", IMAGE),
    }
    assert home_links[(ABOUT_URL, ANCHOR)]["link_scope"] == INTERNAL
    assert home_links[("https://other.test/", ANCHOR)]["link_scope"] == EXTERNAL
    logo = home_links[("https://ex.test/logo.png", IMAGE)]
    assert (logo["link_scope"], logo["alt_text"], logo["lazy_load"]) == (INTERNAL, "Logo", "lazy")

    # /about was followed; the external anchor and the image never were
    assert sorted(client.probes) == [SEED, ABOUT_URL]
    assert (stats.pages, stats.links, stats.failed) == (2, 4, [])

    run = crawl_runs(db_path)[0]
    assert run["id"] == stats.crawl_run_id
    assert run["seed_url"] == SEED
    assert run["end_time"] is not None


def test_fragment_variants_are_one_page(db_path, limits, http_config):
    html = '<a href="/a#x">x</a><a href="/a#y">y</a><a href="#top">top</a>'
    client = FakeClient({SEED: page(html), "https://ex.test/a": page("<p>a</p>")})
    stats, pages, _ = run_crawl(db_path, client, limits, http_config, start="https://ex.test/#intro")
    assert [p["url"] for p in pages] == [SEED, "https://ex.test/a"]
    assert client.probes.count("https://ex.test/a") == 1


def test_request_budget_is_a_hard_ceiling(db_path, limits, http_config):
    site = {f"https://ex.test/p{i}": page(f'<a href="/p{i + 1}">next</a><a href="/x{i}">side</a>') for i in range(20)}
    site[SEED] = page('<a href="/p0">start</a>')
    client = FakeClient(site)
    limits = dataclasses.replace(limits, max_requests=5)
    stats, pages, _ = run_crawl(db_path, client, limits, http_config)
    assert len(pages) == 5
    assert len(set(client.probes)) == 5
    assert len(client.probes) == 5


def test_unreachable_page_leaves_no_row(db_path, limits, http_config):
    client = FakeClient({SEED: page(HOME), ABOUT_URL: page(ABOUT)}, probe_failures={ABOUT_URL: -1})
    stats, pages, links = run_crawl(db_path, client, limits, http_config)

    assert [p["url"] for p in pages] == [SEED]
    assert client.probes.count(ABOUT_URL) == limits.max_retries + 1
    assert stats.failed == [ABOUT_URL]
    assert stats.retries == limits.max_retries
    # the link pointing at it is still recorded
    assert any(l["to_url"] == ABOUT_URL for l in links)
    assert crawl_runs(db_path)[0]["end_time"] is not None


def test_transient_failure_recovers_on_retry(db_path, limits, http_config):
    client = FakeClient({SEED: page(HOME), ABOUT_URL: page(ABOUT)}, probe_failures={ABOUT_URL: 2})
    stats, pages, _ = run_crawl(db_path, client, limits, http_config)
    assert [p["url"] for p in pages] == [SEED, ABOUT_URL]
    assert client.probes.count(ABOUT_URL) == 3
    assert (stats.retries, stats.failed) == (2, [])


def test_rerun_creates_independent_crawl_run(db_path, limits, http_config):
    site = {SEED: page(HOME), ABOUT_URL: page(ABOUT)}
    first, first_pages, _ = run_crawl(db_path, FakeClient(site), limits, http_config)
    second, second_pages, _ = run_crawl(db_path, FakeClient(site), limits, http_config)

    assert first.crawl_run_id != second.crawl_run_id
    assert [p["url"] for p in first_pages] == [p["url"] for p in second_pages]
    assert not {p["id"] for p in first_pages} & {p["id"] for p in second_pages}
    assert all(r["end_time"] is not None for r in crawl_runs(db_path))


class FailingStore(CrawlStore):
    async def upsert_page(self, crawl_run_id, page):
        raise sqlite3.OperationalError("database is locked")


def test_persistence_failure_finalizes_then_raises(db_path, limits, http_config):
    async def scenario():
        async with FailingStore(db_path) as store:
            with pytest.raises(FatalOrchestrationError):
                await crawl(SEED, store, client=FakeClient({SEED: page(HOME)}), limits=limits, http_config=http_config)
            return await store.list_crawl_runs()

    runs = asyncio.run(scenario())
    assert len(runs) == 1
    assert runs[0]["end_time"] is not None


def test_caller_timeout_still_finalizes(db_path, limits, http_config):
    async def scenario():
        async with CrawlStore(db_path) as store:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(
                    crawl(SEED, store, client=FakeClient({}, hang=True), limits=limits, http_config=http_config),
                    timeout=0.1,
                )
            return await store.list_crawl_runs(), await store.list_pages()

    runs, pages = asyncio.run(scenario())
    assert runs[0]["end_time"] is not None
    assert pages == []


def test_start_url_must_be_http(db_path, limits, http_config):
    async def scenario():
        async with CrawlStore(db_path) as store:
            with pytest.raises(ValueError):
                await crawl("ftp://ex.test/", store, client=FakeClient({}), limits=limits, http_config=http_config)
            return await store.list_crawl_runs()

    assert asyncio.run(scenario()) == []


def test_unreachable_store_is_fatal(db_path, limits, http_config):
    async def scenario():
        store = CrawlStore(db_path)
        with pytest.raises(FatalOrchestrationError):
            await crawl(SEED, store, client=FakeClient({}), limits=limits, http_config=http_config)

    asyncio.run(scenario())



class CountingClient(FakeClient):
    """Tracks how many size probes run at the same time."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active = 0
        self.peak = 0

    async def probe_size(self, url):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().probe_size(url)
        finally:
            self.active -= 1


def test_parallel_size_probes_share_one_cap(db_path, limits, http_config):
    images = "".join(f'<img src="/img{i}.png">' for i in range(8))
    site = {f"https://ex.test/p{n}": page(images) for n in range(5)}
    site[SEED] = page("".join(f'<a href="/p{n}">p{n}</a>' for n in range(5)))
    client = CountingClient(site, sizes={f"https://ex.test/img{i}.png": 100 + i for i in range(8)})
    cfg = dataclasses.replace(http_config, max_concurrency=4, image_size_probes="parallel")

    stats, pages, _ = run_crawl(db_path, client, limits, cfg)

    assert stats.pages == 6
    assert len(client.size_probes) == 40
    assert 1 < client.peak <= cfg.max_concurrency
    assert all(len(p["extra_data"]["image_sizes"]) == 8 for p in pages if p["url"] != SEED)
