"""
REST access to crawl results.

    GET  /                      health check
    GET|POST /start-crawl?url=  run a crawl and return its summary
    GET  /crawls                all crawl runs
    GET  /crawls/{id}           one crawl run
    GET  /pages[?crawl_id=]     page records
    GET  /links[?crawl_id=]     link records
"""
from __future__ import annotations
import logging
from typing import Optional

from aiohttp import web

from .config import CrawlLimits, HttpConfig
from .crawl import crawl
from .db import CrawlStore
from .errors import FatalOrchestrationError

logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("store", CrawlStore)
HTTP_CONFIG_KEY = web.AppKey("http_config", HttpConfig)
LIMITS_KEY = web.AppKey("limits", CrawlLimits)
CLIENT_FACTORY_KEY = web.AppKey("client_factory", object)


def _crawl_id(request: web.Request) -> Optional[int]:
    raw = request.query.get("crawl_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise web.HTTPBadRequest(text=f"crawl_id must be an integer, got {raw!r}")


async def index(request: web.Request) -> web.Response:
    return web.Response(text="Server is running")


async def _run_crawl(app: web.Application, url: str):
    store, limits, cfg = app[STORE_KEY], app[LIMITS_KEY], app[HTTP_CONFIG_KEY]
    client_factory = app[CLIENT_FACTORY_KEY]
    if client_factory is None:
        return await crawl(url, store, limits=limits, http_config=cfg)
    async with client_factory() as client:
        return await crawl(url, store, client=client, limits=limits, http_config=cfg)


async def start_crawl(request: web.Request) -> web.Response:
    url = request.query.get("url")
    if not url and request.can_read_body:
        try:
            body = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text="request body must be JSON")
        url = body.get("url") if isinstance(body, dict) else None
    if not url:
        raise web.HTTPBadRequest(text="missing 'url'")

    try:
        stats = await _run_crawl(request.app, url)
    except ValueError as e:
        raise web.HTTPBadRequest(text=str(e))
    except FatalOrchestrationError as e:
        logger.error("Crawl of %s failed: %s", url, e)
        return web.json_response({"error": str(e)}, status=500)
    return web.json_response({
        "crawl_id": stats.crawl_run_id,
        "pages": stats.pages,
        "links": stats.links,
        "retries": stats.retries,
        "failed": stats.failed,
    })


async def list_crawls(request: web.Request) -> web.Response:
    return web.json_response(await request.app[STORE_KEY].list_crawl_runs())


async def get_crawl(request: web.Request) -> web.Response:
    try:
        crawl_run_id = int(request.match_info["id"])
    except ValueError:
        raise web.HTTPNotFound()
    run = await request.app[STORE_KEY].get_crawl_run(crawl_run_id)
    if run is None:
        raise web.HTTPNotFound(text=f"no crawl {crawl_run_id}")
    return web.json_response(run)


async def list_pages(request: web.Request) -> web.Response:
    return web.json_response(await request.app[STORE_KEY].list_pages(_crawl_id(request)))


async def list_links(request: web.Request) -> web.Response:
    return web.json_response(await request.app[STORE_KEY].list_links(_crawl_id(request)))


def create_app(store: CrawlStore, http_config: HttpConfig | None = None, limits: CrawlLimits | None = None,
               client_factory=None) -> web.Application:
    """Build the application. The store is opened on startup and closed on cleanup.

    `client_factory` returns an unopened fetch client for each crawl, used as an
    async context manager around it (`HttpClient` qualifies). By default every
    crawl opens its own HttpClient.
    """
    app = web.Application()
    app[STORE_KEY] = store
    app[HTTP_CONFIG_KEY] = http_config or HttpConfig()
    app[LIMITS_KEY] = limits or CrawlLimits()
    app[CLIENT_FACTORY_KEY] = client_factory

    async def _open_store(app: web.Application):
        await store.open()
        yield
        await store.close()

    app.cleanup_ctx.append(_open_store)
    app.router.add_get("/", index)
    app.router.add_get("/start-crawl", start_crawl)
    app.router.add_post("/start-crawl", start_crawl)
    app.router.add_get("/crawls", list_crawls)
    app.router.add_get("/crawls/{id}", get_crawl)
    app.router.add_get("/pages", list_pages)
    app.router.add_get("/links", list_links)
    return app


def run_server(db_path: str, host: str = "127.0.0.1", port: int = 3000, http_config: HttpConfig | None = None,
               limits: CrawlLimits | None = None):
    app = create_app(CrawlStore(db_path), http_config=http_config, limits=limits)
    logger.info("Serving crawl data from %s on http://%s:%d", db_path, host, port)
    web.run_app(app, host=host, port=port)
