from __future__ import annotations
import asyncio
import logging
from typing import Optional

import aiohttp

from .config import HttpConfig
from .document import Document, PlaywrightDocument, SoupDocument
from .errors import CrawlerError, TransientFetchError
from .models import ProbeResult

logger = logging.getLogger(__name__)

def _content_length(value: Optional[str]) -> int:
    try:
        return max(int(value or 0), 0)
    except ValueError:
        return 0

def _total_from_content_range(value: Optional[str]) -> Optional[int]:
    # "bytes 0-0/12345"; the total may be "*" when unknown
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None

class HttpClient:
    """aiohttp-backed probe/render client. One session is shared by every request of a crawl.

    Use as `async with HttpClient(cfg) as client:`.
    """

    def __init__(self, cfg: HttpConfig | None = None, renderer: "PlaywrightRenderer | None" = None):
        self.cfg = cfg or HttpConfig()
        self._session: aiohttp.ClientSession | None = None
        if renderer is None and self.cfg.use_js:
            renderer = PlaywrightRenderer(self.cfg)
        self._renderer = renderer

    async def __aenter__(self) -> "HttpClient":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.cfg.user_agent},
                timeout=aiohttp.ClientTimeout(total=self.cfg.timeout),
            )

    async def close(self) -> None:
        if self._renderer is not None:
            await self._renderer.close()
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise CrawlerError("HttpClient is not open")
        return self._session

    async def probe(self, url: str) -> ProbeResult:
        """HEAD request returning status, content type and content length."""
        try:
            async with self.session.head(url, allow_redirects=True) as resp:
                return ProbeResult(
                    status=resp.status,
                    content_type=resp.headers.get("Content-Type"),
                    content_length=_content_length(resp.headers.get("Content-Length")),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(url, f"probe failed: {type(e).__name__}: {e}") from e

    async def render(self, url: str) -> Document:
        """Load the page and return a Document over its DOM."""
        if self._renderer is not None:
            return await self._renderer.render(url)
        try:
            async with self.session.get(url, allow_redirects=True) as resp:
                text = await resp.text(errors="ignore")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(url, f"render failed: {type(e).__name__}: {e}") from e
        return SoupDocument(text, url)

    async def probe_size(self, url: str) -> Optional[int]:
        """Size in bytes of a resource, read from a one-byte range request."""
        try:
            async with self.session.get(url, headers={"Range": "bytes=0-0"}, allow_redirects=True) as resp:
                total = _total_from_content_range(resp.headers.get("Content-Range"))
                if total is None and resp.status == 200:
                    # Range ignored: Content-Length is the full size
                    total = _content_length(resp.headers.get("Content-Length")) or None
                return total
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(url, f"size probe failed: {type(e).__name__}: {e}") from e

# ---- JS rendering path via Playwright ----
# Usage: pip install .[js] && playwright install chromium
class PlaywrightRenderer:
    """Headless chromium renderer. The browser is launched on first use and shared by all pages."""

    def __init__(self, cfg: HttpConfig):
        self.cfg = cfg
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self):
        async with self._lock:
            if self._browser is None:
                try:
                    from playwright.async_api import async_playwright
                except ImportError as e:
                    raise CrawlerError("JavaScript rendering needs Playwright: pip install .[js] && playwright install chromium") from e
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
        return self._browser

    async def render(self, url: str) -> Document:
        from playwright.async_api import Error as PlaywrightError

        browser = await self._ensure_browser()
        try:
            context = await browser.new_context(user_agent=self.cfg.user_agent)
        except PlaywrightError as e:
            raise TransientFetchError(url, f"browser context failed: {e}") from e
        # the context belongs to the returned document; on any other exit it is closed here
        try:
            page = await context.new_page()
            await page.goto(url, timeout=self.cfg.timeout * 1000, wait_until="domcontentloaded")
        except PlaywrightError as e:
            await context.close()
            raise TransientFetchError(url, f"navigation failed: {e}") from e
        except BaseException:
            await context.close()
            raise
        return PlaywrightDocument(page, url, context)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
