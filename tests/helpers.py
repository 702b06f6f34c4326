"""Fake fetch client serving an in-memory site."""
from __future__ import annotations
import asyncio
from typing import Dict, Optional, Set

from seocrawler.document import SoupDocument
from seocrawler.errors import TransientFetchError
from seocrawler.models import ProbeResult

HTML = "text/html; charset=utf-8"

SEED = "https://ex.test/"

HOME = """
<html>
  <head>
    <title> Home </title>
    <meta name="description" content="Example home page">
    <meta name="robots" content="index, follow">
    <link rel="canonical" href="/">
    <link rel="alternate" hreflang="en" href="https://ex.test/">
    <link rel="alternate" hreflang="de" href="https://ex.test/de/">
  </head>
  <body>
    <a href="/about">About</a>
    <a href="https://other.test/">Elsewhere</a>
    <img src="logo.png" alt="Logo" loading="lazy">
  </body>
</html>
"""

ABOUT = "<html><head><title>About</title></head><body><a href='/#top'>Home</a></body></html>"


def page(html: str, status: int = 200, content_type: str = HTML):
    return status, content_type, html


class FakeClient:
    """Serves `pages` ({url: (status, content_type, html)}); unknown URLs answer 404.

    `probe_failures` maps a URL to how many probes fail before it succeeds
    (-1 fails forever). URLs in `render_failures` fail to render. `hang` makes
    every probe block.
    """

    def __init__(self, pages: Dict[str, tuple], probe_failures: Optional[Dict[str, int]] = None,
                 render_failures: Optional[Set[str]] = None, sizes: Optional[Dict[str, int]] = None,
                 hang: bool = False):
        self.pages = pages
        self.probe_failures = dict(probe_failures or {})
        self.render_failures = set(render_failures or ())
        self.sizes = sizes or {}
        self.hang = hang
        self.probes = []
        self.renders = []
        self.size_probes = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def probe(self, url: str) -> ProbeResult:
        self.probes.append(url)
        if self.hang:
            await asyncio.sleep(3600)
        remaining = self.probe_failures.get(url, 0)
        if remaining:
            self.probe_failures[url] = remaining - 1 if remaining > 0 else remaining
            raise TransientFetchError(url, "connection refused")
        status, content_type, html = self.pages.get(url, (404, HTML, ""))
        return ProbeResult(status=status, content_type=content_type, content_length=len(html))

    async def render(self, url: str):
        self.renders.append(url)
        if url in self.render_failures:
            raise TransientFetchError(url, "navigation failed")
        _, _, html = self.pages.get(url, (404, HTML, ""))
        return SoupDocument(html, url)

    async def probe_size(self, url: str) -> Optional[int]:
        self.size_probes.append(url)
        if url not in self.sizes:
            raise TransientFetchError(url, "no size")
        return self.sizes[url]
