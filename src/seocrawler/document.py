"""
DOM access used by the extractors.

The extractors only talk to the small async `Document` interface below, so the
same code runs over server HTML parsed with BeautifulSoup and over a live
Playwright page.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Protocol, Sequence

from bs4 import BeautifulSoup

from .errors import ExtractionError


class Document(Protocol):
    url: str

    async def title(self) -> Optional[str]: ...

    async def attribute(self, selector: str, name: str) -> Optional[str]: ...

    async def attribute_all(self, selector: str, name: str) -> List[Optional[str]]: ...

    async def elements(self, selector: str, names: Sequence[str]) -> List[Dict[str, Optional[str]]]: ...

    async def close(self) -> None: ...


def _attr_value(value) -> Optional[str]:
    # bs4 returns multi-valued attributes (rel, class) as lists
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


class SoupDocument:
    """Document over static HTML."""

    def __init__(self, html: str, url: str, parser: str = "lxml"):
        self.url = url
        self.soup = BeautifulSoup(html, parser)

    async def title(self) -> Optional[str]:
        tag = self.soup.find("title")
        if tag is None:
            return None
        return tag.get_text().strip() or None

    async def attribute(self, selector: str, name: str) -> Optional[str]:
        el = self.soup.select_one(selector)
        if el is None:
            return None
        return _attr_value(el.get(name))

    async def attribute_all(self, selector: str, name: str) -> List[Optional[str]]:
        return [_attr_value(el.get(name)) for el in self.soup.select(selector)]

    async def elements(self, selector: str, names: Sequence[str]) -> List[Dict[str, Optional[str]]]:
        # DOM properties such as currentSrc do not exist in static HTML and come back as None
        return [{n: _attr_value(el.get(n)) for n in names} for el in self.soup.select(selector)]

    async def close(self) -> None:
        return None


_ELEMENTS_JS = """
(els, names) => els.map(el => Object.fromEntries(names.map(n => [
  n,
  el.hasAttribute(n) ? el.getAttribute(n) : (typeof el[n] === 'string' ? el[n] : null)
])))
"""


class PlaywrightDocument:
    """Document over a rendered Playwright page. Closing it closes the browser context."""

    def __init__(self, page, url: str, context=None):
        self.url = url
        self.page = page
        self._context = context

    async def _lookup(self, what: str, awaitable):
        # a navigation or detached node mid-lookup surfaces as a Playwright error
        try:
            return await awaitable
        except Exception as e:
            raise ExtractionError(f"{what} on {self.url}: {e}") from e

    async def title(self) -> Optional[str]:
        return (await self._lookup("title", self.page.title())).strip() or None

    async def attribute(self, selector: str, name: str) -> Optional[str]:
        el = await self._lookup(selector, self.page.query_selector(selector))
        if el is None:
            return None
        return await self._lookup(selector, el.get_attribute(name))

    async def attribute_all(self, selector: str, name: str) -> List[Optional[str]]:
        return [e[name] for e in await self.elements(selector, [name])]

    async def elements(self, selector: str, names: Sequence[str]) -> List[Dict[str, Optional[str]]]:
        return await self._lookup(selector, self.page.eval_on_selector_all(selector, _ELEMENTS_JS, list(names)))

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
        else:
            await self.page.close()
