# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page drivers: the executor's and cache's view of one page.

``PageDriver`` is the protocol; ``HtmlPageDriver`` implements it over an lxml
document (offline mode, tests, ``voicepage ask --html``). The Playwright
implementation lives in ``browser_session``.

Element handles are opaque to callers: whatever ``query_selector`` /
``query_xpath`` return is passed back unchanged to the other element methods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import lxml.html
from cssselect import SelectorError
from lxml import etree

from .dom import DomNode, from_lxml, parse_inline_style
from .errors import SnapshotError

logger = logging.getLogger("voicepage.drivers")

DEFAULT_PAGE_TEXT_LIMIT = 2000


@dataclass(frozen=True)
class ElementInfo:
    """Fields used to name an element in a spoken confirmation."""

    tag: str
    aria_label: str = ""
    text: str = ""
    title: str = ""
    alt: str = ""
    placeholder: str = ""


@runtime_checkable
class PageDriver(Protocol):
    """One page, as seen by the executor, the cache and the voice session."""

    @property
    def url(self) -> str: ...

    async def title(self) -> str: ...

    async def html(self) -> str: ...

    async def page_text(self, limit: int = DEFAULT_PAGE_TEXT_LIMIT) -> str: ...

    async def capture_tree(self, max_depth: int) -> DomNode: ...

    async def navigate(self, url: str) -> None: ...

    async def query_selector(self, selector: str) -> Any | None: ...

    async def query_xpath(self, xpath: str) -> Any | None: ...

    async def scroll_into_view(self, element: Any) -> None: ...

    async def set_outline(self, element: Any, outline: str) -> str: ...

    async def activate(self, element: Any) -> None: ...

    async def describe(self, element: Any) -> ElementInfo: ...


def _collapse(text: str | None) -> str:
    return " ".join((text or "").split())


@dataclass
class HtmlPageDriver:
    """Offline driver over a parsed HTML document.

    Navigation and clicks are recorded rather than performed; ``load()``
    replaces the document (the caller decides when the page "changes").
    """

    document: lxml.html.HtmlElement
    current_url: str = "about:blank"
    navigations: list[str] = field(default_factory=list)
    clicks: list[lxml.html.HtmlElement] = field(default_factory=list)
    _saved_styles: dict[lxml.html.HtmlElement, tuple[str | None, str]] = field(
        default_factory=dict, init=False, repr=False
    )

    @classmethod
    def from_html(cls, html: str, url: str = "about:blank") -> HtmlPageDriver:
        if not html or not html.strip():
            raise SnapshotError("Empty HTML input")
        try:
            document = lxml.html.document_fromstring(html)
        except (etree.ParserError, ValueError) as e:
            raise SnapshotError(f"lxml parsing failed: {e}") from e
        return cls(document=document, current_url=url)

    def load(self, html: str, url: str | None = None) -> None:
        replacement = HtmlPageDriver.from_html(html, url or self.current_url)
        self.document = replacement.document
        self.current_url = replacement.current_url
        self._saved_styles.clear()

    # -- Page --

    @property
    def url(self) -> str:
        return self.current_url

    async def title(self) -> str:
        found = self.document.find(".//title")
        return _collapse(found.text_content()) if found is not None else ""

    async def html(self) -> str:
        return lxml.html.tostring(self.document, encoding="unicode")

    async def page_text(self, limit: int = DEFAULT_PAGE_TEXT_LIMIT) -> str:
        body = self.document.find(".//body")
        root = body if body is not None else self.document
        return _collapse(root.text_content())[:limit]

    async def capture_tree(self, max_depth: int) -> DomNode:
        return from_lxml(self.document)

    async def navigate(self, url: str) -> None:
        logger.info("Navigate (offline): %s", url)
        self.navigations.append(url)
        self.current_url = url

    # -- Elements --

    async def query_selector(self, selector: str) -> lxml.html.HtmlElement | None:
        try:
            found = self.document.cssselect(selector)
        except (SelectorError, etree.XPathError):
            logger.debug("Invalid selector: %s", selector)
            return None
        return found[0] if found else None

    async def query_xpath(self, xpath: str) -> lxml.html.HtmlElement | None:
        try:
            found = self.document.xpath(xpath)
        except etree.XPathError:
            logger.debug("Invalid xpath: %s", xpath)
            return None
        for item in found if isinstance(found, list) else ():
            if isinstance(item, lxml.html.HtmlElement):
                return item
        return None

    async def scroll_into_view(self, element: lxml.html.HtmlElement) -> None:
        return None

    async def set_outline(self, element: lxml.html.HtmlElement, outline: str) -> str:
        """Set the inline outline; returns the previous inline value ("" when unset).

        Passing back the value returned by the highlighting call restores the
        element's original ``style`` attribute verbatim (or removes it when the
        element had none).
        """
        raw = element.get("style")
        previous = parse_inline_style(raw).get("outline", "")
        saved = self._saved_styles.pop(element, None)
        if saved is not None and outline == saved[1]:
            if saved[0] is None:
                element.attrib.pop("style", None)
            else:
                element.set("style", saved[0])
            return previous

        self._saved_styles[element] = (raw, previous)
        kept = [
            decl.strip()
            for decl in (raw or "").split(";")
            if decl.strip() and decl.partition(":")[0].strip().lower() != "outline"
        ]
        if outline:
            kept.append(f"outline: {outline}")
        if kept:
            element.set("style", "; ".join(kept))
        else:
            element.attrib.pop("style", None)
        return previous

    async def activate(self, element: lxml.html.HtmlElement) -> None:
        logger.info("Click (offline): <%s>", element.tag)
        self.clicks.append(element)

    async def describe(self, element: lxml.html.HtmlElement) -> ElementInfo:
        return ElementInfo(
            tag=str(element.tag).lower(),
            aria_label=element.get("aria-label") or "",
            text=_collapse(element.text_content()),
            title=element.get("title") or "",
            alt=element.get("alt") or "",
            placeholder=element.get("placeholder") or "",
        )
