# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session for live voice control.

Manages the Chromium lifecycle and wires one page to the voice agent:
- ``PlaywrightPageDriver`` implements ``PageDriver`` over a Playwright page
- ``install_page_hooks`` forwards DOM mutations, document-ready/load events
  and the Shift+Space toggle chord from the page into Python
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    ElementHandle,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from .cache import SnapshotCache
from .dom import CAPTURE_JS, DomNode, from_browser_dump
from .drivers import DEFAULT_PAGE_TEXT_LIMIT, ElementInfo
from .errors import BrowserError, SnapshotError
from .voice.keys import TOGGLE_BINDING, TOGGLE_LISTENER_JS, is_toggle_chord

logger = logging.getLogger("voicepage.browser_session")

DEFAULT_LOCALE = "en-US"
MUTATION_BINDING = "__voicepageMutation"

# Observes the whole document from the first script on; forwards the set of
# record types seen in each batch. Attribute records are forwarded too and
# filtered by the cache.
MUTATION_OBSERVER_JS = f"""(() => {{
  if (window.__voicepageObserverInstalled) return;
  window.__voicepageObserverInstalled = true;
  const observer = new MutationObserver((records) => {{
    const kinds = new Set();
    for (const r of records) kinds.add(r.type);
    for (const kind of kinds) {{
      if (window.{MUTATION_BINDING}) window.{MUTATION_BINDING}(kind);
    }}
  }});
  observer.observe(document, {{childList: true, subtree: true, attributes: true}});
}})();"""

_PAGE_TEXT_JS = "(limit) => document.body ? document.body.innerText.slice(0, limit) : ''"

_SCROLL_JS = "(el) => el.scrollIntoView({behavior: 'smooth', block: 'center'})"

_SET_OUTLINE_JS = """(el, outline) => {
  const previous = el.style.outline;
  el.style.outline = outline;
  return previous;
}"""

_DESCRIBE_JS = """(el) => ({
  tag: el.tagName.toLowerCase(),
  ariaLabel: el.getAttribute('aria-label') || '',
  text: (el.innerText || el.textContent || '').trim(),
  title: el.getAttribute('title') || '',
  alt: el.getAttribute('alt') || '',
  placeholder: el.getAttribute('placeholder') || '',
})"""


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = False
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1280
    viewport_height: int = 800
    timeout_ms: int = 30000
    wait_until: str = "load"

    @classmethod
    def from_env(cls) -> BrowserConfig:
        return cls(
            headless=os.environ.get("VOICEPAGE_HEADLESS", "").strip().lower() in ("1", "true", "yes"),
            locale=os.environ.get("VOICEPAGE_LOCALE", DEFAULT_LOCALE),
        )


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--no-first-run",
        "--disable-sync",
        "--noerrdialogs",
    ]


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process."""
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
    except (TimeoutError, OSError):
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False
    if proc.returncode == 0:
        logger.info("Chromium installed successfully")
        return True
    logger.warning(
        "playwright install chromium failed (rc=%d): %s",
        proc.returncode,
        stderr.decode(errors="replace")[:500],
    )
    return False


# ---------------------------------------------------------------------------
# Page driver
# ---------------------------------------------------------------------------


class PlaywrightPageDriver:
    """``PageDriver`` over a live Playwright page. Element handles are ElementHandles."""

    def __init__(self, page: Page, *, timeout_ms: int = 30000, wait_until: str = "load") -> None:
        self.page = page
        self.timeout_ms = timeout_ms
        self.wait_until = wait_until

    @property
    def url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError as e:
            raise BrowserError(f"Could not read title: {e}") from e

    async def html(self) -> str:
        try:
            return await self.page.content()
        except PlaywrightError as e:
            raise BrowserError(f"Could not read page content: {e}") from e

    async def page_text(self, limit: int = DEFAULT_PAGE_TEXT_LIMIT) -> str:
        try:
            return await self.page.evaluate(_PAGE_TEXT_JS, limit) or ""
        except PlaywrightError as e:
            raise BrowserError(f"Could not read page text: {e}") from e

    async def capture_tree(self, max_depth: int) -> DomNode:
        try:
            data = await self.page.evaluate(CAPTURE_JS, max_depth)
        except PlaywrightError as e:
            raise SnapshotError(f"Capture script failed: {e}") from e
        if data is None:
            raise SnapshotError("Document has no root element")
        return from_browser_dump(data)

    async def navigate(self, url: str) -> None:
        logger.info("Navigating to %s", url)
        try:
            await self.page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)
        except PlaywrightError as e:
            raise BrowserError(f"Navigation to {url} failed: {e}") from e

    async def query_selector(self, selector: str) -> ElementHandle | None:
        try:
            return await self.page.query_selector(selector)
        except PlaywrightError:
            logger.debug("Selector lookup failed: %s", selector, exc_info=True)
            return None

    async def query_xpath(self, xpath: str) -> ElementHandle | None:
        try:
            return await self.page.query_selector(f"xpath={xpath}")
        except PlaywrightError:
            logger.debug("XPath lookup failed: %s", xpath, exc_info=True)
            return None

    async def scroll_into_view(self, element: ElementHandle) -> None:
        try:
            await element.evaluate(_SCROLL_JS)
        except PlaywrightError:
            logger.debug("scrollIntoView failed", exc_info=True)

    async def set_outline(self, element: ElementHandle, outline: str) -> str:
        try:
            return await element.evaluate(_SET_OUTLINE_JS, outline) or ""
        except PlaywrightError:
            logger.debug("Outline update failed", exc_info=True)
            return ""

    async def activate(self, element: ElementHandle) -> None:
        try:
            await element.evaluate("(el) => el.click()")
        except PlaywrightError as e:
            raise BrowserError(f"Click failed: {e}") from e

    async def describe(self, element: ElementHandle) -> ElementInfo:
        try:
            data: dict[str, Any] = await element.evaluate(_DESCRIBE_JS)
        except PlaywrightError:
            logger.debug("Describe failed", exc_info=True)
            return ElementInfo(tag="element")
        return ElementInfo(
            tag=data.get("tag") or "element",
            aria_label=data.get("ariaLabel") or "",
            text=data.get("text") or "",
            title=data.get("title") or "",
            alt=data.get("alt") or "",
            placeholder=data.get("placeholder") or "",
        )


# ---------------------------------------------------------------------------
# Page hooks
# ---------------------------------------------------------------------------


async def install_page_hooks(
    page: Page,
    cache: SnapshotCache,
    on_toggle: Callable[[], None] | None = None,
) -> None:
    """Forward mutations, load events and the toggle chord from *page*.

    Init scripts apply to every later document; they are also evaluated once
    on the current document so hooks work without a reload.
    """

    def _on_mutation(_source: Any, kind: str) -> None:
        cache.notify_mutation(kind)

    def _on_toggle(_source: Any, event: dict[str, Any]) -> None:
        if on_toggle is not None and is_toggle_chord(event or {}):
            on_toggle()

    async def _on_dom_ready(_page: Page) -> None:
        await cache.on_document_ready()

    async def _on_load(_page: Page) -> None:
        await cache.on_load()

    await page.expose_binding(MUTATION_BINDING, _on_mutation)
    await page.expose_binding(TOGGLE_BINDING, _on_toggle)
    await page.add_init_script(MUTATION_OBSERVER_JS)
    await page.add_init_script(TOGGLE_LISTENER_JS)
    page.on("domcontentloaded", _on_dom_ready)
    page.on("load", _on_load)
    for script in (MUTATION_OBSERVER_JS, TOGGLE_LISTENER_JS):
        with suppress(PlaywrightError):
            await page.evaluate(script)
    logger.debug("Page hooks installed")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class BrowserSession:
    """Owns Playwright, one browser, one context and one page."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserError("Browser session not started. Use async with or call start().")
        return self._page

    def driver(self) -> PlaywrightPageDriver:
        return PlaywrightPageDriver(self.page, timeout_ms=self.config.timeout_ms, wait_until=self.config.wait_until)

    async def _launch_browser(self) -> None:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self.config)
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except PlaywrightError as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Browser launch failed: {exc}") from exc
            if not await _auto_install_chromium():
                raise BrowserError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        await self._launch_browser()
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            # Microphone stays with the Python process; pages get no permissions
            permissions=[],
            accept_downloads=False,
        )
        self._page = await self._context.new_page()
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def stop(self) -> None:
        """Close everything. Safe to call on a crashed browser."""
        if self._context:
            with suppress(PlaywrightError):
                await self._context.close()
            self._context = None
        self._page = None
        if self._browser:
            with suppress(PlaywrightError):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(PlaywrightError):
                await self._playwright.stop()
            self._playwright = None
        logger.info("Browser session stopped")

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()


@asynccontextmanager
async def create_session(
    config: BrowserConfig | None = None,
) -> AsyncGenerator[BrowserSession, None]:
    """Context manager to create and manage a browser session."""
    session = BrowserSession(config)
    await session.start()
    try:
        yield session
    finally:
        await session.stop()
