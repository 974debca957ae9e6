# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Action executor: performs an Action against a page and speaks the result.

Dispatch is a table keyed by ``ActionKind``; a kind without a handler is a
programming error caught at import time. Per-action failures are spoken, never
raised: the voice loop must survive any single command.

Ordering: the interpreter's ``speak_text`` is spoken before the page effect.
``click`` is the exception: its confirmation names the element and is spoken
after activation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from . import Action, ActionKind
from .drivers import ElementInfo, PageDriver
from .errors import ElementResolutionError, InvalidActionError
from .gmail import INBOX_URL, count_unread, is_gmail, is_inbox_view

logger = logging.getLogger("voicepage.executor")

HIGHLIGHT_OUTLINE = "3px solid #ff9800"
HIGHLIGHT_DELAY_S = 0.3
DESCRIPTION_TEXT_LEN = 50

NOT_FOUND_TEXT = "Sorry, I couldn't find that element."
NO_URL_TEXT = "Sorry, I don't know where to go."


class Speaker(Protocol):
    async def speak(self, text: str) -> None: ...


def describe_element(info: ElementInfo) -> str:
    """Human name for an element: aria-label, text, title, alt, placeholder, else tag."""
    for candidate in (
        info.aria_label.strip(),
        info.text.strip()[:DESCRIPTION_TEXT_LEN],
        info.title.strip(),
        info.alt.strip(),
        info.placeholder.strip(),
    ):
        if candidate:
            return candidate
    return info.tag


def page_context_phrase(html: str, url: str) -> str:
    if is_inbox_view(html, url):
        return "You are in your email inbox."
    if is_gmail(url):
        return "You are in your email, but not in the main inbox."
    return "You are not on your email page."


def unread_count_phrase(count: int) -> str:
    if count == 0:
        return "It looks like you have no unread emails in this view."
    if count == 1:
        return "You have one unread email."
    return f"You have {count} unread emails."


class ActionExecutor:
    """Executes Actions against one page driver."""

    def __init__(
        self,
        driver: PageDriver,
        speaker: Speaker,
        *,
        is_active: Callable[[], bool] = lambda: True,
        deactivate: Callable[[], Awaitable[None]] | None = None,
        highlight_delay_s: float = HIGHLIGHT_DELAY_S,
    ) -> None:
        self._driver = driver
        self._speaker = speaker
        self._is_active = is_active
        self._deactivate = deactivate
        self._highlight_delay_s = highlight_delay_s
        self._deactivation: asyncio.Task | None = None
        self._handlers: dict[ActionKind, Callable[[Action], Awaitable[None]]] = {
            ActionKind.NAVIGATE: self._navigate,
            ActionKind.CLICK: self._click,
            ActionKind.DESCRIBE: self._speak_only,
            ActionKind.NONE: self._speak_only,
            ActionKind.NAVIGATE_EMAIL: self._navigate_email,
            ActionKind.DESCRIBE_PAGE_CONTEXT: self._describe_page_context,
            ActionKind.COUNT_UNREAD_EMAILS: self._count_unread,
            ActionKind.DEACTIVATE: self._deactivate_agent,
        }
        missing = set(ActionKind) - self._handlers.keys()
        if missing:
            raise TypeError(f"No executor handler for: {sorted(missing)}")

    async def execute(self, action: Action) -> None:
        if not self._is_active():
            logger.info("Agent inactive, dropping %s action", action.kind)
            return
        logger.info("Executing %s %s", action.kind, action.params)
        await self._handlers[action.kind](action)

    async def _say(self, text: str) -> None:
        if text:
            await self._speaker.speak(text)

    # -- Generic kinds --

    async def _speak_only(self, action: Action) -> None:
        await self._say(action.speak_text)

    async def _navigate(self, action: Action) -> None:
        try:
            action.validate()
        except InvalidActionError:
            logger.warning("navigate without url")
            await self._say(NO_URL_TEXT)
            return
        await self._say(action.speak_text)
        await self._driver.navigate(str(action.params["url"]))

    async def _resolve(self, params: dict[str, Any]) -> Any:
        """CSS selector first, then XPath. Invalid expressions count as no match."""
        selector = params.get("selector")
        if selector:
            element = await self._driver.query_selector(str(selector))
            if element is not None:
                return element
            logger.debug("Selector matched nothing: %s", selector)
        xpath = params.get("xpath")
        if xpath:
            element = await self._driver.query_xpath(str(xpath))
            if element is not None:
                return element
            logger.debug("XPath matched nothing: %s", xpath)
        raise ElementResolutionError(f"No element for selector={selector!r} xpath={xpath!r}")

    async def _click(self, action: Action) -> None:
        try:
            action.validate()
            element = await self._resolve(action.params)
        except (InvalidActionError, ElementResolutionError) as e:
            logger.info("Click failed: %s", e)
            await self._say(NOT_FOUND_TEXT)
            return

        await self._driver.scroll_into_view(element)
        previous = await self._driver.set_outline(element, HIGHLIGHT_OUTLINE)
        await asyncio.sleep(self._highlight_delay_s)
        try:
            await self._driver.activate(element)
        finally:
            await self._driver.set_outline(element, previous)
        info = await self._driver.describe(element)
        await self._say(f"Clicked {describe_element(info)}.")

    # -- Gmail kinds --

    async def _navigate_email(self, action: Action) -> None:
        await self._say(action.speak_text)
        await self._driver.navigate(INBOX_URL)

    async def _describe_page_context(self, action: Action) -> None:
        await self._say(action.speak_text)
        html = await self._driver.html()
        await self._say(page_context_phrase(html, self._driver.url))

    async def _count_unread(self, action: Action) -> None:
        await self._say(action.speak_text)
        if not is_gmail(self._driver.url):
            await self._say("I can only count unread emails when you are on your Gmail page.")
            return
        count = count_unread(await self._driver.html())
        logger.info("Unread rows: %d", count)
        await self._say(unread_count_phrase(count))

    # -- Agent control --

    async def _deactivate_agent(self, action: Action) -> None:
        await self._say(action.speak_text)
        if self._deactivate is None:
            return
        delay = float(action.params.get("delay", 0.5))
        self._deactivation = asyncio.ensure_future(self._deactivate_later(delay))

    async def _deactivate_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._deactivate()

    async def wait_deactivation(self) -> None:
        if self._deactivation is not None:
            await self._deactivation
