# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Gmail page heuristics over lxml.

Reads Gmail's list and reading-pane markup with fallback selector chains
(primary class-based selector first, then looser alternatives). These class
names are Gmail internals and may need adjustment when its markup changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlparse

import lxml.html
from cssselect import SelectorError
from lxml import etree

logger = logging.getLogger("voicepage.gmail")

GMAIL_HOST = "mail.google.com"
INBOX_URL = "https://mail.google.com/mail/u/0/#inbox"

MAX_LIST_EMAILS = 10
MAX_BODY_CHARS = 1000

_VIEW_FRAGMENTS = ("inbox", "sent", "drafts", "starred", "search", "label")


@dataclass
class EmailSummary:
    index: int  # 1-based position in the visible list
    sender: str
    subject: str
    snippet: str = ""
    date: str = ""
    is_unread: bool = False


@dataclass
class OpenEmail:
    subject: str
    sender: str
    sender_email: str = ""
    date: str = ""
    to: str = ""
    body: str = ""


@dataclass
class GmailContext:
    """What the user can currently see in Gmail."""

    open_email: OpenEmail | None = None
    email_list: list[EmailSummary] = field(default_factory=list)
    current_view: str = "inbox"

    @property
    def has_open_email(self) -> bool:
        return self.open_email is not None

    @property
    def total_visible(self) -> int:
        return len(self.email_list)

    @property
    def unread_count(self) -> int:
        return sum(1 for e in self.email_list if e.is_unread)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_document(html: str) -> lxml.html.HtmlElement | None:
    if not html or not html.strip():
        return None
    try:
        return lxml.html.document_fromstring(html)
    except (etree.ParserError, ValueError):
        logger.debug("Gmail document parse failed", exc_info=True)
        return None


def _first(root: lxml.html.HtmlElement, *selectors: str) -> lxml.html.HtmlElement | None:
    """First match of the first selector in the chain that matches anything."""
    for sel in selectors:
        try:
            found = root.cssselect(sel)
        except SelectorError:
            logger.debug("Bad selector in chain: %s", sel)
            continue
        if found:
            return found[0]
    return None


def _text(el: lxml.html.HtmlElement | None) -> str:
    if el is None:
        return ""
    return " ".join((el.text_content() or "").split())


def _classes(el: lxml.html.HtmlElement) -> set[str]:
    return set((el.get("class") or "").split())


def is_gmail(url: str) -> bool:
    return GMAIL_HOST in (urlparse(url).hostname or "")


def detect_current_view(url: str) -> str:
    fragment = urlparse(url).fragment
    for view in _VIEW_FRAGMENTS:
        if fragment.startswith(view):
            return view
    return "inbox"


# ---------------------------------------------------------------------------
# List + reading pane
# ---------------------------------------------------------------------------


def get_email_list(doc: lxml.html.HtmlElement) -> list[EmailSummary]:
    """Parse visible list rows (first 10)."""
    emails: list[EmailSummary] = []
    for i, row in enumerate(doc.cssselect("tr.zA"), 1):
        sender_el = _first(row, ".yW .bA4 span[email]", ".yW span[email]", ".yP, .zF")
        subject_el = _first(row, ".bog", ".y6 span:first-child")
        emails.append(
            EmailSummary(
                index=i,
                sender=_text(sender_el) or (sender_el.get("email") if sender_el is not None else "") or "Unknown",
                subject=_text(subject_el) or "No subject",
                snippet=_text(_first(row, ".y2")),
                date=_text(_first(row, ".xW span", ".apt span")),
                is_unread="zE" in _classes(row),
            )
        )
    return emails[:MAX_LIST_EMAILS]


def get_open_email(doc: lxml.html.HtmlElement) -> OpenEmail | None:
    """Parse the open conversation, or None when only the list is shown."""
    if _first(doc, ".adn.ads", ".h7") is None:
        return None
    sender_el = _first(doc, ".gD", ".go")
    sender_email = sender_el.get("email", "") if sender_el is not None else ""
    sender_name = _text(sender_el)
    body_el = _first(doc, ".a3s.aiL", ".ii.gt")
    return OpenEmail(
        subject=_text(_first(doc, ".hP", "h2.hP")) or "No subject",
        sender=sender_name or sender_email or "Unknown sender",
        sender_email=sender_email,
        date=_text(_first(doc, ".g3", ".g6")),
        to=_text(_first(doc, ".g2")),
        body=_text(body_el)[:MAX_BODY_CHARS],
    )


def get_gmail_context(html: str, url: str) -> GmailContext:
    """Summarise the current Gmail view; empty context for unparseable pages."""
    doc = parse_document(html)
    view = detect_current_view(url)
    if doc is None:
        return GmailContext(current_view=view)
    return GmailContext(
        open_email=get_open_email(doc),
        email_list=get_email_list(doc),
        current_view=view,
    )


# ---------------------------------------------------------------------------
# Heuristics used by the legacy Gmail actions
# ---------------------------------------------------------------------------


def is_inbox_view(html: str, url: str) -> bool:
    if not is_gmail(url):
        return False
    if "#inbox" in url:
        return True
    doc = parse_document(html)
    if doc is None:
        return False
    return bool(doc.cssselect("a[title*='Inbox'], a[aria-label*='Inbox']"))


def count_unread(html: str) -> int:
    """Unread rows: ``.zA.zE``, falling back to rows whose aria-label mentions unread."""
    doc = parse_document(html)
    if doc is None:
        return 0
    unread = len(doc.cssselect(".zA.zE"))
    if unread:
        return unread
    logger.debug("No .zA.zE rows, trying aria-label fallback")
    return sum(1 for row in doc.cssselect(".zA, tr") if "unread" in (row.get("aria-label") or "").lower())
