# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import voicepage  # noqa: F401
except ImportError:
    raise ImportError("voicepage is not installed. Run: pip install -e '.[test]'") from None

import pytest

from tests._gmail_helpers import gmail_page, gmail_row


@pytest.fixture
def inbox_html() -> str:
    """Five visible emails, three unread."""
    rows = [
        gmail_row("Alice", "Quarterly report", unread=True, snippet="Numbers attached"),
        gmail_row("Bob", "Lunch?", unread=True, snippet="Are you free"),
        gmail_row("Carol", "Re: design review", snippet="Looks good"),
        gmail_row("Dave", "Invoice 2291", unread=True, snippet="Due Friday"),
        gmail_row("Erin", "Weekend plans", snippet="Hiking?"),
    ]
    return gmail_page(rows)


@pytest.fixture(autouse=True)
def _no_classifier_key(monkeypatch):
    """Tests never reach a real classifier; those that need a key set it explicitly."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
