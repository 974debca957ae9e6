# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""DomNode helpers shared by the locator, snapshot and interpreter tests."""

from __future__ import annotations

from voicepage.dom import DomNode, from_html


def find_body(root: DomNode) -> DomNode:
    """Return the ``<body>`` element, or the root when there is none."""
    for node in root.iter():
        if node.tag == "body":
            return node
    return root


def body_of(html: str) -> DomNode:
    return find_body(from_html(html))
