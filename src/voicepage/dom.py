# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Live element tree abstraction.

The serializer and locator never touch lxml or Playwright directly; they walk
``DomNode`` trees built from one of two sources:

- ``from_html()``: offline: lxml document, computed style resolved from
  inline ``style`` declarations and the ``hidden`` attribute.
- ``from_browser_dump()``: live: the dict tree produced by
  ``CAPTURE_JS`` evaluated in a Playwright page, carrying real computed style.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import lxml.html
from lxml import etree

from .errors import SnapshotError

logger = logging.getLogger("voicepage.dom")

# Computed style properties the serializer reads
STYLE_PROPERTIES = ("display", "visibility", "opacity", "color", "background-color", "font-size")

# CSS initial values (what an unstyled element computes to)
INITIAL_STYLE: dict[str, str] = {
    "display": "inline",
    "visibility": "visible",
    "opacity": "1",
    "color": "rgb(0, 0, 0)",
    "background-color": "rgba(0, 0, 0, 0)",
    "font-size": "16px",
}

_DECLARATION_RE = re.compile(r"\s*([-a-zA-Z]+)\s*:\s*([^;]+?)\s*(?:!important\s*)?(?:;|$)")


class StyleUnavailable(Exception):
    """Computed style could not be read for an element."""


@dataclass(eq=False)
class DomNode:
    """One element of a live tree. Identity equality; parent link for path walks."""

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    text_parts: list[str] = field(default_factory=list)  # direct text node contents
    children: list[DomNode] = field(default_factory=list)  # element children only
    computed_style: dict[str, str] | None = None  # None: lookup failed
    parent: DomNode | None = field(default=None, repr=False)

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attributes.get(name, default)

    def style(self) -> dict[str, str]:
        """Computed style; raises StyleUnavailable when the lookup failed."""
        if self.computed_style is None:
            raise StyleUnavailable(self.tag)
        return self.computed_style

    @property
    def direct_text(self) -> str:
        return " ".join(part.strip() for part in self.text_parts if part and part.strip())

    def append(self, child: DomNode) -> DomNode:
        child.parent = self
        self.children.append(child)
        return child

    def iter(self):
        """Depth-first pre-order walk (self included)."""
        yield self
        for child in self.children:
            yield from child.iter()

    def preceding_siblings(self) -> list[DomNode]:
        if self.parent is None:
            return []
        siblings = self.parent.children
        for i, node in enumerate(siblings):
            if node is self:
                return siblings[:i]
        return []


# ---------------------------------------------------------------------------
# Offline source: lxml + inline style
# ---------------------------------------------------------------------------


def parse_inline_style(style: str | None) -> dict[str, str]:
    """Parse ``style="a: b; c: d"`` into a lowercase property map.

    ``background`` shorthand counts as ``background-color`` when it is a bare colour.
    """
    if not style:
        return {}
    decls: dict[str, str] = {}
    for m in _DECLARATION_RE.finditer(style):
        name = m.group(1).lower()
        value = m.group(2).strip()
        if not value:
            continue
        if name == "background" and " " not in value:
            name = "background-color"
        decls[name] = value
    return decls


def resolve_inline_style(el: lxml.html.HtmlElement) -> dict[str, str]:
    """Approximate computed style for an lxml element without a layout engine."""
    style = dict(INITIAL_STYLE)
    declared = parse_inline_style(el.get("style"))
    for prop in STYLE_PROPERTIES:
        if prop in declared:
            style[prop] = declared[prop].lower() if prop in ("display", "visibility") else declared[prop]
    if el.get("hidden") is not None and "display" not in declared:
        style["display"] = "none"
    return style


def _lxml_tag(el) -> str | None:
    tag = el.tag
    if not isinstance(tag, str):
        return None  # comment, processing instruction, entity
    return tag.lower()


def _from_lxml(el: lxml.html.HtmlElement) -> DomNode:
    node = DomNode(
        tag=_lxml_tag(el) or "",
        attributes={str(k).lower(): str(v) for k, v in el.attrib.items()},
        computed_style=resolve_inline_style(el),
    )
    if el.text:
        node.text_parts.append(el.text)
    for child in el:
        if _lxml_tag(child) is not None:
            node.append(_from_lxml(child))
        if child.tail:
            node.text_parts.append(child.tail)
    return node


def from_lxml(root: lxml.html.HtmlElement) -> DomNode:
    """Wrap an lxml element (and its subtree) as a DomNode tree."""
    if _lxml_tag(root) is None:
        raise SnapshotError("Root is not an element")
    return _from_lxml(root)


def from_html(html: str) -> DomNode:
    """Parse an HTML document and return its ``<html>`` root as a DomNode tree."""
    if not html or not html.strip():
        raise SnapshotError("Empty HTML input")
    try:
        parser = lxml.html.HTMLParser(recover=True, encoding="utf-8")
        doc = lxml.html.document_fromstring(html.encode("utf-8"), parser=parser)
    except (etree.ParserError, ValueError) as e:
        raise SnapshotError(f"lxml parsing failed: {e}") from e
    return from_lxml(doc)


# ---------------------------------------------------------------------------
# Live source: browser dump
# ---------------------------------------------------------------------------

# Dumps every element to ``maxDepth``; hidden-set tags are emitted as leaves so
# sibling positions stay correct. ``style: null`` marks a getComputedStyle failure.
CAPTURE_JS = """(maxDepth) => {
  const HIDDEN = new Set(['script', 'style', 'noscript', 'svg', 'iframe']);
  const PROPS = ['display', 'visibility', 'opacity', 'color', 'background-color', 'font-size'];
  const dump = (el, depth) => {
    const tag = el.tagName.toLowerCase();
    const attrs = {};
    for (const a of el.attributes) attrs[a.name] = a.value;
    let style = null;
    try {
      const cs = window.getComputedStyle(el);
      style = {};
      for (const p of PROPS) style[p] = cs.getPropertyValue(p);
    } catch (e) {
      style = null;
    }
    const text = [];
    const children = [];
    for (const child of el.childNodes) {
      if (child.nodeType === Node.TEXT_NODE) {
        text.push(child.textContent);
      } else if (child.nodeType === Node.ELEMENT_NODE) {
        if (HIDDEN.has(child.tagName.toLowerCase()) || depth >= maxDepth) {
          children.push({tag: child.tagName.toLowerCase(), attrs: {}, text: [], style: null, children: []});
        } else {
          children.push(dump(child, depth + 1));
        }
      }
    }
    return {tag, attrs, text, style, children};
  };
  return document.documentElement ? dump(document.documentElement, 0) : null;
}"""


def from_browser_dump(data: dict[str, Any], parent: DomNode | None = None) -> DomNode:
    """Build a DomNode tree from the ``CAPTURE_JS`` result."""
    if not isinstance(data, dict) or not data.get("tag"):
        raise SnapshotError("Malformed browser dump")
    style = data.get("style")
    node = DomNode(
        tag=str(data["tag"]).lower(),
        attributes={str(k).lower(): str(v) for k, v in (data.get("attrs") or {}).items()},
        text_parts=[str(t) for t in (data.get("text") or [])],
        computed_style={str(k): str(v) for k, v in style.items()} if isinstance(style, dict) else None,
    )
    if parent is not None:
        parent.append(node)
    for child in data.get("children") or []:
        if isinstance(child, dict) and child.get("tag"):
            from_browser_dump(child, node)
    return node
