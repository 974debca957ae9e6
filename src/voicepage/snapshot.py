# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Snapshot serialization: live tree -> SnapshotNode, and SnapshotNode -> text.

Three output formats:
- SnapshotNode: bounded, filtered tree (capture)
- JSON: wire form sent through the relay
- Prompt text: indented outline for the remote classifier
"""

from __future__ import annotations

import logging
import time
from typing import Any

from . import Snapshot, SnapshotNode
from .dom import DomNode, StyleUnavailable
from .locator import xpath_for

logger = logging.getLogger("voicepage.snapshot")

DEFAULT_CAPTURE_DEPTH = 10
DEFAULT_RENDER_DEPTH = 8
DEFAULT_RENDER_CHILDREN = 20

MAX_TEXT_LEN = 100
MAX_ATTR_VALUE_LEN = 200

# Subtrees never descended into
HIDDEN_TAGS = frozenset({"script", "style", "noscript", "svg", "iframe"})

ATTRIBUTE_ALLOWLIST = (
    "id",
    "class",
    "href",
    "src",
    "alt",
    "title",
    "type",
    "value",
    "placeholder",
    "aria-label",
    "role",
    "name",
    "data-testid",
)

# Interactive/semantic tags that carry style in the snapshot
STYLED_TAGS = frozenset(
    {"a", "button", "input", "select", "textarea", "h1", "h2", "h3", "h4", "h5", "h6", "nav", "header", "footer"}
)

# Style key -> values treated as "default" (omitted)
_STYLE_DEFAULTS: dict[str, frozenset[str]] = {
    "color": frozenset({"rgb(0, 0, 0)", "#000", "#000000", "black"}),
    "background-color": frozenset({"rgba(0, 0, 0, 0)", "transparent"}),
    "font-size": frozenset({"16px"}),
}


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def is_visible(node: DomNode) -> bool:
    """Visibility check; any failure to read computed style counts as hidden."""
    if node.get("aria-hidden", "").strip().lower() == "true":
        return False
    try:
        style = node.style()
        if style.get("display", "").strip().lower() == "none":
            return False
        if style.get("visibility", "").strip().lower() == "hidden":
            return False
        opacity = style.get("opacity", "1").strip() or "1"
        return float(opacity.rstrip("%")) != 0.0
    except (StyleUnavailable, ValueError, AttributeError):
        return False


def _filtered_attrs(node: DomNode) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for key in ATTRIBUTE_ALLOWLIST:
        value = node.get(key)
        if value is None or len(value) > MAX_ATTR_VALUE_LEN:
            continue
        attrs[key] = value
    return attrs


def _filtered_style(node: DomNode) -> dict[str, str]:
    if node.tag not in STYLED_TAGS:
        return {}
    style = node.computed_style or {}
    result: dict[str, str] = {}
    for key, defaults in _STYLE_DEFAULTS.items():
        value = (style.get(key) or "").strip()
        if value and value.lower() not in defaults:
            result[key] = value
    return result


def serialize(node: DomNode, max_depth: int = DEFAULT_CAPTURE_DEPTH, _depth: int = 0) -> SnapshotNode | None:
    """Serialize *node* into a bounded SnapshotNode, or None when filtered out.

    Filtering order: hidden tag set -> visibility -> build node -> recurse into
    element children. Pure read of the tree.
    """
    if _depth > max_depth:
        return None
    if not node.tag or node.tag in HIDDEN_TAGS:
        return None
    if not is_visible(node):
        return None

    children: list[SnapshotNode] = []
    for child in node.children:
        serialized = serialize(child, max_depth, _depth + 1)
        if serialized is not None:
            children.append(serialized)

    return SnapshotNode(
        tag=node.tag,
        attrs=_filtered_attrs(node),
        style=_filtered_style(node),
        text=node.direct_text[:MAX_TEXT_LEN],
        xpath=xpath_for(node),
        children=tuple(children),
    )


def take_snapshot(root: DomNode, max_depth: int = DEFAULT_CAPTURE_DEPTH) -> Snapshot | None:
    """Serialize from *root* and stamp the capture time."""
    t0 = time.perf_counter()
    tree = serialize(root, max_depth)
    if tree is None:
        logger.debug("Snapshot root filtered out (<%s>)", root.tag)
        return None
    logger.debug(
        "Snapshot captured: %d nodes in %.1fms",
        count_nodes(tree),
        (time.perf_counter() - t0) * 1000,
    )
    return Snapshot(tree=tree, captured_at=time.time())


# ---------------------------------------------------------------------------
# Wire + text formats
# ---------------------------------------------------------------------------


def count_nodes(tree: SnapshotNode | dict | None) -> int:
    """Count nodes in a dataclass or wire-form tree."""
    if tree is None:
        return 0
    if isinstance(tree, SnapshotNode):
        return 1 + sum(count_nodes(c) for c in tree.children)
    if isinstance(tree, dict):
        return 1 + sum(count_nodes(c) for c in tree.get("children") or [])
    return 0


def to_wire(snapshot: Snapshot | None) -> dict[str, Any]:
    """``{"dom": ..., "domTimestamp": ...}`` payload fields, empty when no snapshot."""
    if snapshot is None:
        return {}
    return {"dom": snapshot.tree.to_dict(), "domTimestamp": snapshot.timestamp_ms}


def _render_line(node: SnapshotNode) -> str:
    line = f"<{node.tag}"
    for key, value in node.attrs.items():
        line += f' {key}="{value}"'
    line += ">"
    if node.text:
        line += f' "{node.text}"'
    if node.style:
        line += " {" + "; ".join(f"{k}: {v}" for k, v in node.style.items()) + "}"
    if node.xpath:
        line += f" @{node.xpath}"
    return line


def render_snapshot(
    tree: SnapshotNode,
    max_depth: int = DEFAULT_RENDER_DEPTH,
    max_children: int = DEFAULT_RENDER_CHILDREN,
) -> str:
    """Render a snapshot as an indented outline for the classifier.

    Format:
        <body>
          <nav> {background-color: rgb(0, 0, 255)} @/html/body/nav
            <a href="/home"> "Home" @/html/body/nav/a
          <button id="submit"> "Submit" @//*[@id="submit"]
          ... (3 more children)

    At most *max_children* children are written per node; the rest collapse
    into one summary line. Nodes deeper than *max_depth* are omitted.
    """
    lines: list[str] = []

    def _walk(node: SnapshotNode, depth: int) -> None:
        if depth > max_depth:
            return
        indent = "  " * depth
        lines.append(indent + _render_line(node))
        for child in node.children[:max_children]:
            _walk(child, depth + 1)
        overflow = len(node.children) - max_children
        if overflow > 0 and depth + 1 <= max_depth:
            lines.append(f"{indent}  ... ({overflow} more children)")

    _walk(tree, 0)
    return "\n".join(lines)
