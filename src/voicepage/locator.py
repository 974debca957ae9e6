# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""XPath locator: a path string that re-locates an element.

Elements with an ``id`` short-circuit to ``//*[@id="..."]`` (uniqueness is
assumed, not verified). Otherwise the path is built from the element up to
the document root, one step per level. A step is ``tag[n]`` whenever the
parent has more than one child with that tag, where ``n`` is 1 + the number
of preceding siblings with the same tag; an only child of its tag is ``tag``.

Deterministic for a static tree; not stable across DOM mutations.
"""

from __future__ import annotations

from .dom import DomNode


def sibling_index(node: DomNode) -> int:
    """1-based position of *node* among same-tag siblings."""
    return 1 + sum(1 for sib in node.preceding_siblings() if sib.tag == node.tag)


def _has_same_tag_sibling(node: DomNode) -> bool:
    if node.parent is None:
        return False
    return any(sib is not node and sib.tag == node.tag for sib in node.parent.children)


def xpath_literal(value: str) -> str:
    """Quote *value* as an XPath 1.0 string literal."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


def xpath_for(node: DomNode) -> str:
    """Compute the locating XPath for *node*."""
    element_id = node.get("id")
    if element_id:
        return f"//*[@id={xpath_literal(element_id)}]"

    steps: list[str] = []
    current: DomNode | None = node
    while current is not None:
        if _has_same_tag_sibling(current):
            steps.append(f"{current.tag}[{sibling_index(current)}]")
        else:
            steps.append(current.tag)
        current = current.parent
    return "/" + "/".join(reversed(steps))
