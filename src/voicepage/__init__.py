# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""voicepage: voice control for web pages.

Core data model shared by every layer:
- SnapshotNode / Snapshot: bounded, filtered tree of a page's visible DOM
- Action: structured instruction produced by an interpreter, consumed by the executor
- InterpretRequest / IntentResult: the interpreter wire contract
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import InvalidActionError

logger = logging.getLogger("voicepage")


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SnapshotNode:
    """One visible element of a captured page. Never mutated after capture."""

    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    style: dict[str, str] = field(default_factory=dict)
    text: str = ""  # own direct text only, truncated
    xpath: str = ""
    children: tuple[SnapshotNode, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "attrs": dict(self.attrs),
            "style": dict(self.style),
            "text": self.text,
            "xpath": self.xpath,
            "children": [c.to_dict() for c in self.children],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotNode:
        """Rebuild a node from its wire form (as sent by the relay)."""
        return cls(
            tag=str(data.get("tag", "")),
            attrs={str(k): str(v) for k, v in (data.get("attrs") or {}).items()},
            style={str(k): str(v) for k, v in (data.get("style") or {}).items()},
            text=str(data.get("text") or ""),
            xpath=str(data.get("xpath") or ""),
            children=tuple(cls.from_dict(c) for c in (data.get("children") or []) if isinstance(c, dict)),
        )


@dataclass(frozen=True, slots=True)
class Snapshot:
    """A captured tree plus its capture time (epoch seconds)."""

    tree: SnapshotNode
    captured_at: float

    def age(self, now: float | None = None) -> float:
        """Seconds since capture."""
        return max(0.0, (now if now is not None else time.time()) - self.captured_at)

    @property
    def timestamp_ms(self) -> int:
        """Capture time in epoch milliseconds (``domTimestamp`` on the wire)."""
        return int(self.captured_at * 1000)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionKind(StrEnum):
    """Closed set of actions the executor knows how to perform."""

    NAVIGATE = "navigate"
    CLICK = "click"
    DESCRIBE = "describe"
    NONE = "none"
    # Gmail-specific kinds from the first server revision
    NAVIGATE_EMAIL = "navigateEmail"
    DESCRIBE_PAGE_CONTEXT = "describePageContext"
    COUNT_UNREAD_EMAILS = "countUnreadEmails"
    # Local rule matcher only: farewell, then switch the agent off
    DEACTIVATE = "deactivate"

    @classmethod
    def parse(cls, value: object) -> ActionKind:
        """Map a wire value to a kind; unknown values become NONE."""
        try:
            return cls(str(value))
        except ValueError:
            logger.warning("Unknown action from interpreter: %r", value)
            return cls.NONE


@dataclass(frozen=True, slots=True)
class Action:
    """Structured instruction: kind + parameters + text to speak."""

    kind: ActionKind
    params: dict[str, Any] = field(default_factory=dict)
    speak_text: str = ""

    def validate(self) -> None:
        """Raise InvalidActionError when required parameters are missing."""
        if self.kind is ActionKind.CLICK and not (self.params.get("xpath") or self.params.get("selector")):
            raise InvalidActionError("click requires params.xpath or params.selector")
        if self.kind is ActionKind.NAVIGATE and not self.params.get("url"):
            raise InvalidActionError("navigate requires params.url")

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "command",
            "action": self.kind.value,
            "params": dict(self.params),
            "speakText": self.speak_text,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Action:
        """Build an Action from a reply object.

        Accepts ``action`` (server shape) or ``kind``/``actionType`` as the kind key.
        """
        kind_value = data.get("action") or data.get("kind") or data.get("actionType") or ActionKind.NONE.value
        params = data.get("params")
        return cls(
            kind=ActionKind.parse(kind_value),
            params=dict(params) if isinstance(params, dict) else {},
            speak_text=str(data.get("speakText") or data.get("speak_text") or ""),
        )


FALLBACK_SPEAK_TEXT = "Sorry, I had trouble understanding that."
FALLBACK_ACTION = Action(kind=ActionKind.NONE, speak_text=FALLBACK_SPEAK_TEXT)


# ---------------------------------------------------------------------------
# Interpreter contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InterpretRequest:
    """One utterance plus the page context captured when it was heard."""

    utterance: str
    url: str = ""
    title: str = ""
    page_text: str = ""  # visible text, truncated
    html: str = ""  # page markup, for heuristics that query the document
    snapshot: Snapshot | None = None  # reference taken at request time


@dataclass(frozen=True, slots=True)
class IntentResult:
    """Phase-1 reply of two-phase interpretation."""

    action_type: ActionKind
    needs_dom: bool
    action: Action | None = None  # complete action when no DOM is needed

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = self.action.to_wire() if self.action is not None else {}
        wire["actionType"] = self.action_type.value
        wire["needsDOM"] = self.needs_dom
        return wire
