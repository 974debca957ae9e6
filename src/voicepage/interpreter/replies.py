# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Parsing of classifier replies into Actions.

The classifier is asked for exactly one JSON object. Anything else becomes
a fixed ``none`` action instead of an exception:
- not JSON at all -> ``FALLBACK_ACTION``
- JSON, but not an object -> ``INVALID_REPLY_ACTION``
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .. import FALLBACK_ACTION, Action, ActionKind, IntentResult

logger = logging.getLogger("voicepage.interpreter.replies")

INVALID_REPLY_ACTION = Action(kind=ActionKind.NONE, speak_text="Sorry, I did not get a valid response from the AI.")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

# Kinds that can be completed without looking at the page
_NO_DOM_KINDS = frozenset({ActionKind.NAVIGATE, ActionKind.NONE})


def decode_reply(content: str | bytes | None) -> Any:
    """Decode reply text as JSON, tolerating a markdown code fence.

    Raises ValueError when the text is not JSON.
    """
    if content is None:
        raise ValueError("empty reply")
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    text = content.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    return json.loads(text)


def load_reply_object(content: str | bytes | None) -> dict[str, Any] | None:
    """Decode one JSON object from a reply body; None when it is anything else."""
    try:
        data = decode_reply(content)
    except ValueError:
        logger.warning("Reply is not JSON: %.200s", content)
        return None
    if not isinstance(data, dict):
        logger.warning("Reply JSON is not an object: %s", type(data).__name__)
        return None
    return data


def action_from_object(data: dict[str, Any] | None) -> Action:
    """Reply object -> Action; fallback when the object is unusable."""
    if not data:
        return FALLBACK_ACTION
    return Action.from_wire(data)


def parse_action_reply(content: str | bytes | None) -> Action:
    """Reply text -> Action, substituting a fixed ``none`` action for malformed replies."""
    try:
        data = decode_reply(content)
    except ValueError:
        logger.warning("Reply is not JSON, using fallback: %.200s", content)
        return FALLBACK_ACTION
    if not isinstance(data, dict):
        logger.warning("Reply JSON is not an object: %s", type(data).__name__)
        return INVALID_REPLY_ACTION
    return action_from_object(data)


def _is_true(value: Any) -> bool:
    # quoted booleans: only "true" counts
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def intent_from_object(data: dict[str, Any] | None) -> IntentResult:
    """Phase-1 object -> IntentResult.

    ``needsDOM`` defaults to False for navigate/none and True for everything
    else. A complete action is attached only when no DOM is needed.
    """
    if not data:
        return IntentResult(action_type=ActionKind.NONE, needs_dom=False, action=FALLBACK_ACTION)
    action_type = ActionKind.parse(data.get("actionType") or data.get("action") or ActionKind.NONE.value)
    raw_needs = data.get("needsDOM")
    needs_dom = _is_true(raw_needs) if raw_needs is not None else action_type not in _NO_DOM_KINDS
    if needs_dom:
        return IntentResult(action_type=action_type, needs_dom=True)
    action = Action.from_wire({**data, "action": action_type.value})
    return IntentResult(action_type=action_type, needs_dom=False, action=action)


def parse_intent_reply(content: str | bytes | None) -> IntentResult:
    return intent_from_object(load_reply_object(content))
