# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Command interpretation: utterance + page context -> Action.

Two interchangeable strategies share the ``Interpreter`` protocol:
- ``GmailRuleInterpreter``: local keyword/regex matcher over Gmail page context
- ``RemoteInterpreter``: delegates to the classifier server through the relay,
  single-phase or two-phase (intent first, DOM only when needed)
"""

from __future__ import annotations

from .base import Interpreter
from .remote import RemoteInterpreter
from .replies import parse_action_reply, parse_intent_reply
from .rules import GmailRuleInterpreter

__all__ = [
    "GmailRuleInterpreter",
    "Interpreter",
    "RemoteInterpreter",
    "parse_action_reply",
    "parse_intent_reply",
]
