# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Local rule matcher for the Gmail voice agent.

The utterance is lower-cased and trimmed, then tested against an ordered rule
list. First match wins; the order is part of the behaviour (e.g. "read email
number 2" is answered by the read-emails rule, not the numbered-email rule).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from .. import Action, ActionKind, InterpretRequest
from ..gmail import GmailContext, OpenEmail, get_gmail_context

logger = logging.getLogger("voicepage.interpreter.rules")

HELP_TEXT = (
    "I can read your emails, tell you about unread messages, read an open email, "
    "or tell you which email is from whom. Try saying: read my emails, how many unread, "
    "or read this email."
)
FAREWELL_TEXT = "Goodbye! Turning off voice agent."

READ_BODY_CHARS = 500
TOP_EMAILS = 3
DEACTIVATE_DELAY_S = 0.5

_NUMBER_PATTERNS = (
    re.compile(r"(?:email|number)\s*(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)(?:st|nd|rd|th)?\s*email", re.IGNORECASE),
)


def _has(cmd: str, *words: str) -> bool:
    return any(w in cmd for w in words)


_READ_WORD = re.compile(r"\bread\b")


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------


def summarize_email_list(context: GmailContext) -> str:
    if not context.email_list:
        return "I don't see any emails in the current view."
    response = f"You have {context.total_visible} emails visible. "
    if context.unread_count > 0:
        response += f"{context.unread_count} are unread. "
    response += "Here are the top emails: "
    for i, email in enumerate(context.email_list[:TOP_EMAILS], 1):
        response += f"{i}: From {email.sender}, {email.subject}. "
    return response.strip()


def unread_phrase(count: int) -> str:
    if count == 0:
        return "You have no unread emails in your current view."
    if count == 1:
        return "You have 1 unread email."
    return f"You have {count} unread emails."


def read_open_email(email: OpenEmail | None) -> str:
    if email is None:
        return "No email is currently open."
    response = f"Email from {email.sender}. Subject: {email.subject}. "
    if email.date:
        response += f"Received {email.date}. "
    if email.body:
        response += f"The email says: {email.body[:READ_BODY_CHARS]}"
        if len(email.body) > READ_BODY_CHARS:
            response += "... The email continues."
    return response.strip()


def numbered_email(index: int, context: GmailContext) -> str:
    if 0 < index <= len(context.email_list):
        email = context.email_list[index - 1]
        return f"Email {index}: From {email.sender}. Subject: {email.subject}. {email.snippet}".strip()
    return f"I can only see emails 1 through {len(context.email_list)}."


def _match_number(cmd: str) -> int | None:
    for pattern in _NUMBER_PATTERNS:
        m = pattern.search(cmd)
        if m:
            return int(m.group(1))
    return None


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    name: str
    respond: Callable[[str, GmailContext], Action | None]


def _describe(text: str) -> Action:
    return Action(kind=ActionKind.DESCRIBE, speak_text=text)


def _rule_read_emails(cmd: str, ctx: GmailContext) -> Action | None:
    # whole word: "unread emails" belongs to the unread-count rule
    if (_READ_WORD.search(cmd) and _has(cmd, "email", "mail")) or (_has(cmd, "what") and _has(cmd, "email")):
        return _describe(summarize_email_list(ctx))
    return None


def _rule_unread(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "unread", "how many"):
        return _describe(unread_phrase(ctx.unread_count))
    return None


def _rule_read_open(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "read this", "what does", "read the email") and ctx.has_open_email:
        return _describe(read_open_email(ctx.open_email))
    return None


def _rule_who_sent(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "who") and _has(cmd, "from", "sent") and ctx.open_email is not None:
        return _describe(f"This email is from {ctx.open_email.sender}.")
    return None


def _rule_subject(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "subject") and ctx.open_email is not None:
        return _describe(f"The subject is: {ctx.open_email.subject}")
    return None


def _rule_numbered(cmd: str, ctx: GmailContext) -> Action | None:
    index = _match_number(cmd)
    if index is None:
        return None
    return _describe(numbered_email(index, ctx))


def _rule_where(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "where", "what view", "which folder"):
        return _describe(f"You are in your {ctx.current_view}.")
    return None


def _rule_help(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "help", "what can you"):
        return _describe(HELP_TEXT)
    return None


def _rule_stop(cmd: str, ctx: GmailContext) -> Action | None:
    if _has(cmd, "stop", "goodbye", "turn off", "shut up"):
        return Action(kind=ActionKind.DEACTIVATE, params={"delay": DEACTIVATE_DELAY_S}, speak_text=FAREWELL_TEXT)
    return None


RULES: tuple[Rule, ...] = (
    Rule("read-emails", _rule_read_emails),
    Rule("unread-count", _rule_unread),
    Rule("read-open-email", _rule_read_open),
    Rule("who-sent", _rule_who_sent),
    Rule("subject", _rule_subject),
    Rule("numbered-email", _rule_numbered),
    Rule("where-am-i", _rule_where),
    Rule("help", _rule_help),
    Rule("stop", _rule_stop),
)


def default_response(utterance: str, ctx: GmailContext) -> str:
    if ctx.has_open_email:
        return (
            f'I heard: "{utterance}". I\'m not sure what you\'d like me to do. '
            'You can say "read this email" or "help" for options.'
        )
    return f'I heard: "{utterance}". Try saying "read my emails" or "help" for available commands.'


def match(utterance: str, context: GmailContext) -> Action:
    """Run the rule table; unmatched utterances echo back with a hint."""
    cmd = utterance.lower().strip()
    for rule in RULES:
        action = rule.respond(cmd, context)
        if action is not None:
            logger.debug("Rule matched: %s", rule.name)
            return action
    logger.debug("No rule matched: %r", cmd)
    return _describe(default_response(utterance, context))


class GmailRuleInterpreter:
    """Interpreter that answers from the Gmail markup without any network call."""

    needs_html = True
    needs_snapshot = False

    def __init__(self, context_loader: Callable[[str, str], GmailContext] = get_gmail_context) -> None:
        self._context_loader = context_loader

    async def interpret(self, request: InterpretRequest) -> Action:
        context = self._context_loader(request.html, request.url)
        logger.info(
            "Interpreting locally: %r (view=%s visible=%d unread=%d open=%s)",
            request.utterance,
            context.current_view,
            context.total_visible,
            context.unread_count,
            context.has_open_email,
        )
        return match(request.utterance, context)
