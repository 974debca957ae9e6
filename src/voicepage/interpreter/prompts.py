# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""System instructions and user messages sent to the text-completion model."""

from __future__ import annotations

from .. import ActionKind

# Well-known destinations the model may navigate to without seeing the page
NAVIGATION_TARGETS: dict[str, str] = {
    "gmail": "https://mail.google.com/mail/u/0/#inbox",
    "email": "https://mail.google.com/mail/u/0/#inbox",
    "inbox": "https://mail.google.com/mail/u/0/#inbox",
    "calendar": "https://calendar.google.com/",
    "drive": "https://drive.google.com/",
    "google": "https://www.google.com/",
    "youtube": "https://www.youtube.com/",
    "github": "https://github.com/",
    "wikipedia": "https://www.wikipedia.org/",
    "news": "https://news.google.com/",
    "maps": "https://maps.google.com/",
}

_JSON_RULES = """Do NOT wrap the JSON in backticks or markdown.
Return ONLY the JSON object."""


def _targets_table() -> str:
    return "\n".join(f'* "{name}" -> {url}' for name, url in NAVIGATION_TARGETS.items())


SINGLE_PHASE_SYSTEM_PROMPT = f"""
You are a browser voice assistant that controls the page via a content script.
You MUST respond with a single JSON object, no extra text, no markdown.
Shape:
{{
  "type": "command",
  "action": "<string>",
  "params": {{}},
  "speakText": "<string the extension should say aloud>"
}}

Valid actions:

* "{ActionKind.NAVIGATE}"            // params.url: where to go
* "{ActionKind.CLICK}"               // params.xpath and/or params.selector of the element to click
* "{ActionKind.DESCRIBE}"            // answer a question about the page in speakText
* "{ActionKind.NAVIGATE_EMAIL}"       // navigate to the Gmail inbox
* "{ActionKind.DESCRIBE_PAGE_CONTEXT}" // check whether the user is in their inbox
* "{ActionKind.COUNT_UNREAD_EMAILS}"   // count unread emails in the current view
* "{ActionKind.NONE}"                // small talk or nothing to do on the page

Navigation targets:
{_targets_table()}

Rules:

* For "click", use the xpath shown after "@" in the page structure when one is given.
* For casual chat or anything that does not clearly match an action:
  action "{ActionKind.NONE}", params {{}}, speakText a short, friendly spoken reply.

{_JSON_RULES}
""".strip()


INTENT_SYSTEM_PROMPT = f"""
You classify a spoken browser command. You do NOT see the page yet.
Respond with a single JSON object:
{{
  "actionType": "{ActionKind.NAVIGATE}" | "{ActionKind.CLICK}" | "{ActionKind.DESCRIBE}" | "{ActionKind.NONE}",
  "needsDOM": true | false,
  "params": {{}},
  "speakText": "<string>"
}}

* "{ActionKind.NAVIGATE}": the user names a destination. needsDOM false; params.url from the table
  below (or a full URL the user spelled out); speakText confirms where you are going.
* "{ActionKind.CLICK}": the user wants to press, open, or select something on the page. needsDOM true.
* "{ActionKind.DESCRIBE}": the user asks what is on the page or about its content. needsDOM true.
* "{ActionKind.NONE}": small talk. needsDOM false; speakText is a short friendly reply.

When needsDOM is true, params and speakText may be empty.

Navigation targets:
{_targets_table()}

{_JSON_RULES}
""".strip()


DESCRIBE_SYSTEM_PROMPT = f"""
You answer a spoken question about the web page whose structure is given below.
Each line is one visible element: <tag attributes> "own text" {{style}} @xpath.
Respond with a single JSON object:
{{"type": "command", "action": "{ActionKind.DESCRIBE}", "params": {{}}, "speakText": "<spoken answer>"}}
Keep speakText under three sentences and suitable for reading aloud.

{_JSON_RULES}
""".strip()


CLICK_SYSTEM_PROMPT = f"""
You pick the element the user wants to click on the web page whose structure is given below.
Each line is one visible element: <tag attributes> "own text" {{style}} @xpath.
Respond with a single JSON object:
{{"type": "command", "action": "{ActionKind.CLICK}", "params": {{"xpath": "<xpath after @>", "selector": "<optional css>"}},
 "speakText": "<short confirmation>"}}
If no element matches, respond with action "{ActionKind.NONE}" and explain in speakText.

{_JSON_RULES}
""".strip()


def phase_two_system_prompt(action_type: ActionKind) -> str:
    return CLICK_SYSTEM_PROMPT if action_type is ActionKind.CLICK else DESCRIBE_SYSTEM_PROMPT


def build_user_message(
    utterance: str,
    url: str = "",
    title: str = "",
    *,
    page_text: str = "",
    dom_text: str = "",
    dom_age_s: float | None = None,
) -> str:
    """User turn: utterance, location, and either page text or rendered structure."""
    parts = [
        f'User utterance: "{utterance}"',
        "",
        f"Page URL: {url}",
        f"Page title: {title}",
    ]
    if dom_text:
        parts.append("")
        header = "Page structure"
        if dom_age_s is not None:
            header += f" (captured {dom_age_s:.0f}s ago)"
        parts.append(f"{header}:")
        parts.append(dom_text)
    elif page_text:
        parts.append("")
        parts.append("Page text (truncated):")
        parts.append(f'"""{page_text}"""')
    return "\n".join(parts)
