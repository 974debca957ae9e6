# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Chat-completion classifier used by the server.

Calls an OpenAI-compatible ``/chat/completions`` endpoint and turns the reply
into an Action (or IntentResult for phase 1). Transport and API failures raise
``ClassifierError``; a reply that is not one JSON object yields the fallback
action instead.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from . import Action, ActionKind, IntentResult, SnapshotNode
from .config import ClassifierConfig, SnapshotConfig
from .errors import ClassifierConfigError, ClassifierError
from .interpreter.prompts import (
    INTENT_SYSTEM_PROMPT,
    SINGLE_PHASE_SYSTEM_PROMPT,
    build_user_message,
    phase_two_system_prompt,
)
from .interpreter.replies import parse_action_reply, parse_intent_reply
from .snapshot import count_nodes, render_snapshot

logger = logging.getLogger("voicepage.classifier")


def _dom_age_s(dom_timestamp: Any) -> float | None:
    if not isinstance(dom_timestamp, int | float) or dom_timestamp <= 0:
        return None
    return max(0.0, time.time() - dom_timestamp / 1000)


def render_dom(dom: Any, snapshot_config: SnapshotConfig | None = None) -> str:
    """Wire-form snapshot dict -> prompt outline; empty for missing trees."""
    if not isinstance(dom, dict) or not dom.get("tag"):
        return ""
    cfg = snapshot_config or SnapshotConfig()
    return render_snapshot(
        SnapshotNode.from_dict(dom),
        max_depth=cfg.render_depth,
        max_children=cfg.render_children,
    )


class ChatCompletionClassifier:
    """Remote text-completion model behind the voice-command endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: ClassifierConfig | None = None,
        snapshot_config: SnapshotConfig | None = None,
    ) -> None:
        self._client = client
        self.config = config or ClassifierConfig()
        self.snapshot_config = snapshot_config or SnapshotConfig()

    @property
    def configured(self) -> bool:
        return self.config.api_key() is not None

    async def complete(self, system_prompt: str, user_message: str) -> str:
        """One chat completion; returns the raw ``message.content``."""
        api_key = self.config.api_key()
        if not api_key:
            raise ClassifierConfigError(f"{self.config.api_key_env} is not set")
        body = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        t0 = time.perf_counter()
        try:
            response = await self._client.post(
                f"{self.config.api_base}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.config.timeout_s,
            )
        except httpx.HTTPError as e:
            raise ClassifierError(f"Completion request failed: {e}") from e
        if response.status_code >= 400:
            logger.warning("Completion API error %d: %.300s", response.status_code, response.text)
            raise ClassifierError(
                f"Completion API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassifierError("Completion reply has no message content") from e
        if not isinstance(content, str):
            raise ClassifierError("Completion reply has no message content")
        logger.info("Completion in %.0fms (%d chars)", (time.perf_counter() - t0) * 1000, len(content))
        logger.debug("Completion content: %s", content)
        return content

    # -- Phases --

    async def classify_single(self, payload: dict[str, Any]) -> Action:
        dom_text = render_dom(payload.get("dom"), self.snapshot_config)
        if dom_text:
            logger.info("Single-phase with %d DOM nodes", count_nodes(payload.get("dom")))
        message = build_user_message(
            str(payload.get("utterance", "")),
            str(payload.get("url") or ""),
            str(payload.get("title") or ""),
            page_text=str(payload.get("pageText") or ""),
            dom_text=dom_text,
            dom_age_s=_dom_age_s(payload.get("domTimestamp")) if dom_text else None,
        )
        return parse_action_reply(await self.complete(SINGLE_PHASE_SYSTEM_PROMPT, message))

    async def classify_intent(self, payload: dict[str, Any]) -> IntentResult:
        message = build_user_message(
            str(payload.get("utterance", "")),
            str(payload.get("url") or ""),
            str(payload.get("title") or ""),
        )
        return parse_intent_reply(await self.complete(INTENT_SYSTEM_PROMPT, message))

    async def classify_dom(self, payload: dict[str, Any]) -> Action:
        action_type = ActionKind.parse(payload.get("actionType") or ActionKind.DESCRIBE.value)
        dom_text = render_dom(payload.get("dom"), self.snapshot_config)
        logger.info("Phase 2 (%s) with %d DOM nodes", action_type, count_nodes(payload.get("dom")))
        message = build_user_message(
            str(payload.get("utterance", "")),
            str(payload.get("url") or ""),
            str(payload.get("title") or ""),
            dom_text=dom_text,
            dom_age_s=_dom_age_s(payload.get("domTimestamp")),
        )
        return parse_action_reply(await self.complete(phase_two_system_prompt(action_type), message))
