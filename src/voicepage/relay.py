# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Relay: forwards interpreter messages to the classifier server.

Message types map to HTTP requests against one endpoint:
- ``VOICE_COMMAND``: the bare payload is POSTed (single-phase server shape)
- ``VOICE_COMMAND_INTENT`` / ``VOICE_COMMAND_DOM``: ``{type, payload}`` is POSTed

Every known message gets exactly one response ``{"ok": True, "data": ...}`` or
``{"ok": False, "error": "..."}``. Unknown types get ``None``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .config import DEFAULT_SERVER_URL, VOICE_COMMAND_PATH
from .snapshot import count_nodes

logger = logging.getLogger("voicepage.relay")

VOICE_COMMAND = "VOICE_COMMAND"
VOICE_COMMAND_INTENT = "VOICE_COMMAND_INTENT"
VOICE_COMMAND_DOM = "VOICE_COMMAND_DOM"

_TAGGED_TYPES = frozenset({VOICE_COMMAND_INTENT, VOICE_COMMAND_DOM})

LARGE_PAYLOAD_BYTES = 1024 * 1024


def _payload_size(payload: dict[str, Any]) -> int:
    return len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))


class Relay:
    """Forwards one message per call; never raises for transport failures."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str = f"{DEFAULT_SERVER_URL}{VOICE_COMMAND_PATH}",
    ) -> None:
        self._client = client
        self.endpoint = endpoint

    async def handle(self, message: dict[str, Any]) -> dict[str, Any] | None:
        message_type = message.get("type")
        payload = message.get("payload") or {}
        if message_type == VOICE_COMMAND:
            body = payload
        elif message_type in _TAGGED_TYPES:
            body = {"type": message_type, "payload": payload}
        else:
            logger.debug("Ignoring message of unknown type %r", message_type)
            return None

        self._log_payload(message_type, payload)
        return await self._post(message_type, body)

    def _log_payload(self, message_type: str, payload: dict[str, Any]) -> None:
        size = _payload_size(payload)
        if message_type == VOICE_COMMAND_DOM:
            logger.info(
                "%s payload: %.1f KB, %d DOM nodes",
                message_type,
                size / 1024,
                count_nodes(payload.get("dom")),
            )
        else:
            logger.info("%s payload: %.1f KB", message_type, size / 1024)
        if size > LARGE_PAYLOAD_BYTES:
            logger.warning("%s payload exceeds 1 MB (%.1f KB)", message_type, size / 1024)

    async def _post(self, message_type: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(self.endpoint, json=body)
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s", message_type, e)
            return {"ok": False, "error": str(e) or type(e).__name__}
        if response.status_code >= 400:
            logger.warning("%s: server returned HTTP %d", message_type, response.status_code)
            return {"ok": False, "error": f"Server error: {response.status_code}"}
        try:
            data = response.json()
        except ValueError:
            logger.warning("%s: server returned a non-JSON body", message_type)
            return {"ok": False, "error": "Invalid JSON from server"}
        logger.debug("%s response: %s", message_type, data)
        return {"ok": True, "data": data}
