# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Remote interpreter: delegates to the classifier server through the relay.

Single-phase sends utterance, page text and (when available) the snapshot in
one request. Two-phase first asks for the intent only; the snapshot is sent in
a second request when the intent says the page structure is needed.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .. import Action, ActionKind, InterpretRequest
from ..relay import VOICE_COMMAND, VOICE_COMMAND_DOM, VOICE_COMMAND_INTENT
from ..snapshot import to_wire
from .replies import action_from_object, intent_from_object

logger = logging.getLogger("voicepage.interpreter.remote")

SERVER_ERROR_TEXT = "Sorry, something went wrong talking to the server."
NO_RESPONSE_TEXT = "Sorry, I didn't get a response from the server."


class MessageHandler(Protocol):
    async def handle(self, message: dict[str, Any]) -> dict[str, Any] | None: ...


def _apology(text: str) -> Action:
    return Action(kind=ActionKind.NONE, speak_text=text)


class RemoteInterpreter:
    """Interpreter backed by the remote classifier."""

    needs_html = False
    needs_snapshot = True

    def __init__(self, relay: MessageHandler, *, two_phase: bool = True) -> None:
        self._relay = relay
        self.two_phase = two_phase

    async def interpret(self, request: InterpretRequest) -> Action:
        if self.two_phase:
            return await self._interpret_two_phase(request)
        return await self._interpret_single(request)

    # -- Single phase --

    async def _interpret_single(self, request: InterpretRequest) -> Action:
        payload: dict[str, Any] = {
            "utterance": request.utterance,
            "url": request.url,
            "title": request.title,
            "pageText": request.page_text,
            **to_wire(request.snapshot),
        }
        data = await self._send(VOICE_COMMAND, payload)
        if isinstance(data, Action):
            return data
        return action_from_object(data)

    # -- Two phase --

    async def _interpret_two_phase(self, request: InterpretRequest) -> Action:
        data = await self._send(
            VOICE_COMMAND_INTENT,
            {"utterance": request.utterance, "url": request.url, "title": request.title},
        )
        if isinstance(data, Action):
            return data
        intent = intent_from_object(data)
        logger.info("Intent: %s (needsDOM=%s)", intent.action_type, intent.needs_dom)
        if not intent.needs_dom:
            return intent.action if intent.action is not None else action_from_object(data)

        if request.snapshot is None:
            logger.warning("Intent %s needs the page structure but no snapshot is available", intent.action_type)
        data = await self._send(
            VOICE_COMMAND_DOM,
            {
                "actionType": intent.action_type.value,
                "utterance": request.utterance,
                "url": request.url,
                "title": request.title,
                **to_wire(request.snapshot),
            },
        )
        if isinstance(data, Action):
            return data
        return action_from_object(data)

    async def _send(self, message_type: str, payload: dict[str, Any]) -> dict[str, Any] | Action:
        """Send one relay message; an apology Action when the reply is unusable."""
        response = await self._relay.handle({"type": message_type, "payload": payload})
        if response is None:
            logger.warning("%s: no response from relay", message_type)
            return _apology(NO_RESPONSE_TEXT)
        if not response.get("ok"):
            logger.warning("%s failed: %s", message_type, response.get("error"))
            return _apology(SERVER_ERROR_TEXT)
        data = response.get("data")
        if not isinstance(data, dict):
            logger.warning("%s: reply data is not an object", message_type)
            return _apology(SERVER_ERROR_TEXT)
        return data
