# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Interpreter protocol: callers never need to know which strategy is active."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .. import Action, InterpretRequest


@runtime_checkable
class Interpreter(Protocol):
    """Maps one utterance plus its page context to an Action. Never raises for bad input."""

    #: Whether the request needs page markup (``InterpretRequest.html``)
    needs_html: bool
    #: Whether the request should carry a snapshot reference
    needs_snapshot: bool

    async def interpret(self, request: InterpretRequest) -> Action: ...
