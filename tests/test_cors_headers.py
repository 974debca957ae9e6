# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the private-network header middleware (pure ASGI)."""

from __future__ import annotations

from unittest.mock import AsyncMock

from voicepage.cors_headers import PRIVATE_NETWORK_HEADER, PrivateNetworkAccessMiddleware


async def _echo_app(scope, receive, send):
    await send({"type": "http.response.start", "status": 200, "headers": [(b"content-type", b"text/plain")]})
    await send({"type": "http.response.body", "body": b"ok"})


async def _run(app, scope) -> list[dict]:
    sent: list[dict] = []

    async def capture(message):
        sent.append(message)

    await PrivateNetworkAccessMiddleware(app)(scope, AsyncMock(), capture)
    return sent


class TestPrivateNetworkHeader:
    async def test_added_to_every_response(self):
        sent = await _run(_echo_app, {"type": "http", "headers": []})
        headers = dict(sent[0]["headers"])
        assert headers[PRIVATE_NETWORK_HEADER[0]] == b"true"
        assert headers[b"content-type"] == b"text/plain"

    async def test_existing_value_kept(self):
        async def app(scope, receive, send):
            await send(
                {
                    "type": "http.response.start",
                    "status": 200,
                    "headers": [(b"Access-Control-Allow-Private-Network", b"false")],
                }
            )
            await send({"type": "http.response.body", "body": b""})

        sent = await _run(app, {"type": "http", "headers": []})
        values = [v for k, v in sent[0]["headers"] if k.lower() == PRIVATE_NETWORK_HEADER[0]]
        assert values == [b"false"]

    async def test_body_untouched(self):
        sent = await _run(_echo_app, {"type": "http", "headers": []})
        assert sent[1] == {"type": "http.response.body", "body": b"ok"}

    async def test_non_http_passthrough(self):
        app = AsyncMock()
        scope = {"type": "lifespan"}
        receive, send = AsyncMock(), AsyncMock()
        await PrivateNetworkAccessMiddleware(app)(scope, receive, send)
        app.assert_awaited_once_with(scope, receive, send)
