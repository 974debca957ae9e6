# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Private Network Access header for the voice-command server.

Origin echoing, credentials and preflight answers come from Starlette's
``CORSMiddleware`` (see ``server.create_app``). Chrome additionally wants
``Access-Control-Allow-Private-Network: true`` before a public page may call
a server on localhost; this wrapper puts it on every HTTP response.

Pure ASGI, no BaseHTTPMiddleware. A value already set by the app is kept.
"""

from __future__ import annotations

PRIVATE_NETWORK_HEADER: tuple[bytes, bytes] = (b"access-control-allow-private-network", b"true")


class PrivateNetworkAccessMiddleware:
    """Adds the private-network header on ``http.response.start``."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def _send_with_header(message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                if all(name.lower() != PRIVATE_NETWORK_HEADER[0] for name, _ in headers):
                    headers.append(PRIVATE_NETWORK_HEADER)
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, _send_with_header)
