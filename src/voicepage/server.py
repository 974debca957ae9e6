# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Voice-command HTTP server.

Endpoints:
- ``POST /api/voice-command``: single-phase body ``{utterance, url, title, pageText, dom?, domTimestamp?}``
  or tagged body ``{type: VOICE_COMMAND_INTENT | VOICE_COMMAND_DOM, payload: {...}}``
- ``OPTIONS /api/voice-command``: CORS preflight, answered by Starlette's ``CORSMiddleware``
- ``GET /health``: liveness plus whether the classifier key is configured

The classifier key is read per request; a missing key fails that request
with a 500 and the generic server apology.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from . import Action, ActionKind
from .classifier import ChatCompletionClassifier
from .config import VOICE_COMMAND_PATH, ClassifierConfig, ServerConfig, SnapshotConfig
from .cors_headers import PrivateNetworkAccessMiddleware
from .errors import ClassifierConfigError, VoicePageError
from .logging_config import bind_context, clear_context
from .relay import VOICE_COMMAND, VOICE_COMMAND_DOM, VOICE_COMMAND_INTENT

logger = logging.getLogger("voicepage.server")

SERVER_ERROR_ACTION = Action(kind=ActionKind.NONE, speak_text="Sorry, something went wrong on the server.")

_MISSING_UTTERANCE = {"error": "Missing 'utterance' in request body"}
_UNKNOWN_TYPE = {"error": "Unknown request type"}

# Any page may call the local server; the request Origin is echoed with credentials.
CORS_MIDDLEWARE = [
    Middleware(PrivateNetworkAccessMiddleware),
    Middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        allow_private_network=True,
    ),
]


# ── Request bodies ───────────────────────────────────────────────────


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")

    utterance: StrictStr = Field(min_length=1)
    url: str | None = None
    title: str | None = None


class SinglePhaseBody(_Body):
    pageText: str | None = None
    dom: dict[str, Any] | None = None
    domTimestamp: float | None = None


class IntentBody(_Body):
    pass


class DomBody(_Body):
    actionType: str = ActionKind.DESCRIBE.value
    dom: dict[str, Any] | None = None
    domTimestamp: float | None = None


class TaggedRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


# ── Handlers ─────────────────────────────────────────────────────────


async def _classify(classifier: ChatCompletionClassifier, message_type: str, payload: Any) -> dict[str, Any]:
    """Validate *payload* for *message_type* and return the wire reply.

    Raises ValidationError for a bad body, VoicePageError for classifier failures.
    """
    if message_type == VOICE_COMMAND_INTENT:
        body = IntentBody.model_validate(payload)
        intent = await classifier.classify_intent(body.model_dump())
        return intent.to_wire()
    if message_type == VOICE_COMMAND_DOM:
        body = DomBody.model_validate(payload)
        action = await classifier.classify_dom(body.model_dump())
        return action.to_wire()
    body = SinglePhaseBody.model_validate(payload)
    action = await classifier.classify_single(body.model_dump())
    return action.to_wire()


async def voice_command(request: Request) -> Response:
    classifier: ChatCompletionClassifier = request.app.state.classifier
    try:
        data = await request.json()
    except ValueError:
        return JSONResponse(_MISSING_UTTERANCE, status_code=400)
    if not isinstance(data, dict):
        return JSONResponse(_MISSING_UTTERANCE, status_code=400)

    message_type = VOICE_COMMAND
    payload: Any = data
    if "type" in data and "utterance" not in data:
        try:
            tagged = TaggedRequest.model_validate(data)
        except ValidationError:
            return JSONResponse(_UNKNOWN_TYPE, status_code=400)
        if tagged.type not in (VOICE_COMMAND, VOICE_COMMAND_INTENT, VOICE_COMMAND_DOM):
            logger.warning("Unknown request type: %r", tagged.type)
            return JSONResponse(_UNKNOWN_TYPE, status_code=400)
        message_type, payload = tagged.type, tagged.payload

    clear_context()
    bind_context(request_type=message_type)
    logger.info("%s: %r", message_type, payload.get("utterance") if isinstance(payload, dict) else None)
    try:
        reply = await _classify(classifier, message_type, payload)
    except ValidationError:
        logger.warning("Missing or invalid 'utterance' in %s body", message_type)
        return JSONResponse(_MISSING_UTTERANCE, status_code=400)
    except ClassifierConfigError as e:
        logger.error("Classifier not configured: %s", e)
        return JSONResponse(SERVER_ERROR_ACTION.to_wire(), status_code=500)
    except VoicePageError:
        logger.exception("Error in %s", VOICE_COMMAND_PATH)
        return JSONResponse(SERVER_ERROR_ACTION.to_wire(), status_code=500)

    logger.info("Reply: %s", reply)
    return JSONResponse(reply)


async def health(request: Request) -> Response:
    classifier: ChatCompletionClassifier = request.app.state.classifier
    return JSONResponse({"status": "ok", "apiKeyConfigured": classifier.configured})


# ── App factory ──────────────────────────────────────────────────────


def create_app(
    classifier: ChatCompletionClassifier | None = None,
    *,
    classifier_config: ClassifierConfig | None = None,
    snapshot_config: SnapshotConfig | None = None,
):
    """Build the ASGI app. Without *classifier*, one is created on startup."""

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if classifier is not None:
            yield
            return
        async with httpx.AsyncClient() as client:
            app.state.classifier = ChatCompletionClassifier(
                client,
                classifier_config or ClassifierConfig.from_env(),
                snapshot_config or SnapshotConfig.from_env(),
            )
            logger.info("Classifier API key configured: %s", "YES" if app.state.classifier.configured else "NO")
            yield

    app = Starlette(
        routes=[
            Route(VOICE_COMMAND_PATH, voice_command, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ],
        middleware=CORS_MIDDLEWARE,
        lifespan=lifespan,
    )
    if classifier is not None:
        app.state.classifier = classifier
    return app


async def serve(config: ServerConfig | None = None, app=None) -> None:
    import uvicorn

    config = config or ServerConfig.from_env()
    uv_config = uvicorn.Config(
        app or create_app(),
        host=config.host,
        port=config.port,
        log_level="info",
        log_config=None,
    )
    server = uvicorn.Server(uv_config)
    logger.info("Listening on http://%s:%d%s", config.host, config.port, VOICE_COMMAND_PATH)
    await server.serve()
