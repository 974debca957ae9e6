# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the voice-command server and the chat-completion classifier.

The completion API is an httpx.MockTransport; the app is driven through
httpx.ASGITransport.
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest
import structlog

from voicepage.classifier import ChatCompletionClassifier, render_dom
from voicepage.config import ClassifierConfig
from voicepage.errors import ClassifierConfigError, ClassifierError
from voicepage.interpreter.prompts import CLICK_SYSTEM_PROMPT, INTENT_SYSTEM_PROMPT, SINGLE_PHASE_SYSTEM_PROMPT
from voicepage.logging_config import clear_context, configure
from voicepage.server import create_app

API_BASE = "https://llm.test/v1"

DOM = {
    "tag": "body",
    "attrs": {},
    "style": {},
    "text": "",
    "xpath": "/html/body",
    "children": [
        {"tag": "button", "attrs": {"id": "go"}, "style": {}, "text": "Go", "xpath": '//*[@id="go"]', "children": []}
    ],
}


class _Completions:
    """Fake chat-completions API: replies with queued content strings."""

    def __init__(self, *contents: str, status: int = 200):
        self.contents = list(contents)
        self.status = status
        self.requests: list[dict] = []
        self.auth: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.auth.append(request.headers.get("authorization", ""))
        if self.status >= 400:
            return httpx.Response(self.status, json={"error": {"message": "boom"}})
        content = self.contents.pop(0)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})

    def system_prompt(self, i: int = 0) -> str:
        return self.requests[i]["messages"][0]["content"]

    def user_message(self, i: int = 0) -> str:
        return self.requests[i]["messages"][1]["content"]


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")


def _classifier(api: _Completions) -> ChatCompletionClassifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return ChatCompletionClassifier(client, ClassifierConfig(api_base=API_BASE))


def _client(api: _Completions) -> httpx.AsyncClient:
    app = create_app(_classifier(api))
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class TestClassifier:
    async def test_complete_sends_bearer_and_model(self, api_key):
        api = _Completions('{"action": "none", "speakText": "hi"}')
        content = await _classifier(api).complete("sys", "user")
        assert content == '{"action": "none", "speakText": "hi"}'
        assert api.auth == ["Bearer test-key"]
        assert api.requests[0]["model"] == ClassifierConfig.model
        assert api.requests[0]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user"},
        ]

    async def test_missing_key(self):
        api = _Completions("{}")
        classifier = _classifier(api)
        assert not classifier.configured
        with pytest.raises(ClassifierConfigError):
            await classifier.complete("sys", "user")
        assert api.requests == []

    async def test_http_error(self, api_key):
        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(_Completions(status=429)).complete("s", "u")
        assert exc_info.value.status_code == 429

    async def test_transport_error(self, api_key):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with pytest.raises(ClassifierError):
            await ChatCompletionClassifier(client).complete("s", "u")

    async def test_reply_without_content(self, api_key):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []})))
        with pytest.raises(ClassifierError):
            await ChatCompletionClassifier(client).complete("s", "u")

    async def test_single_phase_prefers_dom_over_text(self, api_key):
        api = _Completions('{"action": "describe", "speakText": "A button."}')
        action = await _classifier(api).classify_single(
            {"utterance": "what is here", "url": "u", "title": "t", "pageText": "Go", "dom": DOM, "domTimestamp": 1}
        )
        assert action.speak_text == "A button."
        assert api.system_prompt() == SINGLE_PHASE_SYSTEM_PROMPT
        assert '@//*[@id="go"]' in api.user_message()
        assert "Page text" not in api.user_message()

    async def test_single_phase_page_text(self, api_key):
        api = _Completions('{"action": "none"}')
        await _classifier(api).classify_single({"utterance": "hi", "pageText": "Hello world"})
        assert '"""Hello world"""' in api.user_message()

    def test_render_dom(self):
        assert render_dom(None) == ""
        assert render_dom({"children": []}) == ""
        assert render_dom(DOM).splitlines()[0] == "<body> @/html/body"


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


class TestVoiceCommand:
    async def test_single_phase(self, api_key):
        api = _Completions('{"type": "command", "action": "navigate", "params": {"url": "https://github.com"}}')
        async with _client(api) as client:
            resp = await client.post("/api/voice-command", json={"utterance": "open github", "url": "u"})
        assert resp.status_code == 200
        assert resp.json() == {
            "type": "command",
            "action": "navigate",
            "params": {"url": "https://github.com"},
            "speakText": "",
        }

    @pytest.mark.parametrize("body", [{}, {"utterance": ""}, {"utterance": 42}, {"url": "x"}])
    async def test_missing_utterance(self, body, api_key):
        api = _Completions()
        async with _client(api) as client:
            resp = await client.post("/api/voice-command", json=body)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing 'utterance' in request body"}
        assert api.requests == []

    async def test_invalid_json_body(self, api_key):
        async with _client(_Completions()) as client:
            resp = await client.post(
                "/api/voice-command", content=b"{nope", headers={"content-type": "application/json"}
            )
        assert resp.status_code == 400

    async def test_intent_phase(self, api_key):
        api = _Completions('{"actionType": "click", "needsDOM": true}')
        async with _client(api) as client:
            resp = await client.post(
                "/api/voice-command",
                json={"type": "VOICE_COMMAND_INTENT", "payload": {"utterance": "click go", "url": "u", "title": "t"}},
            )
        assert resp.status_code == 200
        assert resp.json() == {"actionType": "click", "needsDOM": True}
        assert api.system_prompt() == INTENT_SYSTEM_PROMPT

    async def test_intent_phase_with_complete_action(self, api_key):
        api = _Completions('{"actionType": "navigate", "params": {"url": "https://news.test"}, "speakText": "Opening"}')
        async with _client(api) as client:
            resp = await client.post(
                "/api/voice-command",
                json={"type": "VOICE_COMMAND_INTENT", "payload": {"utterance": "open news"}},
            )
        data = resp.json()
        assert data["needsDOM"] is False
        assert data["action"] == "navigate"
        assert data["params"] == {"url": "https://news.test"}

    async def test_dom_phase_click(self, api_key):
        api = _Completions('{"action": "click", "params": {"xpath": "//*[@id=\\"go\\"]"}, "speakText": ""}')
        async with _client(api) as client:
            resp = await client.post(
                "/api/voice-command",
                json={
                    "type": "VOICE_COMMAND_DOM",
                    "payload": {"actionType": "click", "utterance": "click go", "dom": DOM, "domTimestamp": 1},
                },
            )
        assert resp.status_code == 200
        assert resp.json()["params"] == {"xpath": '//*[@id="go"]'}
        assert api.system_prompt() == CLICK_SYSTEM_PROMPT
        assert "Page structure" in api.user_message()

    async def test_unknown_tagged_type(self, api_key):
        async with _client(_Completions()) as client:
            resp = await client.post("/api/voice-command", json={"type": "VOICE_COMMAND_PING", "payload": {}})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Unknown request type"}

    async def test_tagged_without_utterance(self, api_key):
        async with _client(_Completions()) as client:
            resp = await client.post("/api/voice-command", json={"type": "VOICE_COMMAND_INTENT", "payload": {}})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing 'utterance' in request body"}

    async def test_missing_api_key_is_500(self):
        async with _client(_Completions()) as client:
            resp = await client.post("/api/voice-command", json={"utterance": "hi"})
        assert resp.status_code == 500
        assert resp.json()["speakText"] == "Sorry, something went wrong on the server."
        assert resp.json()["action"] == "none"

    async def test_upstream_error_is_500(self, api_key):
        async with _client(_Completions(status=502)) as client:
            resp = await client.post("/api/voice-command", json={"utterance": "hi"})
        assert resp.status_code == 500
        assert resp.json()["speakText"] == "Sorry, something went wrong on the server."

    async def test_non_json_reply_falls_back(self, api_key):
        async with _client(_Completions("I think you want GitHub")) as client:
            resp = await client.post("/api/voice-command", json={"utterance": "hi"})
        assert resp.status_code == 200
        assert resp.json()["speakText"] == "Sorry, I had trouble understanding that."

    async def test_non_object_reply(self, api_key):
        async with _client(_Completions("[1, 2]")) as client:
            resp = await client.post("/api/voice-command", json={"utterance": "hi"})
        assert resp.status_code == 200
        assert resp.json()["speakText"] == "Sorry, I did not get a valid response from the AI."


@pytest.fixture
def json_logs(capsys):
    root = logging.getLogger()
    old_handlers, old_level = root.handlers[:], root.level
    # configure() binds the handler to the current sys.stderr, and the stream
    # capsys installs during setup is closed before the test body runs; the
    # yielded callable lets the test configure once capture is live.
    yield lambda: configure(json_output=True)
    root.handlers = old_handlers
    root.setLevel(old_level)
    clear_context()
    structlog.reset_defaults()


class TestRequestLogContext:
    async def test_request_type_bound(self, api_key, capsys, json_logs):
        json_logs()
        api = _Completions('{"actionType": "scroll", "needsDOM": false}')
        async with _client(api) as client:
            await client.post(
                "/api/voice-command",
                json={"type": "VOICE_COMMAND_INTENT", "payload": {"utterance": "scroll down"}},
            )
        lines = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.startswith("{")]
        replies = [line for line in lines if line["logger"] == "voicepage.server" and line["event"].startswith("Reply")]
        assert replies
        assert replies[0]["request_type"] == "VOICE_COMMAND_INTENT"


class TestPreflightAndHealth:
    async def test_preflight(self):
        async with _client(_Completions()) as client:
            resp = await client.options(
                "/api/voice-command",
                headers={
                    "Origin": "https://mail.google.com",
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Headers": "content-type",
                },
            )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert "Content-Type" in resp.headers["access-control-allow-headers"]
        assert resp.headers["access-control-allow-private-network"] == "true"
        assert resp.headers["access-control-allow-origin"] == "https://mail.google.com"
        assert resp.headers["access-control-allow-credentials"] == "true"

    async def test_private_network_preflight(self):
        async with _client(_Completions()) as client:
            resp = await client.options(
                "/api/voice-command",
                headers={
                    "Origin": "https://mail.google.com",
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Private-Network": "true",
                },
            )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-private-network"] == "true"

    async def test_preflight_rejects_other_methods(self):
        async with _client(_Completions()) as client:
            resp = await client.options(
                "/api/voice-command",
                headers={"Origin": "https://mail.google.com", "Access-Control-Request-Method": "DELETE"},
            )
        assert resp.status_code == 400

    async def test_cors_on_post(self, api_key):
        async with _client(_Completions('{"action": "none"}')) as client:
            resp = await client.post(
                "/api/voice-command", json={"utterance": "hi"}, headers={"Origin": "https://example.com"}
            )
        assert resp.headers["access-control-allow-origin"] == "https://example.com"
        assert resp.headers["access-control-allow-credentials"] == "true"
        assert "Origin" in resp.headers["vary"]
        assert resp.headers["access-control-allow-private-network"] == "true"

    async def test_no_origin_no_allow_origin(self):
        async with _client(_Completions()) as client:
            resp = await client.get("/health")
        assert "access-control-allow-origin" not in resp.headers
        assert resp.headers["access-control-allow-private-network"] == "true"

    async def test_health_without_key(self):
        async with _client(_Completions()) as client:
            resp = await client.get("/health")
        assert resp.json() == {"status": "ok", "apiKeyConfigured": False}

    async def test_health_with_key(self, api_key):
        async with _client(_Completions()) as client:
            resp = await client.get("/health")
        assert resp.json()["apiKeyConfigured"] is True

    async def test_get_not_allowed(self):
        async with _client(_Completions()) as client:
            resp = await client.get("/api/voice-command")
        assert resp.status_code == 405
