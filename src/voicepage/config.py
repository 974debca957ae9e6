# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime configuration dataclasses.

Each config has defaults suitable for local use and a ``from_env()``
constructor; CLI flags override individual fields afterwards.
Secrets (the classifier API key) are NOT stored here; they are read
from the environment at request time so a missing key fails per request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_SERVER_URL = "http://localhost:3000"
VOICE_COMMAND_PATH = "/api/voice-command"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


@dataclass
class SnapshotConfig:
    """Capture bounds and cache policy."""

    capture_depth: int = 10
    render_depth: int = 8
    render_children: int = 20
    debounce_s: float = 0.5
    max_age_s: float | None = 30.0  # None disables staleness recapture

    @classmethod
    def from_env(cls) -> SnapshotConfig:
        max_age = _env_float("VOICEPAGE_SNAPSHOT_MAX_AGE", 30.0)
        return cls(
            debounce_s=_env_float("VOICEPAGE_SNAPSHOT_DEBOUNCE", 0.5),
            max_age_s=max_age if max_age > 0 else None,
        )


@dataclass
class ClassifierConfig:
    """External text-completion endpoint used by the server."""

    api_base: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    timeout_s: float = 30.0
    api_key_env: str = "OPENAI_API_KEY"

    @classmethod
    def from_env(cls) -> ClassifierConfig:
        return cls(
            api_base=os.environ.get("OPENAI_BASE_URL", cls.api_base).rstrip("/"),
            model=os.environ.get("VOICEPAGE_MODEL", cls.model),
            timeout_s=_env_float("VOICEPAGE_CLASSIFIER_TIMEOUT", cls.timeout_s),
        )

    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> ServerConfig:
        try:
            port = int(os.environ.get("PORT", "3000"))
        except ValueError:
            port = 3000
        return cls(port=port, json_logs=_env_bool("VOICEPAGE_JSON_LOGS", False))


@dataclass
class VoiceConfig:
    """Voice loop timing and interpreter selection."""

    language: str = "en-US"
    voice_rate: float = 1.0
    restart_delay_s: float = 0.1  # recognition end -> restart
    settle_delay_s: float = 0.3  # speech end -> resume listening
    error_backoff_s: float = 1.0  # other recognition errors
    deactivate_delay_s: float = 0.5  # farewell -> agent off
    interpreter: str = "remote"  # "remote" | "local"
    two_phase: bool = True
    server_url: str = DEFAULT_SERVER_URL
    page_text_limit: int = 2000
    listen_timeout_s: float = 8.0
    phrase_time_limit_s: float = 15.0

    @classmethod
    def from_env(cls) -> VoiceConfig:
        return cls(
            language=os.environ.get("VOICEPAGE_LANGUAGE", cls.language),
            interpreter=os.environ.get("VOICEPAGE_INTERPRETER", cls.interpreter).strip().lower(),
            two_phase=_env_bool("VOICEPAGE_TWO_PHASE", True),
            server_url=os.environ.get("VOICEPAGE_SERVER_URL", DEFAULT_SERVER_URL).rstrip("/"),
        )

    @property
    def endpoint(self) -> str:
        return f"{self.server_url}{VOICE_COMMAND_PATH}"
