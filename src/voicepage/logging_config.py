# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. CLI and voice loop: ConsoleRenderer, server: JSONRenderer.

Leaf module: no voicepage imports. Safe to call early in startup.
Modules log through ``logging.getLogger("voicepage.<name>")``; records are
rendered by structlog with any context bound via :func:`bind_context`.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

# Third-party loggers that drown out the voice loop at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "comtypes")


def configure(*, json_output: bool = False, level: str | None = None) -> None:
    """Configure structlog with stdlib bridge.

    Args:
        json_output: True for JSON lines (server), False for human-readable (CLI).
        level: Root logger level. Defaults to ``VOICEPAGE_LOG_LEVEL`` or INFO.
    """
    level = level or os.environ.get("VOICEPAGE_LOG_LEVEL", "INFO")
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(root_level)

    if root_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**values: object) -> None:
    """Attach key/values (session id, page url, ...) to every later log line."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
