# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""voicepage CLI: serve, snapshot, ask, run commands.

Usage:
    voicepage serve [--host HOST] [--port PORT] [--json-logs]
    voicepage snapshot (--url URL | --html FILE) [--format text|json] [--depth N]
    voicepage ask UTTERANCE [--html FILE] [--url URL] [--local] [--single-phase] [--execute]
    voicepage run [--url URL] [--local] [--single-phase] [--text] [--headless]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from . import InterpretRequest
from .config import VOICE_COMMAND_PATH, ServerConfig, SnapshotConfig, VoiceConfig
from .errors import VoicePageError

logger = logging.getLogger("voicepage.cli")

_BLANK_PAGE = "<html><head><title></title></head><body></body></html>"


class _PrintSpeaker:
    """Speaker for one-shot commands: prints what would be said."""

    async def speak(self, text: str) -> None:
        print(f"agent> {text}")


def _voice_config(args: argparse.Namespace) -> VoiceConfig:
    config = VoiceConfig.from_env()
    if getattr(args, "local", False):
        config.interpreter = "local"
    if getattr(args, "single_phase", False):
        config.two_phase = False
    if getattr(args, "server", None):
        config.server_url = args.server.rstrip("/")
    return config


def _build_interpreter(config: VoiceConfig, client):
    from .interpreter import GmailRuleInterpreter, RemoteInterpreter
    from .relay import Relay

    if config.interpreter == "local":
        return GmailRuleInterpreter()
    return RemoteInterpreter(Relay(client, config.endpoint), two_phase=config.two_phase)


def _read_html(path_str: str) -> str:
    path = Path(path_str)
    if not path.is_file():
        raise VoicePageError(f"HTML file not found: {path}")
    return path.read_text(encoding="utf-8", errors="replace")


# ── serve ────────────────────────────────────────────────────────────


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the voice-command server."""
    from .logging_config import configure
    from .server import serve

    config = ServerConfig.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    config.json_logs = config.json_logs or args.json_logs
    configure(json_output=config.json_logs, level="DEBUG" if args.verbose else None)
    asyncio.run(serve(config))


# ── snapshot ─────────────────────────────────────────────────────────


async def _capture(args: argparse.Namespace):
    from .snapshot import take_snapshot

    if args.html:
        from .drivers import HtmlPageDriver

        driver = HtmlPageDriver.from_html(_read_html(args.html), url=args.url or "about:blank")
        return take_snapshot(await driver.capture_tree(args.depth), args.depth)

    from .browser_session import BrowserConfig, create_session

    async with create_session(BrowserConfig(headless=True)) as session:
        driver = session.driver()
        await driver.navigate(args.url)
        return take_snapshot(await driver.capture_tree(args.depth), args.depth)


def cmd_snapshot(args: argparse.Namespace) -> None:
    """Capture a page and print its snapshot."""
    from .snapshot import count_nodes, render_snapshot, to_wire

    if not args.html and not args.url:
        raise VoicePageError("snapshot needs --url or --html")
    snapshot = asyncio.run(_capture(args))
    if snapshot is None:
        print("(no visible content)", file=sys.stderr)
        sys.exit(1)
    if args.format == "json":
        print(json.dumps(to_wire(snapshot), ensure_ascii=False, indent=2))
        return
    cfg = SnapshotConfig.from_env()
    print(render_snapshot(snapshot.tree, max_depth=cfg.render_depth, max_children=cfg.render_children))
    print(f"\n{count_nodes(snapshot.tree)} nodes", file=sys.stderr)


# ── ask ──────────────────────────────────────────────────────────────


async def _ask(args: argparse.Namespace) -> None:
    import httpx

    from .cache import SnapshotCache
    from .drivers import HtmlPageDriver
    from .executor import ActionExecutor

    config = _voice_config(args)
    snap_cfg = SnapshotConfig.from_env()
    html = _read_html(args.html) if args.html else _BLANK_PAGE
    driver = HtmlPageDriver.from_html(html, url=args.url or "about:blank")
    cache = SnapshotCache(driver, capture_depth=snap_cfg.capture_depth, max_age_s=snap_cfg.max_age_s)

    async with httpx.AsyncClient(timeout=60.0) as client:
        interpreter = _build_interpreter(config, client)
        request = InterpretRequest(
            utterance=args.utterance,
            url=driver.url,
            title=await driver.title(),
            page_text=await driver.page_text(config.page_text_limit),
            html=await driver.html() if interpreter.needs_html else "",
            snapshot=await cache.get() if interpreter.needs_snapshot else None,
        )
        action = await interpreter.interpret(request)

    print(json.dumps(action.to_wire(), ensure_ascii=False, indent=2))
    if args.execute:
        await ActionExecutor(driver, _PrintSpeaker(), highlight_delay_s=0.0).execute(action)
        for url in driver.navigations:
            print(f"navigated> {url}")
        for element in driver.clicks:
            print(f"clicked> <{element.tag}>")


def cmd_ask(args: argparse.Namespace) -> None:
    """Interpret one utterance against an offline page."""
    asyncio.run(_ask(args))


# ── run ──────────────────────────────────────────────────────────────


def _shutdown(session, cache) -> None:
    session.close()
    cache.cancel_pending()
    logger.info("Snapshot cache stats: %s", cache.stats)


async def _run(args: argparse.Namespace) -> None:
    import httpx

    from .browser_session import BrowserConfig, create_session, install_page_hooks
    from .cache import SnapshotCache
    from .voice import VoiceSession
    from .voice.speech import (
        ConsoleSynthesizer,
        Pyttsx3Synthesizer,
        SpeechRecognitionRecognizer,
        TextRecognizer,
    )

    config = _voice_config(args)
    snap_cfg = SnapshotConfig.from_env()
    browser_config = BrowserConfig.from_env()
    if args.headless:
        browser_config.headless = True

    async with create_session(browser_config) as browser, httpx.AsyncClient(timeout=60.0) as client:
        driver = browser.driver()
        cache = SnapshotCache(
            driver,
            capture_depth=snap_cfg.capture_depth,
            debounce_s=snap_cfg.debounce_s,
            max_age_s=snap_cfg.max_age_s,
        )
        if args.text:
            recognizer, synthesizer = TextRecognizer(), ConsoleSynthesizer()
        else:
            recognizer, synthesizer = SpeechRecognitionRecognizer(config), Pyttsx3Synthesizer(config)
        session = VoiceSession(
            recognizer=recognizer,
            synthesizer=synthesizer,
            interpreter=_build_interpreter(config, client),
            driver=driver,
            cache=cache,
            config=config,
        )
        session.attach()
        await install_page_hooks(browser.page, cache, on_toggle=session.toggle)
        if args.url:
            await driver.navigate(args.url)
        if args.text:
            session.toggle()
        else:
            print("Press Shift+Space in the browser window to toggle the voice agent.", file=sys.stderr)
        try:
            await session.wait_closed()
        finally:
            _shutdown(session, cache)


def cmd_run(args: argparse.Namespace) -> None:
    """Run the voice agent against a live browser page."""
    asyncio.run(_run(args))


# ── main ─────────────────────────────────────────────────────────────


def _add_interpreter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--local", action="store_true", help="Use the local Gmail rule matcher (no server)")
    p.add_argument("--single-phase", action="store_true", help="Send page context with the first request")
    p.add_argument(
        "--server",
        type=str,
        metavar="URL",
        help=f"Voice-command server base URL (endpoint {VOICE_COMMAND_PATH})",
    )


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="voicepage: voice control for web pages", prog="voicepage")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_serve = subparsers.add_parser("serve", help="Start the voice-command server")
    p_serve.add_argument("--host", type=str, help="Bind address (default: 127.0.0.1)")
    p_serve.add_argument("--port", type=int, help="Port (default: $PORT or 3000)")
    p_serve.add_argument("--json-logs", action="store_true", help="JSON log lines")

    p_snapshot = subparsers.add_parser("snapshot", help="Print the visible-DOM snapshot of a page")
    p_snapshot.add_argument("--url", type=str, metavar="URL", help="Live page URL (or base URL for --html)")
    p_snapshot.add_argument("--html", type=str, metavar="FILE", help="Offline HTML file")
    p_snapshot.add_argument("--format", choices=["text", "json"], default="text")
    p_snapshot.add_argument("--depth", type=int, default=SnapshotConfig.capture_depth, help="Capture depth")

    p_ask = subparsers.add_parser("ask", help="Interpret one utterance against an offline page")
    p_ask.add_argument("utterance", type=str)
    p_ask.add_argument("--html", type=str, metavar="FILE", help="Offline HTML file (default: blank page)")
    p_ask.add_argument("--url", type=str, metavar="URL", help="URL the page is treated as")
    p_ask.add_argument("--execute", action="store_true", help="Run the action against the offline page")
    _add_interpreter_args(p_ask)

    p_run = subparsers.add_parser("run", help="Run the voice agent in a browser")
    p_run.add_argument("--url", type=str, metavar="URL", help="Start page")
    p_run.add_argument("--text", action="store_true", help="Type instead of speaking; replies are printed")
    p_run.add_argument("--headless", action="store_true")
    _add_interpreter_args(p_run)

    commands = {"serve": cmd_serve, "snapshot": cmd_snapshot, "ask": cmd_ask, "run": cmd_run}

    args = parser.parse_args(argv)

    if args.command != "serve":
        from .logging_config import configure

        configure(level="DEBUG" if args.verbose else "WARNING" if args.command != "run" else None)

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except VoicePageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
