# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Voice session: owns the state machine and performs its effects.

Everything runs on one asyncio loop. Recognizer and synthesizer adapters
report back through ``emit()``, which hops onto the loop; effects are applied
in the order ``transition()`` returns them.
"""

from __future__ import annotations

import asyncio
import logging

from .. import FALLBACK_ACTION, Action, InterpretRequest
from ..cache import SnapshotCache
from ..config import VoiceConfig
from ..drivers import PageDriver
from ..errors import CapabilityMissingError, VoicePageError
from ..executor import ActionExecutor
from ..interpreter import Interpreter
from ..logging_config import bind_context
from .speech import Recognizer, Synthesizer
from .state import (
    ABORTED,
    AbortRecognition,
    CancelSpeech,
    Deactivate,
    Effect,
    Event,
    Execute,
    Interpret,
    InterpretationCompleted,
    RecognitionError,
    Schedule,
    SessionState,
    SpeechFailed,
    SpeechRequested,
    StartRecognition,
    Synthesize,
    Timings,
    Toggle,
    transition,
)

logger = logging.getLogger("voicepage.voice.session")

END_OF_INPUT = "end-of-input"

_CAPABILITY_TEXT = {
    "recognition": "Sorry, speech recognition is not available on this device.",
    "synthesis": "Sorry, speech synthesis is not available on this device.",
}


class VoiceSession:
    """One agent bound to one page."""

    def __init__(
        self,
        *,
        recognizer: Recognizer,
        synthesizer: Synthesizer,
        interpreter: Interpreter,
        driver: PageDriver,
        cache: SnapshotCache | None = None,
        config: VoiceConfig | None = None,
        executor: ActionExecutor | None = None,
    ) -> None:
        self.config = config or VoiceConfig()
        self.recognizer = recognizer
        self.synthesizer = synthesizer
        self.interpreter = interpreter
        self.driver = driver
        self.cache = cache
        self._state = SessionState(
            timings=Timings(
                restart_delay_s=self.config.restart_delay_s,
                settle_delay_s=self.config.settle_delay_s,
                error_backoff_s=self.config.error_backoff_s,
            )
        )
        self.executor = executor or ActionExecutor(
            driver,
            self,
            is_active=lambda: self._state.active,
            deactivate=self.deactivate,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()
        self._disabled: set[str] = set()
        self._closed: asyncio.Event | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    # -- Wiring --

    def attach(self) -> None:
        """Bind to the running loop and hand ``emit`` to the adapters."""
        self._loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()
        self.recognizer.attach(self.emit)
        self.synthesizer.attach(self.emit)

    def emit(self, event: Event) -> None:
        """Deliver an event from any thread; processed on the session loop."""
        if self._loop is None:
            raise RuntimeError("VoiceSession not attached. Call attach() inside the event loop.")
        self._loop.call_soon_threadsafe(self.dispatch, event)

    def dispatch(self, event: Event) -> None:
        if isinstance(event, RecognitionError) and event.error == END_OF_INPUT:
            logger.info("Input closed, ending session")
            self.close()
            return
        result = transition(self._state, event)
        if result.state != self._state:
            logger.debug("%s: %s -> %s", type(event).__name__, self._state.phase, result.state.phase)
        self._state = result.state
        for effect in result.effects:
            self._apply(effect)

    # -- Public controls --

    def toggle(self) -> None:
        self.dispatch(Toggle())

    async def speak(self, text: str) -> None:
        self.dispatch(SpeechRequested(text))

    async def deactivate(self) -> None:
        self.dispatch(Deactivate())

    async def wait_closed(self) -> None:
        if self._closed is None:
            raise RuntimeError("VoiceSession not attached")
        await self._closed.wait()

    def close(self) -> None:
        self.dispatch(Deactivate())
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()
        if self._closed is not None:
            self._closed.set()

    async def drain(self) -> None:
        """Await interpretation/execution tasks started so far (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- Effects --

    def _apply(self, effect: Effect) -> None:
        match effect:
            case StartRecognition():
                self._start_recognition()
            case AbortRecognition():
                if "recognition" not in self._disabled:
                    self.recognizer.abort()
            case CancelSpeech():
                if "synthesis" not in self._disabled:
                    self.synthesizer.cancel()
            case Synthesize(text=text):
                self._synthesize(text)
            case Schedule(delay=delay, event=event):
                self._schedule(delay, event)
            case Interpret(generation=generation, utterance=utterance):
                self._spawn(self._interpret(generation, utterance))
            case Execute(action=action):
                self._spawn(self._execute(action))

    def _start_recognition(self) -> None:
        if "recognition" not in self._disabled:
            try:
                self.recognizer.start()
                return
            except CapabilityMissingError as e:
                self._capability_missing(e)
        # Reset the listening flag without a retry
        self.emit(RecognitionError(ABORTED))

    def _synthesize(self, text: str) -> None:
        logger.info("Speaking: %s", text)
        if "synthesis" not in self._disabled:
            try:
                self.synthesizer.speak(text)
                return
            except CapabilityMissingError as e:
                self._capability_missing(e)
        self.emit(SpeechFailed("synthesis unavailable"))

    def _capability_missing(self, error: CapabilityMissingError) -> None:
        """Report once, then disable the capability for the rest of the session."""
        capability = error.capability or "recognition"
        if capability in self._disabled:
            return
        self._disabled.add(capability)
        logger.error("%s", error)
        if capability != "synthesis" and "synthesis" not in self._disabled:
            self.emit(SpeechRequested(_CAPABILITY_TEXT.get(capability, str(error))))

    def _schedule(self, delay: float, event: Event) -> None:
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            self._timers.discard(handle)
            self.dispatch(event)

        handle = loop.call_later(delay, _fire)
        self._timers.add(handle)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- Interpretation --

    async def build_request(self, utterance: str) -> InterpretRequest:
        """Page context for one utterance; the snapshot reference is taken now."""
        page_text = await self.driver.page_text(self.config.page_text_limit)
        html = await self.driver.html() if self.interpreter.needs_html else ""
        snapshot = None
        if self.interpreter.needs_snapshot and self.cache is not None:
            snapshot = await self.cache.get()
            if snapshot is not None:
                logger.info("Using snapshot captured %.1fs ago", snapshot.age())
        return InterpretRequest(
            utterance=utterance,
            url=self.driver.url,
            title=await self.driver.title(),
            page_text=page_text,
            html=html,
            snapshot=snapshot,
        )

    async def _interpret(self, generation: int, utterance: str) -> None:
        # own task: the bound context is per utterance
        bind_context(utterance_id=generation)
        logger.info("Interpreting #%d: %r", generation, utterance)
        try:
            request = await self.build_request(utterance)
            bind_context(url=request.url)
            action = await self.interpreter.interpret(request)
        except VoicePageError:
            logger.warning("Interpretation #%d failed", generation, exc_info=True)
            action = FALLBACK_ACTION
        if generation != self._state.generation:
            logger.info("Discarding result for superseded utterance #%d", generation)
        self.dispatch(InterpretationCompleted(generation, action))

    async def _execute(self, action: Action) -> None:
        try:
            await self.executor.execute(action)
        except VoicePageError:
            logger.warning("Executing %s failed", action.kind, exc_info=True)
