# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Speech recognition and synthesis adapters.

Adapters turn blocking platform calls into state-machine events delivered
through an ``emit`` callback that is safe to call from worker threads.

- ``SpeechRecognitionRecognizer``: microphone + ``speech_recognition``
- ``Pyttsx3Synthesizer``: ``pyttsx3`` on a dedicated worker thread
- ``TextRecognizer`` / ``ConsoleSynthesizer``: terminal stand-ins (``run --text``)

The speech libraries come from the optional ``voice`` extra and are imported
on first use; when they are missing ``CapabilityMissingError`` is raised.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import sys
import threading
from collections.abc import Callable
from typing import Any, Protocol

from ..config import VoiceConfig
from ..errors import CapabilityMissingError
from .state import (
    ABORTED,
    NO_SPEECH,
    Event,
    RecognitionEnded,
    RecognitionError,
    RecognitionResult,
    RecognitionStarted,
    SpeechFailed,
    SpeechFinished,
    SpeechStarted,
)

logger = logging.getLogger("voicepage.voice.speech")

Emit = Callable[[Event], None]

# pyttsx3 default words-per-minute; VoiceConfig.voice_rate scales it
_BASE_WPM = 200


class Recognizer(Protocol):
    def attach(self, emit: Emit) -> None: ...

    def start(self) -> None: ...

    def abort(self) -> None: ...


class Synthesizer(Protocol):
    def attach(self, emit: Emit) -> None: ...

    def speak(self, text: str) -> None: ...

    def cancel(self) -> None: ...


def _drop(event: Event) -> None:
    logger.debug("Event before attach: %r", event)


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------


def _import_speech_recognition() -> Any:
    try:
        import speech_recognition
    except ImportError as e:
        raise CapabilityMissingError(
            "Speech recognition is not available. Install with: pip install 'voicepage[voice]'",
            capability="recognition",
        ) from e
    return speech_recognition


class SpeechRecognitionRecognizer:
    """One listen/transcribe pass per ``start()``, run on the default executor.

    Passes are serialized on the microphone: a ``start()`` right after
    ``abort()`` waits for the superseded pass to release the device, and that
    pass's outcome is discarded. Every pass that is still current when it
    finishes emits exactly one terminal event followed by ``RecognitionEnded``.
    """

    def __init__(self, config: VoiceConfig | None = None) -> None:
        self.config = config or VoiceConfig()
        self._emit: Emit = _drop
        self._sr: Any = None
        self._recognizer: Any = None
        self._microphone: Any = None
        self._mic_lock = threading.Lock()
        self._run = 0
        self._listening = False

    def attach(self, emit: Emit) -> None:
        self._emit = emit

    def _ensure_ready(self) -> None:
        if self._recognizer is not None:
            return
        sr = _import_speech_recognition()
        try:
            microphone = sr.Microphone()
        except (AttributeError, OSError) as e:
            # AttributeError: PyAudio missing
            raise CapabilityMissingError(f"No usable microphone: {e}", capability="recognition") from e
        self._sr = sr
        self._recognizer = sr.Recognizer()
        self._microphone = microphone

    def start(self) -> None:
        self._ensure_ready()
        self._run += 1
        self._listening = True
        self._emit(RecognitionStarted())
        asyncio.get_running_loop().run_in_executor(None, self._listen, self._run)

    def abort(self) -> None:
        if not self._listening:
            return
        self._run += 1
        self._listening = False
        self._emit(RecognitionError(ABORTED))
        self._emit(RecognitionEnded())

    def _listen(self, run: int) -> None:
        with self._mic_lock:
            if run != self._run:
                return  # superseded while waiting for the microphone
            try:
                event = self._capture()
            except Exception as e:
                logger.exception("Speech recognition pass failed")
                event = RecognitionError(f"recognizer: {type(e).__name__}")
            self._finish(run, event)

    def _capture(self) -> Event:
        sr = self._sr
        try:
            with self._microphone as source:
                audio = self._recognizer.listen(
                    source,
                    timeout=self.config.listen_timeout_s,
                    phrase_time_limit=self.config.phrase_time_limit_s,
                )
            transcript = self._recognizer.recognize_google(audio, language=self.config.language)
        except (sr.WaitTimeoutError, sr.UnknownValueError):
            return RecognitionError(NO_SPEECH)
        except sr.RequestError as e:
            logger.warning("Speech recognition request failed: %s", e)
            return RecognitionError("network")
        except OSError as e:
            logger.warning("Microphone error: %s", e)
            return RecognitionError("audio-capture")
        logger.info("Heard: %r", transcript)
        return RecognitionResult(str(transcript))

    def _finish(self, run: int, event: Event) -> None:
        if run != self._run:
            return  # aborted while the thread was blocked
        self._listening = False
        self._emit(event)
        self._emit(RecognitionEnded())


class TextRecognizer:
    """Reads one line from a text stream per ``start()``."""

    def __init__(self, stream: Any = None, prompt: str = "you> ") -> None:
        self._stream = stream or sys.stdin
        self._prompt = prompt
        self._emit: Emit = _drop
        self._run = 0
        self._listening = False

    def attach(self, emit: Emit) -> None:
        self._emit = emit

    def start(self) -> None:
        self._run += 1
        self._listening = True
        self._emit(RecognitionStarted())
        asyncio.get_running_loop().run_in_executor(None, self._read, self._run)

    def abort(self) -> None:
        if not self._listening:
            return
        self._run += 1
        self._listening = False
        self._emit(RecognitionError(ABORTED))
        self._emit(RecognitionEnded())

    def _read(self, run: int) -> None:
        if self._stream is sys.stdin:
            print(self._prompt, end="", flush=True, file=sys.stderr)
        line = self._stream.readline()
        if run != self._run:
            return
        self._listening = False
        if line == "":
            self._emit(RecognitionError("end-of-input"))
        elif line.strip():
            self._emit(RecognitionResult(line.strip()))
        else:
            self._emit(RecognitionError(NO_SPEECH))
        self._emit(RecognitionEnded())


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def _init_pyttsx3(rate: float) -> Any:
    try:
        import pyttsx3
    except ImportError as e:
        raise CapabilityMissingError(
            "Speech synthesis is not available. Install with: pip install 'voicepage[voice]'",
            capability="synthesis",
        ) from e
    try:
        engine = pyttsx3.init()
    except (RuntimeError, OSError, ImportError) as e:
        raise CapabilityMissingError(f"No speech synthesis driver: {e}", capability="synthesis") from e
    engine.setProperty("rate", int(_BASE_WPM * rate))
    return engine


class Pyttsx3Synthesizer:
    """Queues utterances to one worker thread; ``cancel()`` drops the queue."""

    def __init__(self, config: VoiceConfig | None = None) -> None:
        self.config = config or VoiceConfig()
        self._emit: Emit = _drop
        self._engine: Any = None
        self._queue: queue.Queue[tuple[str, int]] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._run = 0

    def attach(self, emit: Emit) -> None:
        self._emit = emit

    def speak(self, text: str) -> None:
        if self._engine is None:
            self._engine = _init_pyttsx3(self.config.voice_rate)
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(target=self._work, name="voicepage-tts", daemon=True)
            self._worker.start()
        self._queue.put((text, self._run))

    def cancel(self) -> None:
        self._run += 1
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        if self._engine is not None:
            self._engine.stop()

    def _work(self) -> None:
        while True:
            text, run = self._queue.get()
            if run != self._run:
                continue
            self._emit(SpeechStarted())
            try:
                self._engine.say(text)
                self._engine.runAndWait()
            except Exception as e:
                logger.warning("Speech synthesis failed: %s", e)
                if run == self._run:
                    self._emit(SpeechFailed(str(e)))
                continue
            if run == self._run:
                self._emit(SpeechFinished())


class ConsoleSynthesizer:
    """Prints instead of speaking; finishes immediately."""

    def __init__(self, stream: Any = None, prefix: str = "agent> ") -> None:
        self._stream = stream or sys.stdout
        self._prefix = prefix
        self._emit: Emit = _drop

    def attach(self, emit: Emit) -> None:
        self._emit = emit

    def speak(self, text: str) -> None:
        self._emit(SpeechStarted())
        print(f"{self._prefix}{text}", file=self._stream, flush=True)
        self._emit(SpeechFinished())

    def cancel(self) -> None:
        return None
