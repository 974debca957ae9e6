# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the microphone and pyttsx3 adapters against in-memory library modules.

The fake ``speech_recognition`` microphone refuses to be entered twice at
once, the same way a real capture device fails when two passes overlap.
"""

from __future__ import annotations

import asyncio
import sys
import threading
import types

import pytest

from voicepage.config import VoiceConfig
from voicepage.errors import CapabilityMissingError
from voicepage.voice.speech import Pyttsx3Synthesizer, SpeechRecognitionRecognizer
from voicepage.voice.state import (
    RecognitionEnded,
    RecognitionError,
    RecognitionResult,
    RecognitionStarted,
    SpeechFailed,
    SpeechFinished,
    SpeechStarted,
)


async def _until(predicate, timeout: float = 2.0) -> None:
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


# ---------------------------------------------------------------------------
# speech_recognition
# ---------------------------------------------------------------------------


class _Gate:
    """A listen step that blocks until released, then hears ``transcript``."""

    def __init__(self, transcript: str = "late"):
        self.transcript = transcript
        self.entered = threading.Event()
        self.release = threading.Event()


def _fake_sr(script: list) -> types.ModuleType:
    sr = types.ModuleType("speech_recognition")

    class WaitTimeoutError(Exception):
        pass

    class UnknownValueError(Exception):
        pass

    class RequestError(Exception):
        pass

    class Microphone:
        in_use = False

        def __enter__(self):
            if Microphone.in_use:
                raise AssertionError("microphone entered twice")
            Microphone.in_use = True
            return self

        def __exit__(self, *exc):
            Microphone.in_use = False
            return False

    class Recognizer:
        calls: list[dict] = []

        def listen(self, source, timeout=None, phrase_time_limit=None):
            Recognizer.calls.append({"timeout": timeout, "phrase_time_limit": phrase_time_limit})
            step = script.pop(0)
            if isinstance(step, _Gate):
                step.entered.set()
                step.release.wait(2)
                return step.transcript
            if isinstance(step, BaseException):
                raise step
            return step

        def recognize_google(self, audio, language=None):
            if isinstance(audio, BaseException):
                raise audio
            return audio

    sr.WaitTimeoutError = WaitTimeoutError
    sr.UnknownValueError = UnknownValueError
    sr.RequestError = RequestError
    sr.Microphone = Microphone
    sr.Recognizer = Recognizer
    return sr


def _install_sr(monkeypatch, script: list) -> types.ModuleType:
    sr = _fake_sr(script)
    monkeypatch.setitem(sys.modules, "speech_recognition", sr)
    return sr


def _recognizer(emitted: list) -> SpeechRecognitionRecognizer:
    recognizer = SpeechRecognitionRecognizer(VoiceConfig(listen_timeout_s=3.0, phrase_time_limit_s=7.0))
    recognizer.attach(emitted.append)
    return recognizer


class TestSpeechRecognitionRecognizer:
    async def test_transcript_becomes_result(self, monkeypatch):
        sr = _install_sr(monkeypatch, ["open github"])
        emitted = []
        _recognizer(emitted).start()
        await _until(lambda: len(emitted) >= 3)
        assert emitted == [RecognitionStarted(), RecognitionResult("open github"), RecognitionEnded()]
        assert sr.Recognizer.calls == [{"timeout": 3.0, "phrase_time_limit": 7.0}]

    async def test_timeout_is_no_speech(self, monkeypatch):
        script: list = []
        sr = _install_sr(monkeypatch, script)
        script.append(sr.WaitTimeoutError())
        emitted = []
        _recognizer(emitted).start()
        await _until(lambda: len(emitted) >= 3)
        assert emitted[1:] == [RecognitionError("no-speech"), RecognitionEnded()]

    async def test_request_failure_is_network_error(self, monkeypatch):
        script: list = []
        sr = _install_sr(monkeypatch, script)
        script.append(sr.RequestError("quota"))
        emitted = []
        _recognizer(emitted).start()
        await _until(lambda: len(emitted) >= 3)
        assert emitted[1:] == [RecognitionError("network"), RecognitionEnded()]

    async def test_unexpected_failure_still_ends_the_pass(self, monkeypatch):
        _install_sr(monkeypatch, [ValueError("bad frame")])
        emitted = []
        _recognizer(emitted).start()
        await _until(lambda: len(emitted) >= 3)
        assert isinstance(emitted[1], RecognitionError)
        assert emitted[1].error not in ("no-speech", "aborted")
        assert emitted[2] == RecognitionEnded()

    async def test_restart_after_abort_waits_for_microphone(self, monkeypatch):
        gate = _Gate("stale words")
        _install_sr(monkeypatch, [gate, "second pass"])
        emitted = []
        recognizer = _recognizer(emitted)

        recognizer.start()
        await _until(gate.entered.is_set)
        recognizer.abort()
        recognizer.start()
        await asyncio.sleep(0.05)
        gate.release.set()
        await _until(lambda: len(emitted) >= 6)

        assert emitted == [
            RecognitionStarted(),
            RecognitionError("aborted"),
            RecognitionEnded(),
            RecognitionStarted(),
            RecognitionResult("second pass"),
            RecognitionEnded(),
        ]

    async def test_superseded_pass_is_discarded(self, monkeypatch):
        gate = _Gate("stale words")
        _install_sr(monkeypatch, [gate])
        emitted = []
        recognizer = _recognizer(emitted)

        recognizer.start()
        await _until(gate.entered.is_set)
        recognizer.abort()
        gate.release.set()
        await asyncio.sleep(0.1)

        assert RecognitionResult("stale words") not in emitted
        assert emitted == [RecognitionStarted(), RecognitionError("aborted"), RecognitionEnded()]

    def test_abort_when_idle_is_silent(self, monkeypatch):
        _install_sr(monkeypatch, [])
        emitted = []
        _recognizer(emitted).abort()
        assert emitted == []


# ---------------------------------------------------------------------------
# pyttsx3
# ---------------------------------------------------------------------------


class _Engine:
    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.properties: dict = {}
        self.spoken: list[str] = []
        self.stopped = 0
        self.gate: _Gate | None = None

    def setProperty(self, name, value):
        self.properties[name] = value

    def say(self, text):
        self.spoken.append(text)

    def runAndWait(self):
        if self.gate is not None:
            gate, self.gate = self.gate, None
            gate.entered.set()
            gate.release.wait(2)
        if self.fail is not None:
            raise self.fail

    def stop(self):
        self.stopped += 1


def _install_tts(monkeypatch, engine: _Engine) -> None:
    module = types.ModuleType("pyttsx3")
    module.init = lambda: engine
    monkeypatch.setitem(sys.modules, "pyttsx3", module)


class TestPyttsx3Synthesizer:
    async def test_speak_emits_start_and_finish(self, monkeypatch):
        engine = _Engine()
        _install_tts(monkeypatch, engine)
        emitted = []
        synth = Pyttsx3Synthesizer(VoiceConfig(voice_rate=1.5))
        synth.attach(emitted.append)
        synth.speak("Hello there")
        await _until(lambda: len(emitted) >= 2)
        assert emitted == [SpeechStarted(), SpeechFinished()]
        assert engine.spoken == ["Hello there"]
        assert engine.properties["rate"] == 300

    async def test_driver_error_emits_failure(self, monkeypatch):
        _install_tts(monkeypatch, _Engine(fail=RuntimeError("run loop already started")))
        emitted = []
        synth = Pyttsx3Synthesizer()
        synth.attach(emitted.append)
        synth.speak("Hello")
        await _until(lambda: len(emitted) >= 2)
        assert emitted == [SpeechStarted(), SpeechFailed("run loop already started")]

    async def test_cancel_drains_queue(self, monkeypatch):
        engine = _Engine()
        gate = engine.gate = _Gate()
        _install_tts(monkeypatch, engine)
        emitted = []
        synth = Pyttsx3Synthesizer()
        synth.attach(emitted.append)

        for text in ("one", "two", "three"):
            synth.speak(text)
        await _until(gate.entered.is_set)
        synth.cancel()
        assert engine.stopped == 1
        synth.speak("four")
        gate.release.set()
        await _until(lambda: SpeechFinished() in emitted)
        assert engine.spoken == ["one", "four"]
        assert emitted == [SpeechStarted(), SpeechStarted(), SpeechFinished()]

    def test_missing_library(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "pyttsx3", None)
        with pytest.raises(CapabilityMissingError) as exc_info:
            Pyttsx3Synthesizer().speak("hi")
        assert exc_info.value.capability == "synthesis"
