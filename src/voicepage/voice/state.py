# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Voice loop state machine.

``transition(state, event)`` is pure: it returns the next state and the
effects the session must perform. All platform callbacks (recognizer and
synthesizer) arrive as events; nothing else mutates session state.

Invariants:
- listening and speaking are never both true
- ``speaking`` is set when speech is *requested*, not when audio starts, so a
  recognition-ended event arriving in between cannot restart the microphone
- listening restarts only while active and not speaking
- interpretation results carry the generation they were issued for; a result
  for any other generation is dropped
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from .. import Action

ACTIVATION_TEXT = "Voice agent activated. How can I help you?"

RESTART_DELAY_S = 0.1
SETTLE_DELAY_S = 0.3
ERROR_BACKOFF_S = 1.0

# Recognition error codes (Web Speech API names, reused by the Python adapters)
NO_SPEECH = "no-speech"
ABORTED = "aborted"


class Phase(StrEnum):
    IDLE = "idle"
    LISTENING = "listening"
    INTERPRETING = "interpreting"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class Timings:
    restart_delay_s: float = RESTART_DELAY_S
    settle_delay_s: float = SETTLE_DELAY_S
    error_backoff_s: float = ERROR_BACKOFF_S


@dataclass(frozen=True)
class SessionState:
    active: bool = False
    listening: bool = False
    speaking: bool = False
    phase: Phase = Phase.IDLE
    generation: int = 0
    pending_speech: int = 0  # requested utterances not yet finished
    retry_scheduled: bool = False  # an error already scheduled the restart
    timings: Timings = Timings()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Toggle:
    pass


@dataclass(frozen=True)
class Deactivate:
    pass


@dataclass(frozen=True)
class StartListening:
    pass


@dataclass(frozen=True)
class RecognitionStarted:
    pass


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str


@dataclass(frozen=True)
class RecognitionError:
    error: str


@dataclass(frozen=True)
class RecognitionEnded:
    pass


@dataclass(frozen=True)
class SpeechRequested:
    text: str


@dataclass(frozen=True)
class SpeechStarted:
    pass


@dataclass(frozen=True)
class SpeechFinished:
    pass


@dataclass(frozen=True)
class SpeechFailed:
    error: str = ""


@dataclass(frozen=True)
class ResumeListening:
    pass


@dataclass(frozen=True)
class InterpretationCompleted:
    generation: int
    action: Action


Event = (
    Toggle
    | Deactivate
    | StartListening
    | RecognitionStarted
    | RecognitionResult
    | RecognitionError
    | RecognitionEnded
    | SpeechRequested
    | SpeechStarted
    | SpeechFinished
    | SpeechFailed
    | ResumeListening
    | InterpretationCompleted
)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StartRecognition:
    pass


@dataclass(frozen=True)
class AbortRecognition:
    pass


@dataclass(frozen=True)
class CancelSpeech:
    pass


@dataclass(frozen=True)
class Synthesize:
    text: str


@dataclass(frozen=True)
class Schedule:
    delay: float
    event: Event


@dataclass(frozen=True)
class Interpret:
    generation: int
    utterance: str


@dataclass(frozen=True)
class Execute:
    action: Action


Effect = StartRecognition | AbortRecognition | CancelSpeech | Synthesize | Schedule | Interpret | Execute


@dataclass(frozen=True)
class Transition:
    state: SessionState
    effects: tuple[Effect, ...] = ()


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def _can_listen(state: SessionState) -> bool:
    return state.active and not state.speaking


def _start_listening(state: SessionState) -> Transition:
    if not _can_listen(state) or state.listening:
        return Transition(state)
    next_state = replace(state, listening=True, retry_scheduled=False, phase=Phase.LISTENING)
    return Transition(next_state, (StartRecognition(),))


def _restart_after(state: SessionState, delay: float) -> tuple[Effect, ...]:
    if not _can_listen(state):
        return ()
    return (Schedule(delay, StartListening()),)


def _request_speech(state: SessionState, text: str) -> Transition:
    if not text or not state.active:
        return Transition(state)
    effects: list[Effect] = []
    if state.listening:
        effects.append(AbortRecognition())
    effects.append(Synthesize(text))
    next_state = replace(
        state,
        speaking=True,
        listening=False,
        phase=Phase.SPEAKING,
        pending_speech=state.pending_speech + 1,
    )
    return Transition(next_state, tuple(effects))


def _speech_done(state: SessionState) -> Transition:
    if not state.speaking:
        return Transition(state)
    remaining = max(0, state.pending_speech - 1)
    if remaining:
        return Transition(replace(state, pending_speech=remaining))
    next_state = replace(state, speaking=False, pending_speech=0, phase=Phase.IDLE)
    if not next_state.active:
        return Transition(next_state)
    return Transition(next_state, (Schedule(state.timings.settle_delay_s, ResumeListening()),))


def _deactivate(state: SessionState) -> Transition:
    if not state.active:
        return Transition(state)
    next_state = replace(
        state,
        active=False,
        listening=False,
        speaking=False,
        pending_speech=0,
        retry_scheduled=False,
        phase=Phase.IDLE,
        generation=state.generation + 1,
    )
    return Transition(next_state, (CancelSpeech(), AbortRecognition()))


def transition(state: SessionState, event: Event) -> Transition:
    """Apply one event. Pure: no I/O, no clocks."""
    match event:
        case Toggle():
            if state.active:
                return _deactivate(state)
            return _request_speech(replace(state, active=True), ACTIVATION_TEXT)

        case Deactivate():
            return _deactivate(state)

        case StartListening() | ResumeListening():
            return _start_listening(state)

        case RecognitionStarted():
            if not state.listening:
                return Transition(state)
            return Transition(replace(state, phase=Phase.LISTENING))

        case RecognitionResult(transcript=transcript):
            utterance = transcript.strip()
            if not state.active or not utterance:
                return Transition(state)
            generation = state.generation + 1
            phase = state.phase if state.speaking else Phase.INTERPRETING
            next_state = replace(state, generation=generation, phase=phase)
            return Transition(next_state, (Interpret(generation, utterance),))

        case RecognitionError(error=error):
            next_state = replace(state, listening=False)
            if next_state.phase is Phase.LISTENING:
                next_state = replace(next_state, phase=Phase.IDLE)
            if error == ABORTED:
                return Transition(next_state)
            delay = state.timings.restart_delay_s if error == NO_SPEECH else state.timings.error_backoff_s
            effects = _restart_after(next_state, delay)
            return Transition(replace(next_state, retry_scheduled=bool(effects)), effects)

        case RecognitionEnded():
            next_state = replace(state, listening=False)
            if next_state.phase is Phase.LISTENING:
                next_state = replace(next_state, phase=Phase.IDLE)
            if state.retry_scheduled:
                return Transition(next_state)
            return Transition(next_state, _restart_after(next_state, state.timings.restart_delay_s))

        case SpeechRequested(text=text):
            return _request_speech(state, text)

        case SpeechStarted():
            return Transition(state)

        case SpeechFinished() | SpeechFailed():
            return _speech_done(state)

        case InterpretationCompleted(generation=generation, action=action):
            if not state.active or generation != state.generation:
                return Transition(state)
            next_state = state
            if state.phase is Phase.INTERPRETING:
                next_state = replace(state, phase=Phase.IDLE)
            return Transition(next_state, (Execute(action),))

    raise TypeError(f"Unhandled voice event: {event!r}")
