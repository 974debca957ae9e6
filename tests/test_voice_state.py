# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the voice loop state machine (pure reducer)."""

from __future__ import annotations

from dataclasses import replace

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from voicepage import Action, ActionKind
from voicepage.voice.state import (
    ABORTED,
    ACTIVATION_TEXT,
    NO_SPEECH,
    AbortRecognition,
    CancelSpeech,
    Deactivate,
    Execute,
    Interpret,
    InterpretationCompleted,
    Phase,
    RecognitionEnded,
    RecognitionError,
    RecognitionResult,
    RecognitionStarted,
    ResumeListening,
    Schedule,
    SessionState,
    SpeechFailed,
    SpeechFinished,
    SpeechRequested,
    SpeechStarted,
    StartListening,
    StartRecognition,
    Synthesize,
    Timings,
    Toggle,
    transition,
)

ACTION = Action(ActionKind.DESCRIBE, speak_text="ok")


def _run(state: SessionState, *events):
    """Apply events in order; returns the final state and all effects."""
    effects = []
    for event in events:
        result = transition(state, event)
        state = result.state
        effects.extend(result.effects)
    return state, effects


def _listening() -> SessionState:
    state, _ = _run(SessionState(), Toggle(), SpeechFinished(), ResumeListening())
    assert state.listening
    return state


class TestToggle:
    def test_activation_speaks_greeting(self):
        result = transition(SessionState(), Toggle())
        assert result.state.active
        assert result.state.speaking
        assert result.state.phase is Phase.SPEAKING
        assert result.effects == (Synthesize(ACTIVATION_TEXT),)

    def test_greeting_finished_resumes_after_settle_delay(self):
        state, effects = _run(SessionState(), Toggle(), SpeechStarted(), SpeechFinished())
        assert not state.speaking
        assert effects[-1] == Schedule(0.3, ResumeListening())

    def test_resume_starts_recognition(self):
        state, effects = _run(SessionState(), Toggle(), SpeechFinished(), ResumeListening())
        assert state.listening
        assert state.phase is Phase.LISTENING
        assert effects[-1] == StartRecognition()

    def test_toggle_off_cancels_everything(self):
        state = _listening()
        result = transition(state, Toggle())
        assert not result.state.active
        assert not result.state.listening
        assert result.state.generation == state.generation + 1
        assert result.effects == (CancelSpeech(), AbortRecognition())

    def test_deactivate_when_inactive_is_noop(self):
        result = transition(SessionState(), Deactivate())
        assert result.state == SessionState()
        assert result.effects == ()


class TestMutualExclusion:
    def test_start_listening_while_speaking_is_noop(self):
        state, _ = _run(SessionState(), Toggle())
        assert state.speaking
        result = transition(state, StartListening())
        assert result.state == state
        assert result.effects == ()

    def test_recognition_end_while_speaking_does_not_restart(self):
        state = _listening()
        state, effects = _run(state, SpeechRequested("hello"), RecognitionEnded())
        assert not any(isinstance(e, Schedule) for e in effects)
        assert state.speaking and not state.listening

    def test_speech_request_aborts_recognition_first(self):
        result = transition(_listening(), SpeechRequested("hello"))
        assert result.effects == (AbortRecognition(), Synthesize("hello"))
        assert result.state.speaking
        assert not result.state.listening

    def test_already_listening_is_noop(self):
        state = _listening()
        assert transition(state, StartListening()).effects == ()

    def test_empty_speech_ignored(self):
        state = _listening()
        assert transition(state, SpeechRequested("")).state == state

    def test_queued_speech_waits_for_last(self):
        state = _listening()
        state, effects = _run(state, SpeechRequested("one"), SpeechRequested("two"), SpeechFinished())
        assert state.speaking
        assert not any(isinstance(e, Schedule) for e in effects)
        state, effects = _run(state, SpeechFinished())
        assert not state.speaking
        assert effects == [Schedule(0.3, ResumeListening())]

    def test_speech_failure_counts_as_finished(self):
        state, effects = _run(SessionState(), Toggle(), SpeechFailed("no voice"))
        assert not state.speaking
        assert effects[-1] == Schedule(0.3, ResumeListening())

    @given(
        events=st.lists(
            st.sampled_from(
                [
                    Toggle(),
                    StartListening(),
                    ResumeListening(),
                    RecognitionStarted(),
                    RecognitionResult("hi"),
                    RecognitionError(NO_SPEECH),
                    RecognitionError("network"),
                    RecognitionEnded(),
                    SpeechRequested("x"),
                    SpeechFinished(),
                    Deactivate(),
                ]
            ),
            max_size=40,
        )
    )
    @settings(max_examples=200)
    def test_never_listening_and_speaking(self, events):
        state = SessionState()
        for event in events:
            state = transition(state, event).state
            assert not (state.listening and state.speaking)
            if not state.active:
                assert not state.listening and not state.speaking


class TestRecognition:
    def test_result_issues_interpretation_with_new_generation(self):
        state = _listening()
        result = transition(state, RecognitionResult("  open github  "))
        assert result.effects == (Interpret(state.generation + 1, "open github"),)
        assert result.state.phase is Phase.INTERPRETING

    def test_blank_result_ignored(self):
        assert transition(_listening(), RecognitionResult("   ")).effects == ()

    def test_result_when_inactive_ignored(self):
        assert transition(SessionState(), RecognitionResult("hi")).effects == ()

    @pytest.mark.parametrize(("error", "delay"), [(NO_SPEECH, 0.1), ("network", 1.0), ("audio-capture", 1.0)])
    def test_error_restart_delays(self, error, delay):
        result = transition(_listening(), RecognitionError(error))
        assert result.effects == (Schedule(delay, StartListening()),)
        assert not result.state.listening

    def test_aborted_does_not_restart(self):
        assert transition(_listening(), RecognitionError(ABORTED)).effects == ()

    def test_error_then_end_schedules_once(self):
        state, effects = _run(_listening(), RecognitionError("network"), RecognitionEnded())
        assert effects == [Schedule(1.0, StartListening())]

    def test_plain_end_restarts(self):
        result = transition(_listening(), RecognitionEnded())
        assert result.effects == (Schedule(0.1, StartListening()),)

    def test_end_when_inactive_does_not_restart(self):
        state = replace(_listening(), active=False, listening=True)
        assert transition(state, RecognitionEnded()).effects == ()

    def test_custom_timings(self):
        timings = Timings(restart_delay_s=0.5, settle_delay_s=1.5, error_backoff_s=3.0)
        state = replace(_listening(), timings=timings)
        assert transition(state, RecognitionError("network")).effects == (Schedule(3.0, StartListening()),)


class TestInterpretation:
    def test_current_generation_executes(self):
        state, effects = _run(_listening(), RecognitionResult("go"))
        result = transition(state, InterpretationCompleted(state.generation, ACTION))
        assert result.effects == (Execute(ACTION),)
        assert result.state.phase is Phase.IDLE

    def test_superseded_result_discarded(self):
        state, _ = _run(_listening(), RecognitionResult("first"))
        stale = state.generation
        state, _ = _run(state, RecognitionEnded(), StartListening(), RecognitionResult("second"))
        assert transition(state, InterpretationCompleted(stale, ACTION)).effects == ()
        assert transition(state, InterpretationCompleted(state.generation, ACTION)).effects == (Execute(ACTION),)

    def test_result_after_deactivation_discarded(self):
        state, _ = _run(_listening(), RecognitionResult("go"))
        generation = state.generation
        state, _ = _run(state, Deactivate())
        assert transition(state, InterpretationCompleted(generation, ACTION)).effects == ()

    def test_result_after_reactivation_discarded(self):
        state, _ = _run(_listening(), RecognitionResult("go"))
        generation = state.generation
        state, _ = _run(state, Toggle(), Toggle())
        assert state.active
        assert transition(state, InterpretationCompleted(generation, ACTION)).effects == ()


def test_unknown_event_rejected():
    with pytest.raises(TypeError):
        transition(SessionState(), object())
