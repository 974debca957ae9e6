# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Voice I/O loop: state machine, session controller, speech adapters."""

from .keys import is_toggle_chord
from .session import VoiceSession
from .state import ACTIVATION_TEXT, Phase, SessionState, transition

__all__ = [
    "ACTIVATION_TEXT",
    "Phase",
    "SessionState",
    "VoiceSession",
    "is_toggle_chord",
    "transition",
]
