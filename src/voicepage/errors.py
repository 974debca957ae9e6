# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""voicepage exception hierarchy.

All voicepage-specific errors inherit from VoicePageError, allowing callers
to catch the base class for any failure or specific subclasses for targeted
handling.
"""

from __future__ import annotations


class VoicePageError(Exception):
    """Base exception for all voicepage errors."""


class CapabilityMissingError(VoicePageError):
    """Speech recognition or synthesis is not available on this platform."""

    def __init__(self, message: str, *, capability: str = "") -> None:
        super().__init__(message)
        self.capability = capability


class ClassifierError(VoicePageError):
    """Remote text-completion call failed (network, non-2xx, empty reply)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClassifierConfigError(ClassifierError):
    """Classifier is not configured (missing API key)."""


class ElementResolutionError(VoicePageError):
    """Click target could not be resolved by selector or XPath."""


class InvalidActionError(VoicePageError):
    """Action is missing parameters its kind requires."""


class BrowserError(VoicePageError):
    """Browser session launch, navigation, or interaction failure."""


class SnapshotError(VoicePageError):
    """Page snapshot could not be captured."""
