# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Global toggle chord: Shift+Space with no Ctrl/Alt/Meta."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

TOGGLE_BINDING = "__voicepageToggle"

# Capture-phase listener; the default page effect (scrolling) is suppressed
# before the chord is forwarded to Python.
TOGGLE_LISTENER_JS = f"""(() => {{
  if (window.__voicepageKeysInstalled) return;
  window.__voicepageKeysInstalled = true;
  document.addEventListener('keydown', (e) => {{
    const chord = {{
      key: e.key, code: e.code,
      shiftKey: e.shiftKey, ctrlKey: e.ctrlKey, altKey: e.altKey, metaKey: e.metaKey,
    }};
    if (e.shiftKey && !e.ctrlKey && !e.altKey && !e.metaKey && (e.code === 'Space' || e.key === ' ')) {{
      e.preventDefault();
      e.stopPropagation();
      if (window.{TOGGLE_BINDING}) window.{TOGGLE_BINDING}(chord);
    }}
  }}, true);
}})();"""


def is_toggle_chord(event: Mapping[str, Any]) -> bool:
    """True for a keydown event dict (DOM field names) that is exactly Shift+Space."""
    if not event.get("shiftKey"):
        return False
    if event.get("ctrlKey") or event.get("altKey") or event.get("metaKey"):
        return False
    return event.get("code") == "Space" or event.get("key") == " "
