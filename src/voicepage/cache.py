# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Snapshot cache with debounced recapture and an explicit staleness policy.

Holds the most recent page snapshot. Recapture triggers:
- explicit ``capture()``
- document-ready and full-load events (not deduplicated: up to three captures
  during initial page load)
- child-list/subtree mutations, after a quiet period (each mutation resets
  the timer); attribute mutations are ignored
- ``get()`` on a missing snapshot, or one older than ``max_age_s``

NOTE: single-writer. All calls happen on one asyncio loop; this class is NOT
thread-safe. Each interpretation keeps its own Snapshot reference, so a later
recapture never changes context already handed to an in-flight request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from . import Snapshot
from .dom import DomNode
from .errors import SnapshotError
from .snapshot import DEFAULT_CAPTURE_DEPTH, count_nodes, take_snapshot

logger = logging.getLogger("voicepage.cache")


class SnapshotSource(Protocol):
    """Anything that can produce the current document root as a DomNode tree."""

    async def capture_tree(self, max_depth: int) -> DomNode: ...


class MutationKind(StrEnum):
    CHILD_LIST = "childList"
    SUBTREE = "subtree"
    ATTRIBUTES = "attributes"
    CHARACTER_DATA = "characterData"


_RECAPTURE_KINDS = frozenset({MutationKind.CHILD_LIST, MutationKind.SUBTREE})


@dataclass
class CacheStats:
    """Counters for cache behaviour; logged when the voice agent shuts down."""

    captures: int = 0
    hits: int = 0
    misses: int = 0
    stale_recaptures: int = 0
    debounced_recaptures: int = 0
    ignored_mutations: int = 0
    failures: int = 0


class SnapshotCache:
    """Most recent snapshot of one page context."""

    def __init__(
        self,
        source: SnapshotSource,
        *,
        capture_depth: int = DEFAULT_CAPTURE_DEPTH,
        debounce_s: float = 0.5,
        max_age_s: float | None = None,
    ) -> None:
        self._source = source
        self._capture_depth = capture_depth
        self._debounce_s = debounce_s
        self._max_age_s = max_age_s
        self._snapshot: Snapshot | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._pending: asyncio.Task | None = None
        self._stats = CacheStats()

    # -- Read --

    @property
    def current(self) -> Snapshot | None:
        """Cached snapshot without triggering a capture."""
        return self._snapshot

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def is_stale(self, now: float | None = None) -> bool:
        if self._snapshot is None:
            return True
        if self._max_age_s is None:
            return False
        return self._snapshot.age(now) > self._max_age_s

    async def get(self) -> Snapshot | None:
        """Return the cached snapshot, capturing first when absent or stale."""
        if self._snapshot is None:
            self._stats.misses += 1
            return await self.capture()
        if self.is_stale():
            self._stats.stale_recaptures += 1
            logger.debug("Snapshot stale (age=%.1fs), recapturing", self._snapshot.age())
            return await self.capture()
        self._stats.hits += 1
        return self._snapshot

    # -- Write --

    async def capture(self) -> Snapshot | None:
        """Serialize from the document root and replace the cache.

        On failure the previous snapshot is kept and returned.
        """
        try:
            root = await self._source.capture_tree(self._capture_depth)
            snapshot = take_snapshot(root, self._capture_depth)
        except SnapshotError:
            self._stats.failures += 1
            logger.warning("Snapshot capture failed, keeping previous", exc_info=True)
            return self._snapshot
        if snapshot is None:
            self._stats.failures += 1
            logger.warning("Snapshot capture produced no visible root, keeping previous")
            return self._snapshot
        self._snapshot = snapshot
        self._stats.captures += 1
        logger.debug("Snapshot stored: %d nodes", count_nodes(snapshot.tree))
        return snapshot

    def clear(self) -> None:
        self.cancel_pending()
        self._snapshot = None

    # -- Event hooks --

    def notify_mutation(self, kind: MutationKind | str) -> None:
        """Schedule a recapture after the quiet period; resets any pending timer."""
        try:
            kind = MutationKind(kind)
        except ValueError:
            self._stats.ignored_mutations += 1
            return
        if kind not in _RECAPTURE_KINDS:
            self._stats.ignored_mutations += 1
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce_s, self._fire_debounced)

    def _fire_debounced(self) -> None:
        self._timer = None
        self._stats.debounced_recaptures += 1
        self._pending = asyncio.ensure_future(self.capture())

    async def on_document_ready(self) -> Snapshot | None:
        return await self.capture()

    async def on_load(self) -> Snapshot | None:
        return await self.capture()

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def wait_pending(self) -> None:
        """Await a debounced capture that has already fired (tests, shutdown)."""
        if self._pending is not None:
            await self._pending
