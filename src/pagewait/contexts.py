# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Execution context tracking per frame.

One ContextTracker per automation session. Frames report navigation
commits and detachment; the tracker replaces contexts, bumps the
generation counter and notifies listeners. Wait tasks only read from it.

Every state change is made on the event loop thread, so no locking.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import ContextDisposedError, FrameDetachedError

logger = logging.getLogger(__name__)


@dataclass(eq=False, slots=True)
class ExecutionContext:
    """A script-evaluation scope bound to one frame and one navigation."""

    frame_id: str
    generation: int
    disposed: bool = False

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"<ExecutionContext frame={self.frame_id} gen={self.generation} {state}>"


@dataclass(eq=False, slots=True)
class RemoteHandle:
    """Reference to a value living in one execution context.

    Owned by the caller once returned. Dereferencing after the context is
    disposed raises ContextDisposedError.
    """

    context: ExecutionContext
    _value: Any = field(repr=False)

    @property
    def frame_id(self) -> str:
        return self.context.frame_id

    @property
    def generation(self) -> int:
        return self.context.generation

    @property
    def is_valid(self) -> bool:
        return not self.context.disposed

    @property
    def value(self) -> Any:
        if self.context.disposed:
            raise ContextDisposedError(
                f"Handle belongs to disposed execution context (generation {self.context.generation})"
            )
        return self._value


class ContextEventKind(StrEnum):
    CREATED = "context_created"
    DESTROYED = "context_destroyed"
    FRAME_DETACHED = "frame_detached"


@dataclass(frozen=True, slots=True)
class ContextEvent:
    kind: ContextEventKind
    frame_id: str
    generation: int


ContextListener = Callable[[ContextEvent], None]


@dataclass(slots=True)
class _FrameEntry:
    context: ExecutionContext | None = None
    detached: bool = False
    changed: asyncio.Event = field(default_factory=asyncio.Event)


class ContextTracker:
    """Frame -> current ExecutionContext mapping with a generation counter."""

    def __init__(self) -> None:
        self._frames: dict[str, _FrameEntry] = {}
        # Detached frames keep only their id so detachment stays terminal.
        self._detached: set[str] = set()
        self._generations = itertools.count(1)
        self._listeners: list[ContextListener] = []

    # ── Writers (navigation events) ───────────────────────────────────

    def frame_attached(self, frame_id: str) -> None:
        if frame_id not in self._detached:
            self._frames.setdefault(frame_id, _FrameEntry())

    def context_created(self, frame_id: str) -> ExecutionContext:
        """Navigation committed: dispose the old context and install a new one."""
        if frame_id in self._detached:
            raise FrameDetachedError(f"Frame {frame_id} is detached")
        entry = self._frames.setdefault(frame_id, _FrameEntry())
        self._dispose(frame_id, entry)
        entry.context = ExecutionContext(frame_id=frame_id, generation=next(self._generations))
        logger.debug("context created frame=%s generation=%d", frame_id, entry.context.generation)
        self._emit(entry, ContextEvent(ContextEventKind.CREATED, frame_id, entry.context.generation))
        return entry.context

    def context_destroyed(self, frame_id: str) -> None:
        entry = self._frames.get(frame_id)
        if entry is not None:
            self._dispose(frame_id, entry)

    def frame_detached(self, frame_id: str) -> None:
        entry = self._frames.pop(frame_id, None)
        if entry is None:
            return
        self._detached.add(frame_id)
        generation = entry.context.generation if entry.context else 0
        self._dispose(frame_id, entry)
        entry.detached = True
        logger.debug("frame detached frame=%s", frame_id)
        self._emit(entry, ContextEvent(ContextEventKind.FRAME_DETACHED, frame_id, generation))

    def forget(self, frame_id: str) -> None:
        """Drop what is left of a detached frame once nothing can refer to it again."""
        self._detached.discard(frame_id)

    def _dispose(self, frame_id: str, entry: _FrameEntry) -> None:
        ctx = entry.context
        if ctx is None:
            return
        ctx.disposed = True
        entry.context = None
        self._emit(entry, ContextEvent(ContextEventKind.DESTROYED, frame_id, ctx.generation))

    def _emit(self, entry: _FrameEntry, event: ContextEvent) -> None:
        # Wake waiters, then hand them a fresh event for the next change.
        entry.changed.set()
        entry.changed = asyncio.Event()
        for listener in list(self._listeners):
            listener(event)

    # ── Readers ───────────────────────────────────────────────────────

    def current(self, frame_id: str) -> ExecutionContext | None:
        entry = self._frames.get(frame_id)
        return entry.context if entry else None

    def generation(self, frame_id: str) -> int:
        """Generation of the live context, 0 when there is none."""
        ctx = self.current(frame_id)
        return ctx.generation if ctx else 0

    def is_detached(self, frame_id: str) -> bool:
        return frame_id in self._detached

    @property
    def frame_count(self) -> int:
        """Number of attached frames being tracked."""
        return len(self._frames)

    def is_current(self, context: ExecutionContext) -> bool:
        return not context.disposed and self.current(context.frame_id) is context

    def subscribe(self, listener: ContextListener) -> Callable[[], None]:
        """Register for context events. Returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def wait_for_context(self, frame_id: str, *, after_generation: int = 0) -> ExecutionContext:
        """Suspend until the frame has a live context newer than ``after_generation``.

        Raises:
            FrameDetachedError: the frame is or becomes detached.
        """
        if frame_id in self._detached:
            raise FrameDetachedError(f"Frame {frame_id} is detached")
        entry = self._frames.setdefault(frame_id, _FrameEntry())
        while True:
            if entry.detached:
                raise FrameDetachedError(f"Frame {frame_id} is detached")
            ctx = entry.context
            if ctx is not None and ctx.generation > after_generation:
                return ctx
            await entry.changed.wait()
