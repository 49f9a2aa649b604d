# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Polling strategies: when to re-run a wait predicate.

Closed set of variants sharing one contract::

    handle = strategy.arm(frame, context, on_tick)
    handle.tick()      # task is about to evaluate
    handle.disarm()    # idempotent; nothing outlives it

``on_tick`` may fire any number of times; the wait task coalesces.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from .contexts import ExecutionContext
from .errors import InvalidOptionError
from .frames import Frame, Unsubscribe
from .options import FALLBACK_POLL_MS, validate_polling

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


class PollingHandle:
    """Armed state of a strategy. Base class doubles as the no-op handle."""

    def __init__(self, unsubscribe: Unsubscribe | None = None) -> None:
        self._unsubscribe = unsubscribe
        self.armed = True

    def tick(self) -> None:
        """Called by the task right before each evaluation."""

    def disarm(self) -> None:
        if not self.armed:
            return
        self.armed = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class _IntervalHandle(PollingHandle):
    """One-shot timer re-scheduled at every evaluation start.

    Consecutive evaluations are therefore never closer than the interval.
    """

    def __init__(self, interval_ms: float, on_tick: TickCallback) -> None:
        super().__init__()
        self._interval = interval_ms / 1000
        self._on_tick = on_tick
        self._timer: asyncio.TimerHandle | None = None

    def tick(self) -> None:
        if not self.armed:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self._interval, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self.armed:
            self._on_tick()

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        super().disarm()


@dataclass(frozen=True, slots=True)
class IntervalPolling:
    interval_ms: float

    name = "interval"

    def __post_init__(self) -> None:
        if self.interval_ms <= 0:
            raise InvalidOptionError("Cannot poll with non-positive interval")

    def arm(self, frame: Frame, context: ExecutionContext, on_tick: TickCallback) -> PollingHandle:
        return _IntervalHandle(self.interval_ms, on_tick)

    def __str__(self) -> str:
        return f"{self.interval_ms:g}ms"


@dataclass(frozen=True, slots=True)
class MutationPolling:
    """Tick once per coalesced batch of DOM mutations in the frame."""

    fallback_ms: float = FALLBACK_POLL_MS

    name = "mutation"

    def arm(self, frame: Frame, context: ExecutionContext, on_tick: TickCallback) -> PollingHandle:
        unsubscribe = frame.observe_mutations(context, on_tick)
        if unsubscribe is None:
            logger.warning(
                "mutation observation unavailable in frame %s; polling every %gms",
                frame.frame_id,
                self.fallback_ms,
            )
            return IntervalPolling(self.fallback_ms).arm(frame, context, on_tick)
        return PollingHandle(unsubscribe)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class RafPolling:
    """Tick once per rendered frame."""

    name = "raf"

    def arm(self, frame: Frame, context: ExecutionContext, on_tick: TickCallback) -> PollingHandle:
        return PollingHandle(frame.observe_animation_frames(context, on_tick))

    def __str__(self) -> str:
        return self.name


PollingStrategy = IntervalPolling | MutationPolling | RafPolling


def strategy_for(polling: str | float) -> PollingStrategy:
    """Build the strategy for a ``polling`` option value.

    Raises:
        InvalidOptionError: non-positive interval or unknown name.
    """
    value = validate_polling(polling)
    if value == "raf":
        return RafPolling()
    if value == "mutation":
        return MutationPolling()
    return IntervalPolling(value)
