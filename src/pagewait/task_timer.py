# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-task phase timer for wait diagnostics.

A wait task cycles through the same few phases many times, so time is
accumulated per phase name rather than recorded as a sequence. Lives
outside the task's drive loop so the report survives cancellation.
"""

from __future__ import annotations

import time


class TaskTimer:
    """Track where a wait task spends its time."""

    __slots__ = ("_totals", "_current", "_current_start_ns", "_start_ns", "evaluations", "rearms")

    def __init__(self) -> None:
        self._totals: dict[str, int] = {}
        self._current: str | None = None
        self._current_start_ns = 0
        self._start_ns = time.monotonic_ns()
        self.evaluations = 0
        self.rearms = 0

    def phase(self, name: str) -> None:
        """End the previous phase and start ``name``."""
        now = time.monotonic_ns()
        self._close(now)
        self._current = name
        self._current_start_ns = now
        if name == "evaluating":
            self.evaluations += 1
        elif name == "rearming":
            self.rearms += 1

    def finalize(self) -> None:
        self._close(time.monotonic_ns())
        self._current = None

    def _close(self, now: int) -> None:
        if self._current is not None:
            self._totals[self._current] = self._totals.get(self._current, 0) + now - self._current_start_ns

    @property
    def current_phase(self) -> str | None:
        return self._current

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic_ns() - self._start_ns) / 1e6

    def elapsed_per_phase(self) -> dict[str, float]:
        """Return {phase: elapsed_ms}, including the running phase."""
        totals = dict(self._totals)
        if self._current is not None:
            totals[self._current] = totals.get(self._current, 0) + time.monotonic_ns() - self._current_start_ns
        return {name: round(ns / 1e6, 1) for name, ns in totals.items()}

    def timeout_report(self) -> dict:
        """Structured diagnostic attached to WaitTimeoutError."""
        phase = self.current_phase or "unknown"
        return {
            "error": "timeout",
            "phases": self.elapsed_per_phase(),
            "timed_out_in": phase,
            "evaluations": self.evaluations,
            "rearms": self.rearms,
            "total_ms": round(self.elapsed_ms, 1),
            "hint": self.hint_for_phase(phase, self.evaluations),
        }

    @staticmethod
    def hint_for_phase(phase: str, evaluations: int) -> str:
        if phase == "rearming":
            return "Frame navigated and no new document committed before the deadline."
        if phase == "evaluating":
            return "Predicate evaluation round trip is stalling."
        if evaluations == 0:
            return "Predicate was never evaluated."
        return "Predicate kept returning a not-ready value."
