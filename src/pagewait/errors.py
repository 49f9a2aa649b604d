# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagewait exception hierarchy.

All public errors inherit from PageWaitError, allowing callers to catch
the base class for any wait failure or specific subclasses for targeted
handling. Every failed wait surfaces exactly one of these.
"""

from __future__ import annotations

import builtins


class PageWaitError(Exception):
    """Base exception for all pagewait errors."""


class ParseError(PageWaitError):
    """Malformed selector text."""

    def __init__(self, message: str, *, selector: str = "") -> None:
        super().__init__(message)
        self.selector = selector


class InvalidOptionError(PageWaitError):
    """Bad polling, timeout, or wait-condition option."""


class WaitTimeoutError(PageWaitError, builtins.TimeoutError):
    """Deadline exceeded before the wait condition was met."""

    def __init__(
        self,
        message: str,
        *,
        timeout_ms: float = 0,
        report: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms
        self.report = report or {}


class FrameDetachedError(PageWaitError):
    """Frame removed from the frame tree while a wait was outstanding."""


class EvaluationError(PageWaitError):
    """Predicate raised inside the remote context."""

    def __init__(self, original_message: str) -> None:
        super().__init__(f"Evaluation failed: {original_message}")
        self.original_message = original_message


class ContextDisposedError(PageWaitError):
    """Execution context is gone (navigation or detachment)."""


class NavigationRace(Exception):  # noqa: N818
    """Internal: an in-flight evaluation lost its context to a navigation.

    Never surfaces to callers; the wait task consumes it and rearms.
    """

    def __init__(self, generation: int) -> None:
        super().__init__(f"execution context generation {generation} was replaced")
        self.generation = generation
