# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Map raw evaluation outcomes onto the public error taxonomy.

Order matters: detachment beats everything, a replaced context beats the
script's own error, and only then is a failure blamed on the predicate.
"""

from __future__ import annotations

from .contexts import ContextTracker, ExecutionContext
from .errors import (
    EvaluationError,
    FrameDetachedError,
    NavigationRace,
    PageWaitError,
    WaitTimeoutError,
)

# Transport messages meaning "the context you targeted is gone"
_CONTEXT_GONE_PATTERNS = (
    "execution context was destroyed",
    "cannot find context with specified id",
    "most likely because of a navigation",
    "execution context is not available",
)

# Transport messages meaning "the frame itself is gone"
_FRAME_GONE_PATTERNS = (
    "frame was detached",
    "frame got detached",
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
)


def detached_error(title: str) -> FrameDetachedError:
    return FrameDetachedError(f"{title} failed: frame got detached.")


def timeout_error(title: str, timeout_ms: float, report: dict | None = None) -> WaitTimeoutError:
    return WaitTimeoutError(
        f"{title} failed: timeout {timeout_ms:g}ms exceeded",
        timeout_ms=timeout_ms,
        report=report,
    )


def is_stale(context: ExecutionContext, tracker: ContextTracker) -> bool:
    """True when ``context`` is no longer the frame's live context."""
    return context.disposed or tracker.generation(context.frame_id) != context.generation


def classify(
    exc: BaseException,
    *,
    context: ExecutionContext,
    tracker: ContextTracker,
    title: str,
) -> PageWaitError | NavigationRace:
    """Classify an evaluation failure for the task bound to ``context``."""
    if tracker.is_detached(context.frame_id):
        return detached_error(title)
    if isinstance(exc, FrameDetachedError):
        return detached_error(title)
    if is_stale(context, tracker):
        return NavigationRace(context.generation)

    message = str(exc)
    lowered = message.lower()
    if any(p in lowered for p in _FRAME_GONE_PATTERNS):
        return detached_error(title)
    if any(p in lowered for p in _CONTEXT_GONE_PATTERNS):
        return NavigationRace(context.generation)
    if isinstance(exc, EvaluationError):
        return EvaluationError(exc.original_message)
    return EvaluationError(message or type(exc).__name__)
