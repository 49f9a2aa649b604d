# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagewait: condition polling for browser automation.

Suspends a caller until a predicate holds in a frame:
- function waits: a script (or Python callable on snapshot pages) turns truthy
- selector waits: the first match is attached, visible, hidden or detached

Waits survive navigations by rearming on the frame's next execution
context, fail fast when the frame detaches, and time out with a phase
report attached.
"""

from __future__ import annotations

from .contexts import ContextTracker, ExecutionContext, RemoteHandle
from .errors import (
    ContextDisposedError,
    EvaluationError,
    FrameDetachedError,
    InvalidOptionError,
    PageWaitError,
    ParseError,
    WaitTimeoutError,
)
from .frames import EvaluationResult, Frame
from .options import WaitCondition, WaitOptions
from .polling import IntervalPolling, MutationPolling, PollingStrategy, RafPolling
from .selectors import Selector, parse
from .wait_task import TaskState, WaitTask
from .waiter import FunctionCondition, SelectorCondition, Waiter, wait_for, wait_for_timeout

__all__ = [
    "ContextDisposedError",
    "ContextTracker",
    "EvaluationError",
    "EvaluationResult",
    "ExecutionContext",
    "Frame",
    "FrameDetachedError",
    "FunctionCondition",
    "IntervalPolling",
    "InvalidOptionError",
    "MutationPolling",
    "PageWaitError",
    "ParseError",
    "PollingStrategy",
    "RafPolling",
    "RemoteHandle",
    "Selector",
    "SelectorCondition",
    "TaskState",
    "WaitCondition",
    "WaitOptions",
    "WaitTask",
    "WaitTimeoutError",
    "Waiter",
    "parse",
    "wait_for",
    "wait_for_timeout",
]
