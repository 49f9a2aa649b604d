# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Public wait operations.

Validation (options, selector syntax) runs before any task is created, so
ParseError and InvalidOptionError never arrive after a deadline started.

Usage::

    waiter = Waiter(default_timeout_ms=5_000)
    handle = await waiter.wait_for_selector(frame, "css=div >> span", wait_for="visible")
    value = await waiter.wait_for_function(frame, "() => window.ready", polling=100)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .frames import Frame
from .options import DEFAULT_TIMEOUT_MS, WaitKind, parse_options, validate_timeout
from .polling import strategy_for
from .predicates import compile_condition, function_predicate
from .selectors import Selector
from .wait_task import WaitTask

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SelectorCondition:
    selector: str | Selector


@dataclass(frozen=True, slots=True)
class FunctionCondition:
    expression: str | Callable[..., Any]
    args: tuple = field(default=())


WaitSpec = SelectorCondition | FunctionCondition


class Waiter:
    """Entry point for waits within one automation session.

    Holds the session's default timeout and the set of tasks in flight.
    """

    def __init__(self, *, default_timeout_ms: float = DEFAULT_TIMEOUT_MS) -> None:
        self._default_timeout_ms = validate_timeout(default_timeout_ms)
        self._active: set[WaitTask] = set()

    @property
    def default_timeout_ms(self) -> float:
        return self._default_timeout_ms

    def set_default_timeout(self, timeout_ms: float) -> None:
        self._default_timeout_ms = validate_timeout(timeout_ms)

    @property
    def active_tasks(self) -> frozenset[WaitTask]:
        return frozenset(self._active)

    def create_task(self, frame: Frame, condition: WaitSpec, options: Mapping[str, Any] | None = None) -> WaitTask:
        """Validate everything and build the task without starting it."""
        if isinstance(condition, SelectorCondition):
            opts = parse_options(options, kind=WaitKind.SELECTOR, default_timeout_ms=self._default_timeout_ms)
            predicate = compile_condition(condition.selector, opts.wait_for)
        elif isinstance(condition, FunctionCondition):
            opts = parse_options(options, kind=WaitKind.FUNCTION, default_timeout_ms=self._default_timeout_ms)
            predicate = function_predicate(condition.expression, condition.args)
        else:
            raise TypeError(f"Unsupported wait condition: {condition!r}")
        return WaitTask(frame, predicate, strategy_for(opts.polling), opts.timeout_ms)

    async def wait_for(self, frame: Frame, condition: WaitSpec, options: Mapping[str, Any] | None = None) -> Any:
        """Block until ``condition`` holds in ``frame``.

        Returns the success value, a RemoteHandle, or None (hidden/detached
        selector waits with nothing matched).

        Raises:
            ParseError, InvalidOptionError: before waiting starts.
            WaitTimeoutError, FrameDetachedError, EvaluationError.
        """
        task = self.create_task(frame, condition, options)
        self._active.add(task)
        try:
            return await task.run()
        finally:
            self._active.discard(task)

    async def wait_for_selector(self, frame: Frame, selector: str | Selector, **options: Any) -> Any:
        return await self.wait_for(frame, SelectorCondition(selector), options)

    async def wait_for_function(
        self,
        frame: Frame,
        expression: str | Callable[..., Any],
        *args: Any,
        **options: Any,
    ) -> Any:
        return await self.wait_for(frame, FunctionCondition(expression, args), options)


async def wait_for(frame: Frame, condition: WaitSpec, options: Mapping[str, Any] | None = None) -> Any:
    """One-off wait with process defaults."""
    return await Waiter().wait_for(frame, condition, options)


async def wait_for_timeout(timeout_ms: float) -> None:
    """Sleep for ``timeout_ms``; never returns early."""
    seconds = validate_timeout(timeout_ms) / 1000
    loop = asyncio.get_running_loop()
    end = loop.time() + seconds
    while (remaining := end - loop.time()) > 0:
        await asyncio.sleep(remaining)
