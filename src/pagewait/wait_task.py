# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""WaitTask: drives one predicate on one frame to a single terminal outcome.

State machine::

    CREATED -> ARMED -> RESOLVED | TIMED_OUT | FAILED | CANCELLED

The task is driven by a single explicit loop. Each iteration suspends on
exactly one source, such as an evaluation round trip or the next tick,
and every suspension is raced against the abort signal
set when the frame detaches. Ticks arriving during an evaluation collapse
into one more evaluation afterwards.

An evaluation that finishes after its context was replaced is discarded
and the task rearms against the next context without leaving ARMED. An
evaluation that finishes after the task is already terminal is discarded.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable
from enum import StrEnum
from typing import Any

from .classifier import classify, detached_error, is_stale, timeout_error
from .contexts import ContextEvent, ContextEventKind, ExecutionContext, RemoteHandle
from .errors import FrameDetachedError, NavigationRace, PageWaitError
from .frames import EvaluationResult, Frame
from .logging_config import bound_task
from .polling import PollingHandle, PollingStrategy
from .predicates import Predicate
from .task_timer import TaskTimer

logger = logging.getLogger(__name__)

_task_ids = itertools.count(1)


class TaskState(StrEnum):
    CREATED = "created"
    ARMED = "armed"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TaskState.RESOLVED, TaskState.TIMED_OUT, TaskState.FAILED, TaskState.CANCELLED})


def _consume(fut: asyncio.Future) -> None:
    if not fut.cancelled():
        fut.exception()


class WaitTask:
    """Bind a predicate, a polling strategy and a deadline to one frame.

    ``timeout_ms == 0`` means no deadline. Call :meth:`run` exactly once.
    """

    def __init__(
        self,
        frame: Frame,
        predicate: Predicate,
        polling: PollingStrategy,
        timeout_ms: float,
    ) -> None:
        self.task_id = f"wait-{next(_task_ids)}"
        self.frame = frame
        self.predicate = predicate
        self.polling = polling
        self.timeout_ms = timeout_ms
        self.state = TaskState.CREATED
        self.generation = 0
        self.deadline: float | None = None
        self.timer = TaskTimer()
        self.result: Any = None
        self.error: BaseException | None = None

        self._handle: PollingHandle | None = None
        self._tick = asyncio.Event()
        self._abort = asyncio.Event()
        self._abort_error: PageWaitError | None = None
        self._unsubscribe = None

    def __repr__(self) -> str:
        return f"<WaitTask {self.task_id} {self.predicate.title!r} state={self.state}>"

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def armed(self) -> bool:
        """True while a polling strategy is registered with the frame."""
        return self._handle is not None and self._handle.armed

    # ── State transitions ─────────────────────────────────────────────

    def _transition(self, state: TaskState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"{self.task_id}: illegal transition {self.state} -> {state}")
        self.state = state

    def _fail(self, error: BaseException, state: TaskState = TaskState.FAILED) -> BaseException:
        self._transition(state)
        self.error = error
        return error

    # ── Drive loop ────────────────────────────────────────────────────

    async def run(self) -> Any:
        """Drive the task to a terminal state.

        Returns the success value (a RemoteHandle for object results).

        Raises:
            WaitTimeoutError, FrameDetachedError, EvaluationError.
        """
        if self.state is not TaskState.CREATED:
            raise RuntimeError(f"{self.task_id} already started")
        with bound_task(self.task_id, self.frame.frame_id):
            try:
                return await self._drive()
            except asyncio.CancelledError:
                if not self.done:
                    self._fail(asyncio.CancelledError(), TaskState.CANCELLED)
                logger.debug("wait cancelled %s", self.predicate.title)
                raise
            finally:
                self._teardown()

    async def _drive(self) -> Any:
        frame = self.frame
        tracker = frame.tracker
        title = self.predicate.title

        if frame.is_detached:
            raise self._fail(detached_error(title))

        self._unsubscribe = tracker.subscribe(self._on_context_event)
        if self.timeout_ms:
            self.deadline = asyncio.get_running_loop().time() + self.timeout_ms / 1000

        self.timer.phase("arming")
        context = frame.current_execution_context()
        if context is None:
            context = await self._await_context(after_generation=0)
        self._arm(context)
        self._transition(TaskState.ARMED)

        expression = self.predicate.expression
        args = self.predicate.args
        while True:
            if is_stale(context, tracker):
                context = await self._rearm(context)

            if self._expired():
                # Ticks that landed during the last evaluation must not outrun the deadline.
                raise self._timed_out()

            self._tick.clear()
            self._handle.tick()
            self.timer.phase("evaluating")
            try:
                result: EvaluationResult = await self._guard(frame.evaluate(context, expression, args), inflight=True)
            except Exception as exc:
                if self.done:
                    raise
                outcome = classify(exc, context=context, tracker=tracker, title=title)
                if isinstance(outcome, NavigationRace):
                    logger.debug("evaluation lost its context (generation %d)", outcome.generation)
                    context = await self._rearm(context)
                    continue
                raise self._fail(outcome) from exc

            if is_stale(context, tracker):
                # Result came from a replaced context: do not trust it.
                context = await self._rearm(context)
                continue

            if not self.predicate.is_pending(result.value):
                return self._resolve(context, result)

            self.timer.phase("polling")
            await self._guard(self._tick.wait(), timeout=self._remaining())

    def _expired(self) -> bool:
        return self.deadline is not None and asyncio.get_running_loop().time() >= self.deadline

    def _remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    async def _guard(self, aw: Awaitable, *, timeout: float | None = None, inflight: bool = False) -> Any:
        """Await ``aw`` unless the task is aborted or the deadline passes.

        An aborted in-flight evaluation is left to finish; its result is dropped.
        """
        fut = asyncio.ensure_future(aw)
        abort = asyncio.ensure_future(self._abort.wait())
        try:
            done, _ = await asyncio.wait({fut, abort}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._discard(fut, inflight)
            raise
        finally:
            abort.cancel()

        if self._abort.is_set():
            self._discard(fut, inflight)
            raise self._fail(self._abort_error)
        if fut in done:
            return fut.result()
        self._discard(fut, inflight)
        raise self._timed_out()

    @staticmethod
    def _discard(fut: asyncio.Future, inflight: bool) -> None:
        if not inflight:
            fut.cancel()
        fut.add_done_callback(_consume)

    def _timed_out(self) -> PageWaitError:
        report = self.timer.timeout_report()
        logger.info(
            "%s timed out after %gms (%d evaluations)",
            self.predicate.title,
            self.timeout_ms,
            self.timer.evaluations,
        )
        return self._fail(timeout_error(self.predicate.title, self.timeout_ms, report), TaskState.TIMED_OUT)

    def _resolve(self, context: ExecutionContext, result: EvaluationResult) -> Any:
        value = result.value
        if result.is_reference and value is not None:
            value = RemoteHandle(context, value)
        self._transition(TaskState.RESOLVED)
        self.result = value
        logger.debug("%s resolved after %d evaluations", self.predicate.title, self.timer.evaluations)
        return value

    # ── Arming ────────────────────────────────────────────────────────

    def _arm(self, context: ExecutionContext) -> None:
        self.generation = context.generation
        self._handle = self.polling.arm(self.frame, context, self._tick.set)
        logger.debug("armed %s polling=%s generation=%d", self.predicate.title, self.polling, context.generation)

    def _disarm(self) -> None:
        if self._handle is not None:
            self._handle.disarm()
            self._handle = None

    async def _await_context(self, *, after_generation: int) -> ExecutionContext:
        waiter = self.frame.tracker.wait_for_context(self.frame.frame_id, after_generation=after_generation)
        try:
            return await self._guard(waiter, timeout=self._remaining())
        except FrameDetachedError:
            if self.done:
                raise
            raise self._fail(detached_error(self.predicate.title)) from None

    async def _rearm(self, stale: ExecutionContext) -> ExecutionContext:
        self.timer.phase("rearming")
        self._disarm()
        context = await self._await_context(after_generation=stale.generation)
        self._arm(context)
        logger.debug("rearmed after navigation generation %d -> %d", stale.generation, context.generation)
        return context

    def _on_context_event(self, event: ContextEvent) -> None:
        if event.frame_id != self.frame.frame_id or self.done:
            return
        if event.kind is ContextEventKind.FRAME_DETACHED:
            self._abort_error = detached_error(self.predicate.title)
            self._abort.set()
        elif event.kind is ContextEventKind.DESTROYED and event.generation == self.generation:
            # Wake the loop so it rearms instead of waiting on a dead strategy.
            self._tick.set()

    def _teardown(self) -> None:
        self._disarm()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.timer.finalize()
