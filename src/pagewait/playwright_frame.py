# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Frame protocol over a live Playwright page.

PlaywrightSession listens to the page's frame events and keeps a
ContextTracker in step with them::

    async with async_playwright() as pw:
        browser = await pw.chromium.launch()
        page = await browser.new_page()
        session = PlaywrightSession(page)
        handle = await Waiter().wait_for_selector(session.main_frame, ".ready")

String predicates run through ``evaluate_handle``; selector predicates
through ``query_selector`` + ``is_visible``. Mutation and animation-frame
ticks are long-polled from in-page promises on a background task that is
cancelled on unsubscribe. The in-page observer expires on its own after
``_OBSERVER_IDLE_MS`` so nothing stays behind in the page.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections.abc import Callable, Sequence
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame as PwFrame
from playwright.async_api import Page

from .contexts import ContextTracker, ExecutionContext, RemoteHandle
from .errors import ContextDisposedError, FrameDetachedError
from .frames import EvaluationResult, Unsubscribe
from .options import FALLBACK_POLL_MS, WaitCondition
from .predicates import PENDING, SelectorPredicate, settle

logger = logging.getLogger(__name__)

_OBSERVER_IDLE_MS = 1000

_IS_REFERENCE_JS = "(v) => v !== null && (typeof v === 'object' || typeof v === 'function')"

_MUTATION_JS = """(idleMs) => {
  if (typeof MutationObserver === 'undefined') return 'unavailable';
  return new Promise(resolve => {
    const observer = new MutationObserver(() => {
      observer.disconnect();
      clearTimeout(timer);
      resolve('mutated');
    });
    const timer = setTimeout(() => { observer.disconnect(); resolve('idle'); }, idleMs);
    observer.observe(document, {childList: true, subtree: true, attributes: true, characterData: true});
  });
}"""

_RAF_JS = "() => new Promise(f => requestAnimationFrame(() => f(true)))"


def _unwrap(args: Sequence[Any]) -> Any:
    values = [a.value if isinstance(a, RemoteHandle) else a for a in args]
    if not values:
        return None
    return values[0] if len(values) == 1 else values


class PlaywrightFrame:
    """One Playwright frame seen through the Frame protocol."""

    def __init__(self, session: PlaywrightSession, frame: PwFrame, frame_id: str) -> None:
        self._session = session
        self._frame = frame
        self._frame_id = frame_id

    def __repr__(self) -> str:
        return f"<PlaywrightFrame {self._frame_id} name={self._frame.name!r}>"

    @property
    def frame_id(self) -> str:
        return self._frame_id

    @property
    def tracker(self) -> ContextTracker:
        return self._session.tracker

    @property
    def playwright_frame(self) -> PwFrame:
        return self._frame

    @property
    def is_detached(self) -> bool:
        return self.tracker.is_detached(self._frame_id) or self._frame.is_detached()

    def current_execution_context(self) -> ExecutionContext | None:
        return self.tracker.current(self._frame_id)

    async def evaluate(self, context: ExecutionContext, expression: Any, args: Sequence[Any] = ()) -> EvaluationResult:
        if self.is_detached:
            raise FrameDetachedError(f"Frame {self._frame_id} was detached")
        if context.disposed:
            raise ContextDisposedError("Execution context was destroyed")
        if isinstance(expression, SelectorPredicate):
            return await self._evaluate_selector(expression)
        if not isinstance(expression, str):
            raise TypeError("Live frames evaluate script text, not Python callables")

        handle = await self._frame.evaluate_handle(expression, _unwrap(args))
        if await handle.evaluate(_IS_REFERENCE_JS):
            return EvaluationResult(handle, is_reference=True)
        try:
            return EvaluationResult(await handle.json_value())
        finally:
            await handle.dispose()

    async def _evaluate_selector(self, predicate: SelectorPredicate) -> EvaluationResult:
        element = await self._frame.query_selector(str(predicate.selector))
        visible = False
        if element is not None and predicate.condition is not WaitCondition.ATTACHED:
            visible = await element.is_visible()
        value = settle(predicate.condition, element, visible)
        if element is not None and value is not element:
            await element.dispose()
        return EvaluationResult(value, is_reference=value is not None and value is not PENDING)

    def observe_mutations(self, context: ExecutionContext, callback: Callable[[], None]) -> Unsubscribe | None:
        return self._pump(context, _MUTATION_JS, _OBSERVER_IDLE_MS, callback)

    def observe_animation_frames(self, context: ExecutionContext, callback: Callable[[], None]) -> Unsubscribe:
        return self._pump(context, _RAF_JS, None, callback)

    def _pump(self, context: ExecutionContext, script: str, arg: Any, callback: Callable[[], None]) -> Unsubscribe:
        async def run() -> None:
            while not context.disposed:
                try:
                    outcome = await self._frame.evaluate(script, arg)
                except PlaywrightError as exc:
                    logger.debug("tick source for %s stopped: %s", self._frame_id, exc)
                    return
                if outcome == "unavailable":
                    logger.warning(
                        "mutation observation unavailable in frame %s; polling every %gms",
                        self._frame_id,
                        FALLBACK_POLL_MS,
                    )
                    while not context.disposed:
                        await asyncio.sleep(FALLBACK_POLL_MS / 1000)
                        callback()
                    return
                callback()

        def reap(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.warning("tick source for %s failed: %r", self._frame_id, exc)

        task = asyncio.get_running_loop().create_task(run())
        task.add_done_callback(reap)
        return task.cancel


class PlaywrightSession:
    """Bridge a Playwright Page's frame events into a ContextTracker.

    Every frame already present is assumed to have a committed document.
    """

    def __init__(self, page: Page, *, tracker: ContextTracker | None = None) -> None:
        self.page = page
        self.tracker = tracker or ContextTracker()
        self.session_id = uuid.uuid4().hex[:8]
        self._seq = itertools.count()
        self._frames: dict[PwFrame, PlaywrightFrame] = {}
        self._detached_ids: list[str] = []
        self._handlers: dict[str, Callable[..., None]] = {
            "frameattached": self._on_attached,
            "framenavigated": self._on_navigated,
            "framedetached": self._on_detached,
            "close": self._on_close,
        }
        for frame in page.frames:
            self._register(frame)
            self.tracker.context_created(self._frames[frame].frame_id)
        for event, handler in self._handlers.items():
            page.on(event, handler)

    @property
    def main_frame(self) -> PlaywrightFrame:
        return self.frame(self.page.main_frame)

    @property
    def frames(self) -> list[PlaywrightFrame]:
        return [self._frames[f] for f in self.page.frames if f in self._frames]

    def frame(self, frame: PwFrame) -> PlaywrightFrame:
        if frame not in self._frames:
            self._register(frame)
        return self._frames[frame]

    def close(self) -> None:
        """Stop listening to the page. Attached frames stay tracked."""
        for event, handler in self._handlers.items():
            self.page.remove_listener(event, handler)
        for frame_id in self._detached_ids:
            self.tracker.forget(frame_id)
        self._detached_ids.clear()

    def _register(self, frame: PwFrame) -> PlaywrightFrame:
        wrapped = PlaywrightFrame(self, frame, f"{self.session_id}:{next(self._seq)}")
        self._frames[frame] = wrapped
        self.tracker.frame_attached(wrapped.frame_id)
        return wrapped

    def _on_attached(self, frame: PwFrame) -> None:
        self.frame(frame)

    def _on_navigated(self, frame: PwFrame) -> None:
        wrapped = self.frame(frame)
        self.tracker.context_created(wrapped.frame_id)

    def _on_detached(self, frame: PwFrame) -> None:
        wrapped = self._frames.pop(frame, None)
        if wrapped is not None:
            self.tracker.frame_detached(wrapped.frame_id)
            self._detached_ids.append(wrapped.frame_id)

    def _on_close(self, *_: Any) -> None:
        for frame in list(self._frames):
            self._on_detached(frame)
