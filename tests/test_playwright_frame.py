# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the Playwright adapter, driven entirely by mocks.

Verifies:
1. Session wiring: existing frames get contexts, page events reach the tracker
2. Evaluation: primitives copied out and disposed, objects kept as handles
3. Selector predicates via query_selector + is_visible
4. Long-poll tick sources: mutation, raf, unavailable observer, lost context
5. End-to-end waits through Waiter
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from pagewait import FrameDetachedError, RemoteHandle, Waiter
from pagewait.frames import Frame
from pagewait.options import WaitCondition
from pagewait.playwright_frame import PlaywrightSession
from pagewait.predicates import PENDING, compile_condition

# ── Helpers ──────────────────────────────────────────────────────────


def _make_js_handle(*, is_reference: bool = False, value=None) -> MagicMock:
    handle = MagicMock()
    handle.evaluate = AsyncMock(return_value=is_reference)
    handle.json_value = AsyncMock(return_value=value)
    handle.dispose = AsyncMock()
    return handle


async def _idle_long_poll(*args):
    await asyncio.sleep(0.01)
    return "idle"


def _make_pw_frame(name: str = "") -> MagicMock:
    frame = MagicMock()
    frame.name = name
    frame.is_detached = MagicMock(return_value=False)
    frame.evaluate_handle = AsyncMock(return_value=_make_js_handle(value=True))
    frame.evaluate = AsyncMock(side_effect=_idle_long_poll)
    frame.query_selector = AsyncMock(return_value=None)
    return frame


def _make_page(*frames: MagicMock) -> MagicMock:
    page = MagicMock()
    main = frames[0] if frames else _make_pw_frame("main")
    page.main_frame = main
    page.frames = list(frames) or [main]
    return page


def _handler(page: MagicMock, event: str):
    for call in page.on.call_args_list:
        if call.args[0] == event:
            return call.args[1]
    raise AssertionError(f"no handler for {event}")


# ── Session wiring ───────────────────────────────────────────────────


class TestSession:
    def test_existing_frames_get_contexts(self):
        child = _make_pw_frame("child")
        page = _make_page(_make_pw_frame("main"), child)
        session = PlaywrightSession(page)
        assert len(session.frames) == 2
        for frame in session.frames:
            assert session.tracker.current(frame.frame_id) is not None
        assert isinstance(session.main_frame, Frame)

    def test_listens_to_frame_events(self):
        page = _make_page()
        PlaywrightSession(page)
        events = {call.args[0] for call in page.on.call_args_list}
        assert events == {"frameattached", "framenavigated", "framedetached", "close"}

    def test_navigation_creates_new_context(self):
        page = _make_page()
        session = PlaywrightSession(page)
        frame_id = session.main_frame.frame_id
        before = session.tracker.generation(frame_id)
        _handler(page, "framenavigated")(page.main_frame)
        assert session.tracker.generation(frame_id) > before

    def test_attached_frame_waits_for_its_first_navigation(self):
        page = _make_page()
        session = PlaywrightSession(page)
        child = _make_pw_frame("child")
        _handler(page, "frameattached")(child)
        wrapped = session.frame(child)
        assert session.tracker.current(wrapped.frame_id) is None
        _handler(page, "framenavigated")(child)
        assert session.tracker.current(wrapped.frame_id) is not None

    def test_detach_and_close(self):
        child = _make_pw_frame("child")
        page = _make_page(_make_pw_frame("main"), child)
        session = PlaywrightSession(page)
        child_frame = session.frame(child)
        main_frame = session.main_frame
        _handler(page, "framedetached")(child)
        assert child_frame.is_detached
        assert not main_frame.is_detached
        _handler(page, "close")(page)
        assert main_frame.is_detached

    def test_detached_frames_are_released_on_close(self):
        child = _make_pw_frame("child")
        page = _make_page(_make_pw_frame("main"), child)
        session = PlaywrightSession(page)
        child_id = session.frame(child).frame_id
        assert session.tracker.frame_count == 2
        _handler(page, "framedetached")(child)
        assert session.tracker.frame_count == 1
        assert session.tracker.is_detached(child_id)
        session.close()
        assert not session.tracker.is_detached(child_id)
        assert session.tracker.frame_count == 1

    def test_close_removes_listeners(self):
        page = _make_page()
        session = PlaywrightSession(page)
        session.close()
        removed = {call.args[0] for call in page.remove_listener.call_args_list}
        assert removed == {"frameattached", "framenavigated", "framedetached", "close"}


# ── Evaluation ───────────────────────────────────────────────────────


class TestEvaluate:
    async def test_primitive_is_copied_and_disposed(self):
        page = _make_page()
        js_handle = _make_js_handle(value=5)
        page.main_frame.evaluate_handle = AsyncMock(return_value=js_handle)
        frame = PlaywrightSession(page).main_frame
        result = await frame.evaluate(frame.current_execution_context(), "() => 5")
        assert (result.value, result.is_reference) == (5, False)
        js_handle.dispose.assert_awaited_once()

    async def test_object_is_kept_as_reference(self):
        page = _make_page()
        js_handle = _make_js_handle(is_reference=True)
        page.main_frame.evaluate_handle = AsyncMock(return_value=js_handle)
        frame = PlaywrightSession(page).main_frame
        result = await frame.evaluate(frame.current_execution_context(), "() => window")
        assert result.value is js_handle
        assert result.is_reference
        js_handle.dispose.assert_not_awaited()

    async def test_arguments_are_unwrapped(self):
        page = _make_page()
        frame = PlaywrightSession(page).main_frame
        ctx = frame.current_execution_context()
        element = object()
        await frame.evaluate(ctx, "(e) => !e.parentElement", (RemoteHandle(ctx, element),))
        page.main_frame.evaluate_handle.assert_awaited_once_with("(e) => !e.parentElement", element)
        await frame.evaluate(ctx, "(a, b) => a + b", (1, 2))
        assert page.main_frame.evaluate_handle.await_args.args[1] == [1, 2]

    async def test_callables_are_rejected(self):
        frame = PlaywrightSession(_make_page()).main_frame
        with pytest.raises(TypeError, match="script text"):
            await frame.evaluate(frame.current_execution_context(), lambda scope: True)

    async def test_detached_frame(self):
        page = _make_page()
        page.main_frame.is_detached = MagicMock(return_value=True)
        frame = PlaywrightSession(page).main_frame
        with pytest.raises(FrameDetachedError):
            await frame.evaluate(frame.current_execution_context(), "1")


class TestSelectorEvaluate:
    async def test_visible_match(self):
        page = _make_page()
        element = MagicMock()
        element.is_visible = AsyncMock(return_value=True)
        element.dispose = AsyncMock()
        page.main_frame.query_selector = AsyncMock(return_value=element)
        frame = PlaywrightSession(page).main_frame
        predicate = compile_condition("div >> span", WaitCondition.VISIBLE)
        result = await frame.evaluate(frame.current_execution_context(), predicate)
        page.main_frame.query_selector.assert_awaited_once_with("css=div >> css=span")
        assert result.value is element
        assert result.is_reference
        element.dispose.assert_not_awaited()

    async def test_unwanted_match_is_disposed(self):
        page = _make_page()
        element = MagicMock()
        element.is_visible = AsyncMock(return_value=True)
        element.dispose = AsyncMock()
        page.main_frame.query_selector = AsyncMock(return_value=element)
        frame = PlaywrightSession(page).main_frame
        result = await frame.evaluate(frame.current_execution_context(), compile_condition("div", "hidden"))
        assert result.value is PENDING
        element.dispose.assert_awaited_once()

    async def test_attached_skips_visibility_check(self):
        page = _make_page()
        element = MagicMock()
        element.is_visible = AsyncMock()
        page.main_frame.query_selector = AsyncMock(return_value=element)
        frame = PlaywrightSession(page).main_frame
        await frame.evaluate(frame.current_execution_context(), compile_condition("div"))
        element.is_visible.assert_not_awaited()

    async def test_no_match_for_detached_is_none(self):
        frame = PlaywrightSession(_make_page()).main_frame
        result = await frame.evaluate(frame.current_execution_context(), compile_condition("div", "detached"))
        assert result.value is None
        assert not result.is_reference


# ── Tick sources ─────────────────────────────────────────────────────


class TestTickSources:
    async def test_mutation_long_poll_ticks_until_context_lost(self):
        page = _make_page()
        page.main_frame.evaluate = AsyncMock(
            side_effect=["mutated", "idle", PlaywrightError("Execution context was destroyed")]
        )
        frame = PlaywrightSession(page).main_frame
        ticks = MagicMock()
        frame.observe_mutations(frame.current_execution_context(), ticks)
        await asyncio.sleep(0.01)
        assert ticks.call_count == 2
        assert page.main_frame.evaluate.await_count == 3

    async def test_unsubscribe_cancels_the_poller(self):
        page = _make_page()
        cancelled = asyncio.Event()

        async def hang(*args):
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        page.main_frame.evaluate = hang
        frame = PlaywrightSession(page).main_frame
        ticks = MagicMock()
        unsubscribe = frame.observe_animation_frames(frame.current_execution_context(), ticks)
        await asyncio.sleep(0.01)
        unsubscribe()
        await asyncio.sleep(0.01)
        assert cancelled.is_set()
        ticks.assert_not_called()

    async def test_unavailable_observer_falls_back_to_interval(self, monkeypatch, caplog):
        monkeypatch.setattr("pagewait.playwright_frame.FALLBACK_POLL_MS", 1)
        page = _make_page()
        page.main_frame.evaluate = AsyncMock(return_value="unavailable")
        frame = PlaywrightSession(page).main_frame
        ticks = MagicMock()
        unsubscribe = frame.observe_mutations(frame.current_execution_context(), ticks)
        await asyncio.sleep(0.05)
        unsubscribe()
        assert ticks.call_count >= 2
        assert page.main_frame.evaluate.await_count == 1
        assert "mutation observation unavailable" in caplog.text

    async def test_unexpected_failure_is_logged(self, caplog):
        page = _make_page()
        page.main_frame.evaluate = AsyncMock(side_effect=RuntimeError("boom"))
        frame = PlaywrightSession(page).main_frame
        ticks = MagicMock()
        unsubscribe = frame.observe_mutations(frame.current_execution_context(), ticks)
        await asyncio.sleep(0.01)
        assert unsubscribe.__self__.done()
        assert "tick source for" in caplog.text
        assert "boom" in caplog.text
        ticks.assert_not_called()

    async def test_poller_stops_after_navigation(self):
        page = _make_page()
        session = PlaywrightSession(page)
        frame = session.main_frame
        ctx = frame.current_execution_context()
        _handler(page, "framenavigated")(page.main_frame)
        ticks = MagicMock()
        frame.observe_mutations(ctx, ticks)
        await asyncio.sleep(0.01)
        page.main_frame.evaluate.assert_not_awaited()
        ticks.assert_not_called()


# ── End to end ───────────────────────────────────────────────────────


class TestWaiterOverPlaywright:
    async def test_wait_for_function_polls_until_truthy(self):
        page = _make_page()
        values = iter([False, None, 7])
        page.main_frame.evaluate_handle = AsyncMock(side_effect=lambda *a: _make_js_handle(value=next(values)))
        frame = PlaywrightSession(page).main_frame
        result = await Waiter().wait_for_function(frame, "() => window.__value", polling=5)
        assert result == 7
        assert page.main_frame.evaluate_handle.await_count == 3

    async def test_wait_for_selector_returns_handle(self):
        page = _make_page()
        element = MagicMock()
        page.main_frame.query_selector = AsyncMock(side_effect=[None, element])
        frame = PlaywrightSession(page).main_frame
        handle = await Waiter().wait_for_selector(frame, ".ready", polling=5)
        assert isinstance(handle, RemoteHandle)
        assert handle.value is element

    async def test_navigation_mid_evaluation_rearms(self):
        page = _make_page()
        session = PlaywrightSession(page)
        navigated = _handler(page, "framenavigated")
        calls = 0

        async def evaluate_handle(expression, arg):
            nonlocal calls
            calls += 1
            if calls == 1:
                navigated(page.main_frame)
                raise PlaywrightError("Execution context was destroyed, most likely because of a navigation")
            return _make_js_handle(value="done")

        page.main_frame.evaluate_handle = evaluate_handle
        result = await Waiter().wait_for_function(session.main_frame, "() => 'done'", polling=5)
        assert result == "done"
        assert calls == 2

    async def test_frame_detach_fails_the_wait(self):
        child = _make_pw_frame("child")
        page = _make_page(_make_pw_frame("main"), child)
        session = PlaywrightSession(page)
        child.evaluate_handle = AsyncMock(side_effect=lambda *a: _make_js_handle(value=False))
        watchdog = asyncio.create_task(Waiter().wait_for_function(session.frame(child), "() => false", polling=5))
        await asyncio.sleep(0.02)
        _handler(page, "framedetached")(child)
        with pytest.raises(FrameDetachedError, match="waiting for function failed: frame got detached."):
            await watchdog
