# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""In-process snapshot page over lxml.

Implements the Frame protocol without a browser: documents are lxml HTML
trees, the window is a per-context dict, and predicates are Python
callables invoked as ``fn(scope, *args)``. Used for offline pages and as
the reference transport for the wait engine.

Layout is a simplified block model:
- every rendered element is a block stacked vertically at x=0
- ``width``/``height`` come from inline style in px; auto width is the
  parent's width (viewport at the root), auto height is the sum of child
  heights plus one line when the element has its own text
- ``display:none`` (or the ``hidden`` attribute) on any ancestor removes the box
- ``visibility`` inherits

Shadow roots are ``<template shadowrootmode="open">`` children of the host.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections.abc import Callable, Sequence
from typing import Any

import lxml.html
from lxml import etree

from .contexts import ContextTracker, ExecutionContext, RemoteHandle
from .errors import ContextDisposedError, FrameDetachedError
from .frames import EvaluationResult, Unsubscribe
from .predicates import BoundingBox
from .selectors import is_shadow_root, parse, resolve, resolve_all

logger = logging.getLogger(__name__)

VIEWPORT_WIDTH = 1280
LINE_HEIGHT = 16
FRAME_INTERVAL = 1 / 60

_BLANK_DOCUMENT = "<html><head></head><body></body></html>"
_NOT_RENDERED = {"head", "script", "style", "title", "meta", "link", "noscript"}
_PRIMITIVES = (bool, int, float, str, type(None))


# ---------------------------------------------------------------------------
# Style + layout
# ---------------------------------------------------------------------------


def parse_style(text: str | None) -> dict[str, str]:
    style: dict[str, str] = {}
    for decl in (text or "").split(";"):
        name, sep, value = decl.partition(":")
        if sep and name.strip():
            style[name.strip().lower()] = value.strip().lower()
    return style


def set_style_property(el: etree._Element, name: str, value: str | None) -> None:
    """Set (or remove, with ``value=None``) one inline style property."""
    style = parse_style(el.get("style"))
    if value is None:
        style.pop(name, None)
    else:
        style[name] = value
    el.set("style", "; ".join(f"{k}: {v}" for k, v in style.items()))


def _own_display(el: etree._Element) -> str:
    style = parse_style(el.get("style"))
    if "display" in style:
        return style["display"]
    if "hidden" in el.attrib:
        return "none"
    if el.tag == "template":
        return "contents" if is_shadow_root(el) else "none"
    if el.tag in _NOT_RENDERED:
        return "none"
    return "block"


def computed_style(el: etree._Element) -> dict[str, str]:
    visibility = "visible"
    for node in (el, *el.iterancestors()):
        declared = parse_style(node.get("style")).get("visibility")
        if declared:
            visibility = declared
            break
    return {"display": _own_display(el), "visibility": visibility}


def _length(value: str | None) -> float | None:
    if not value:
        return None
    value = value.removesuffix("px").strip()
    try:
        return float(value)
    except ValueError:
        return None


def _rendered(el: object) -> bool:
    return isinstance(el, etree._Element) and isinstance(el.tag, str) and _own_display(el) != "none"


def _width(el: etree._Element, viewport_width: float) -> float:
    explicit = _length(parse_style(el.get("style")).get("width"))
    if explicit is not None and _own_display(el) != "contents":
        return explicit
    parent = el.getparent()
    return viewport_width if parent is None else _width(parent, viewport_width)


def _height(el: etree._Element) -> float:
    explicit = _length(parse_style(el.get("style")).get("height"))
    if explicit is not None and _own_display(el) != "contents":
        return explicit
    height = sum(_height(child) for child in el if _rendered(child))
    if (el.text or "").strip() or any((child.tail or "").strip() for child in el):
        height += LINE_HEIGHT
    return height


def _top(el: etree._Element) -> float:
    parent = el.getparent()
    if parent is None:
        return 0.0
    above = sum(_height(sib) for sib in el.itersiblings(preceding=True) if _rendered(sib))
    return _top(parent) + above


def bounding_box(el: etree._Element, viewport_width: float = VIEWPORT_WIDTH) -> BoundingBox | None:
    """Layout box of ``el``, or None when it is not rendered."""
    if any(_own_display(node) == "none" for node in (el, *el.iterancestors())):
        return None
    return BoundingBox(x=0.0, y=_top(el), width=_width(el, viewport_width), height=_height(el))


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def create_element(parent: etree._Element, tag: str, text: str | None = None, **attrs: str) -> etree._Element:
    el = parent.makeelement(tag, {k.rstrip("_"): v for k, v in attrs.items()})
    parent.append(el)
    if text is not None:
        el.text = text
    return el


def attach_shadow(host: etree._Element) -> etree._Element:
    """Give ``host`` an open shadow root and return it."""
    for child in host:
        if is_shadow_root(child):
            return child
    root = host.makeelement("template", {"shadowrootmode": "open"})
    host.insert(0, root)
    return root


def shadow_root(host: etree._Element) -> etree._Element | None:
    return next((child for child in host if is_shadow_root(child)), None)


def _parse_document(html: str) -> etree._Element:
    return lxml.html.document_fromstring(html if html.strip() else _BLANK_DOCUMENT)


# ---------------------------------------------------------------------------
# Scope handed to predicates
# ---------------------------------------------------------------------------


class PageScope:
    """The page as seen from inside one evaluation."""

    def __init__(self, frame: DomFrame) -> None:
        self.frame = frame

    @property
    def document(self) -> etree._Element:
        return self.frame.document

    @property
    def body(self) -> etree._Element:
        return self.frame.document.body

    @property
    def window(self) -> dict:
        return self.frame.window

    def bounding_box(self, el: etree._Element) -> BoundingBox | None:
        return bounding_box(el, self.frame.page.viewport_width)

    def computed_style(self, el: etree._Element) -> dict[str, str]:
        return computed_style(el)

    def query(self, selector: str) -> etree._Element | None:
        return resolve(parse(selector), self.document)

    def query_all(self, selector: str) -> list[etree._Element]:
        return resolve_all(parse(selector), self.document)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


class DomFrame:
    """One frame of a DomPage. Implements the Frame protocol."""

    def __init__(self, page: DomPage, parent: DomFrame | None = None, *, name: str = "") -> None:
        self.page = page
        self.parent = parent
        self.name = name
        self.child_frames: list[DomFrame] = []
        self._frame_id = f"{page.page_id}:{next(page._frame_seq)}"
        self._detached = False
        self._context: ExecutionContext | None = None
        self._document = _parse_document("")
        self._window: dict = {}
        self._source = ""
        self._mutation_observers: list[Callable[[], None]] = []
        self._flush_scheduled = False

    def __repr__(self) -> str:
        return f"<DomFrame {self._frame_id} name={self.name!r}{' detached' if self._detached else ''}>"

    # ── Frame protocol ────────────────────────────────────────────────

    @property
    def frame_id(self) -> str:
        return self._frame_id

    @property
    def tracker(self) -> ContextTracker:
        return self.page.tracker

    @property
    def is_detached(self) -> bool:
        return self._detached

    def current_execution_context(self) -> ExecutionContext | None:
        return self.tracker.current(self._frame_id)

    async def evaluate(self, context: ExecutionContext, expression: Any, args: Sequence[Any] = ()) -> EvaluationResult:
        self._check_context(context)
        if not callable(expression):
            raise TypeError("Snapshot frames evaluate Python callables, not script text")
        await asyncio.sleep(self.page.latency)
        self._check_context(context)
        values = [a.value if isinstance(a, RemoteHandle) else a for a in args]
        value = expression(PageScope(self), *values)
        # The response leg: the context may be replaced before the result lands.
        await asyncio.sleep(self.page.latency)
        return EvaluationResult(value, is_reference=not isinstance(value, _PRIMITIVES))

    def observe_mutations(self, context: ExecutionContext, callback: Callable[[], None]) -> Unsubscribe | None:
        if "MutationObserver" not in self._window:
            return None
        if context is not self._context:
            return lambda: None
        self._mutation_observers.append(callback)
        observers = self._mutation_observers

        def unsubscribe() -> None:
            if callback in observers:
                observers.remove(callback)

        return unsubscribe

    def observe_animation_frames(self, context: ExecutionContext, callback: Callable[[], None]) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        timer: asyncio.TimerHandle | None = None

        def fire() -> None:
            nonlocal timer
            if context is not self._context:
                timer = None
                return
            callback()
            timer = loop.call_later(FRAME_INTERVAL, fire)

        timer = loop.call_later(FRAME_INTERVAL, fire)

        def unsubscribe() -> None:
            if timer is not None:
                timer.cancel()

        return unsubscribe

    # ── Page-side operations ──────────────────────────────────────────

    @property
    def document(self) -> etree._Element:
        return self._document

    @property
    def window(self) -> dict:
        return self._window

    @property
    def mutation_observer_count(self) -> int:
        return len(self._mutation_observers)

    def navigate(self, html: str = "") -> ExecutionContext:
        """Commit a new document: new context, new window, init scripts."""
        self._ensure_attached()
        self._mutation_observers = []
        self._source = html
        self._document = _parse_document(html)
        self._window = {"MutationObserver": True}
        self._context = self.tracker.context_created(self._frame_id)
        scope = PageScope(self)
        for script in self.page.init_scripts:
            script(scope)
        logger.debug("frame %s navigated generation=%d", self._frame_id, self._context.generation)
        return self._context

    def reload(self) -> ExecutionContext:
        return self.navigate(self._source)

    def set_content(self, html: str) -> None:
        """Replace the document in place (same context), as one mutation batch."""
        self._ensure_attached()
        self._source = html
        self._document = _parse_document(html)
        self._queue_mutations()

    def execute(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run ``fn(scope, *args)`` in the page without recording mutations."""
        self._ensure_attached()
        return fn(PageScope(self), *args)

    def mutate(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run ``fn(scope, *args)`` and deliver one mutation batch for it."""
        result = self.execute(fn, *args)
        self._queue_mutations()
        return result

    def _queue_mutations(self) -> None:
        if self._flush_scheduled or not self._mutation_observers:
            return
        self._flush_scheduled = True
        asyncio.get_running_loop().call_soon(self._flush_mutations)

    def _flush_mutations(self) -> None:
        self._flush_scheduled = False
        for callback in list(self._mutation_observers):
            callback()

    def _check_context(self, context: ExecutionContext) -> None:
        if self._detached:
            raise FrameDetachedError(f"Frame {self._frame_id} was detached")
        if context.disposed or context is not self._context:
            raise ContextDisposedError("Execution context was destroyed, most likely because of a navigation")

    def _ensure_attached(self) -> None:
        if self._detached:
            raise FrameDetachedError(f"Frame {self._frame_id} was detached")

    def _detach(self) -> None:
        for child in list(self.child_frames):
            child._detach()
        self._detached = True
        self._mutation_observers = []
        self._context = None
        self.tracker.frame_detached(self._frame_id)
        if self.parent is not None and self in self.parent.child_frames:
            self.parent.child_frames.remove(self)


class DomPage:
    """A tree of DomFrames sharing one ContextTracker.

    The tracker is passed in (or created) per page so independent sessions
    never share state.
    """

    def __init__(
        self,
        html: str = "",
        *,
        tracker: ContextTracker | None = None,
        latency: float = 0.0,
        viewport_width: float = VIEWPORT_WIDTH,
    ) -> None:
        self.page_id = uuid.uuid4().hex[:8]
        self.tracker = tracker or ContextTracker()
        self.latency = latency
        self.viewport_width = viewport_width
        self.init_scripts: list[Callable[[PageScope], Any]] = []
        self._frame_seq = itertools.count()
        self._closed = False
        self.main_frame = self._new_frame(None, "main", html)

    def _new_frame(self, parent: DomFrame | None, name: str, html: str) -> DomFrame:
        frame = DomFrame(self, parent, name=name)
        self.tracker.frame_attached(frame.frame_id)
        if parent is not None:
            parent.child_frames.append(frame)
        frame.navigate(html)
        return frame

    @property
    def frames(self) -> list[DomFrame]:
        """All attached frames, parents before children."""
        result: list[DomFrame] = []
        stack = [self.main_frame] if not self._closed else []
        while stack:
            frame = stack.pop(0)
            result.append(frame)
            stack.extend(frame.child_frames)
        return result

    @property
    def closed(self) -> bool:
        return self._closed

    def add_init_script(self, script: Callable[[PageScope], Any]) -> None:
        """Run ``script(scope)`` in every context created from now on."""
        self.init_scripts.append(script)

    def attach_frame(self, name: str, html: str = "", *, parent: DomFrame | None = None) -> DomFrame:
        return self._new_frame(parent or self.main_frame, name, html)

    def detach_frame(self, frame: DomFrame) -> None:
        if frame is self.main_frame:
            raise ValueError("The main frame can only go away with the page; use close()")
        frame._detach()

    def close(self) -> None:
        if self._closed:
            return
        self.main_frame._detach()
        self._closed = True
