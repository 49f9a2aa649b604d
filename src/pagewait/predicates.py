# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Wait predicates and the wait-condition compiler.

A predicate is what a wait task evaluates on every tick. Function
predicates resolve on any truthy value; selector predicates resolve when
the latest selector match satisfies a WaitCondition, and may resolve with
``None`` (hidden or detached with nothing matched), so they signal
"not yet" with the PENDING sentinel instead of falsiness.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from lxml import etree

from .options import WaitCondition, validate_condition
from .selectors import Selector, parse, resolve


class _Pending:
    __slots__ = ()

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()


@dataclass(frozen=True, slots=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


class DomScope(Protocol):
    """What a snapshot frame hands to predicates it evaluates."""

    document: etree._Element
    window: dict

    def bounding_box(self, el: etree._Element) -> BoundingBox | None: ...

    def computed_style(self, el: etree._Element) -> dict[str, str]: ...


def is_visible(box: BoundingBox | None, style: dict[str, str]) -> bool:
    """Non-empty box, not visibility:hidden, not display:none."""
    if box is None or box.area <= 0:
        return False
    return style.get("visibility") != "hidden" and style.get("display") != "none"


def settle(condition: WaitCondition, element: Any | None, visible: bool) -> Any:
    """Map the current match to a resolution value or PENDING."""
    if condition is WaitCondition.ATTACHED:
        return element if element is not None else PENDING
    if condition is WaitCondition.VISIBLE:
        return element if element is not None and visible else PENDING
    if condition is WaitCondition.HIDDEN:
        if element is None:
            return None
        return PENDING if visible else element
    return None if element is None else PENDING


@dataclass(frozen=True, slots=True)
class FunctionPredicate:
    """Arbitrary expression: string script, or callable taking ``(scope, *args)``."""

    expression: str | Callable[..., Any]
    args: tuple = field(default=())

    @property
    def title(self) -> str:
        return "waiting for function"

    def is_pending(self, value: Any) -> bool:
        # Objects are truthy as in page script; lxml elements without children are not.
        if isinstance(value, (bool, int, float, str, type(None))):
            return not value
        return False


@dataclass(frozen=True, slots=True)
class SelectorPredicate:
    selector: Selector
    condition: WaitCondition = WaitCondition.ATTACHED

    @property
    def expression(self) -> SelectorPredicate:
        return self

    @property
    def args(self) -> tuple:
        return ()

    @property
    def title(self) -> str:
        prefix = "" if self.condition is WaitCondition.ATTACHED else f"[{self.condition}] "
        return f'waiting for selector "{prefix}{self.selector.display}"'

    def is_pending(self, value: Any) -> bool:
        return value is PENDING

    def __call__(self, scope: DomScope) -> Any:
        element = resolve(self.selector, scope.document)
        visible = False
        if element is not None and self.condition is not WaitCondition.ATTACHED:
            visible = is_visible(scope.bounding_box(element), scope.computed_style(element))
        return settle(self.condition, element, visible)


Predicate = FunctionPredicate | SelectorPredicate


def compile_condition(selector: str | Selector, condition: Any = WaitCondition.ATTACHED) -> SelectorPredicate:
    """Compile a selector plus wait condition into a predicate.

    Raises:
        ParseError: malformed selector.
        InvalidOptionError: unrecognized condition.
    """
    parsed = selector if isinstance(selector, Selector) else parse(selector)
    return SelectorPredicate(parsed, validate_condition(condition))


def function_predicate(expression: str | Callable[..., Any], args: tuple = ()) -> FunctionPredicate:
    if isinstance(expression, str):
        if not expression.strip():
            raise ValueError("Predicate expression must not be empty")
    elif not callable(expression):
        raise TypeError(f"Predicate must be a script string or a callable, got {type(expression).__name__}")
    return FunctionPredicate(expression, tuple(args))
