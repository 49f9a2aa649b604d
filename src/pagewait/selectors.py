# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Selector parsing and resolution against lxml DOM snapshots.

Grammar::

    selector := step (">>" step)*
    step     := [engine "="] body
    engine   := "css" | "xpath" | "text"

Without an explicit engine, a body starting with ``//`` or ``..`` is XPath,
a quoted body is text, anything else is CSS. ``>>`` inside quotes does not
split.

Resolution is stateless: every call walks the steps from the root again,
each step scoped to the first match (document order) of the previous one.
Shadow roots are ``<template shadowrootmode>`` children of their host; the
css and text engines pierce them, xpath stays in the light tree of its scope.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

from cssselect import HTMLTranslator, SelectorError
from lxml import etree

from .errors import ParseError

_ENGINE_PREFIX_RE = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_-]*)\s*=")
_WS_RE = re.compile(r"\s+")
_NON_RENDERED_TAGS = {"head", "script", "style", "template", "noscript"}

_translator = HTMLTranslator()


class EngineKind(StrEnum):
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class SelectorStep:
    """One ``engine=pattern`` segment with its compiled queries."""

    engine: EngineKind
    pattern: str
    # (document-scope query, element-scope query); None for text steps
    compiled: tuple[etree.XPath, etree.XPath] | None = field(default=None, compare=False, repr=False)

    def __str__(self) -> str:
        return f"{self.engine}={self.pattern}"


@dataclass(frozen=True, slots=True)
class Selector:
    steps: tuple[SelectorStep, ...]
    source: str = field(default="", compare=False)

    def __str__(self) -> str:
        return " >> ".join(str(step) for step in self.steps)

    @property
    def display(self) -> str:
        """The text the caller wrote, for error messages."""
        return self.source or str(self)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def split_steps(text: str) -> list[str]:
    """Split on ``>>`` outside quoted strings."""
    parts: list[str] = []
    quote: str | None = None
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif text.startswith(">>", i):
            parts.append(text[start:i])
            i += 2
            start = i
            continue
        i += 1
    if quote:
        raise ParseError(f"Unterminated string in selector: {text}", selector=text)
    parts.append(text[start:])
    return parts


def _compile_css(pattern: str, source: str) -> tuple[etree.XPath, etree.XPath]:
    try:
        return (
            etree.XPath(_translator.css_to_xpath(pattern, prefix="descendant-or-self::")),
            etree.XPath(_translator.css_to_xpath(pattern, prefix="descendant::")),
        )
    except (SelectorError, etree.XPathError, ValueError) as exc:
        raise ParseError(f'Malformed css selector "{pattern}": {exc}', selector=source) from exc


def _compile_xpath(pattern: str, source: str) -> tuple[etree.XPath, etree.XPath]:
    scoped = "." + pattern if pattern.startswith("/") else pattern
    try:
        return etree.XPath(pattern), etree.XPath(scoped)
    except (etree.XPathError, ValueError) as exc:
        raise ParseError(f'Malformed xpath selector "{pattern}": {exc}', selector=source) from exc


def _parse_step(part: str, source: str) -> SelectorStep:
    part = part.strip()
    m = _ENGINE_PREFIX_RE.match(part)
    if m:
        name = m.group(1).lower()
        try:
            engine = EngineKind(name)
        except ValueError:
            raise ParseError(f'Unknown selector engine "{name}"', selector=source) from None
        body = part[m.end() :].strip()
    elif part.startswith(("//", "..")):
        engine, body = EngineKind.XPATH, part
    elif part.startswith(("'", '"')):
        engine, body = EngineKind.TEXT, part
    else:
        engine, body = EngineKind.CSS, part

    if not body:
        raise ParseError(f"Empty selector step in: {source}", selector=source)

    if engine is EngineKind.CSS:
        return SelectorStep(engine, body, _compile_css(body, source))
    if engine is EngineKind.XPATH:
        return SelectorStep(engine, body, _compile_xpath(body, source))
    if body[0] in ("'", '"') and (len(body) < 2 or body[-1] != body[0]):
        raise ParseError(f"Unterminated text selector: {body}", selector=source)
    return SelectorStep(engine, body)


def parse(text: str) -> Selector:
    """Parse selector text.

    Raises:
        ParseError: empty input, empty step, unknown engine or bad syntax.
    """
    if not isinstance(text, str) or not text.strip():
        raise ParseError("Selector must be a non-empty string", selector=str(text))
    steps = tuple(_parse_step(part, text) for part in split_steps(text))
    return Selector(steps=steps, source=text)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def is_shadow_root(el: etree._Element) -> bool:
    return el.tag == "template" and el.get("shadowrootmode") is not None


def tree_root_of(el: etree._Element) -> etree._Element | None:
    """Nearest enclosing shadow root, or None for the light document."""
    for ancestor in el.iterancestors():
        if is_shadow_root(ancestor):
            return ancestor
    return None


def _scope_tree(scope: etree._Element) -> etree._Element | None:
    return scope if is_shadow_root(scope) else tree_root_of(scope)


def _is_element(node: object) -> bool:
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


def _run_query(step: SelectorStep, scope: etree._Element) -> list[etree._Element]:
    doc_query, scoped_query = step.compiled
    query = doc_query if scope.getparent() is None else scoped_query
    tree = _scope_tree(scope)
    return [m for m in query(scope) if _is_element(m) and tree_root_of(m) is tree]


def _own_text(el: etree._Element) -> str:
    chunks = [el.text or ""]
    chunks.extend(child.tail or "" for child in el)
    return _WS_RE.sub(" ", "".join(chunks)).strip()


def _text_matcher(pattern: str):
    if pattern[0] in ("'", '"'):
        expected = _WS_RE.sub(" ", pattern[1:-1]).strip()
        return lambda text: text == expected
    needle = pattern.lower()
    return lambda text: needle in text.lower()


def _document_order(scope: etree._Element, matches: list[etree._Element]) -> list[etree._Element]:
    order = {el: i for i, el in enumerate(scope.getroottree().getroot().iter())}
    unique = list(dict.fromkeys(matches))
    return sorted(unique, key=lambda el: order.get(el, -1))


def query_all(step: SelectorStep, scope: etree._Element) -> list[etree._Element]:
    """All matches of one step beneath ``scope``, in document order."""
    if step.engine is EngineKind.XPATH:
        return _run_query(step, scope)

    if step.engine is EngineKind.TEXT:
        matches = _text_matcher(step.pattern)
        found = []
        for el in scope.iterdescendants():
            if not isinstance(el.tag, str) or el.tag in _NON_RENDERED_TAGS:
                continue
            if any(a.tag in _NON_RENDERED_TAGS and not is_shadow_root(a) for a in el.iterancestors()):
                continue
            if matches(_own_text(el)):
                found.append(el)
        return found

    found = _run_query(step, scope)
    shadow_roots = [t for t in scope.iter("template") if t is not scope and is_shadow_root(t)]
    if not shadow_roots:
        return found
    for shadow in shadow_roots:
        found.extend(_run_query(step, shadow))
    return _document_order(scope, found)


def resolve_all(selector: Selector, root: etree._Element) -> list[etree._Element]:
    """Every match of the terminal step under the first match of each prior step."""
    scope = root
    for step in selector.steps[:-1]:
        matches = query_all(step, scope)
        if not matches:
            return []
        scope = matches[0]
    return query_all(selector.steps[-1], scope)


def resolve(selector: Selector, root: etree._Element) -> etree._Element | None:
    """First match in document order, or None."""
    scope = root
    for step in selector.steps:
        matches = query_all(step, scope)
        if not matches:
            return None
        scope = matches[0]
    return scope
