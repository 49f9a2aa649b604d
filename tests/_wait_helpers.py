# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared helpers for wait tests.

Underscore prefix prevents pytest collection.
Plain functions, not fixtures: conftest.py is reserved for fixtures.
"""

from __future__ import annotations

import asyncio

from pagewait.dom import PageScope, create_element


async def settle(seconds: float = 0.01) -> None:
    """Give running wait tasks a chance to evaluate."""
    await asyncio.sleep(seconds)


def add_element(scope: PageScope, tag: str):
    """``document.body.appendChild(document.createElement(tag))``"""
    return create_element(scope.body, tag)


def text_of(handle) -> str:
    return handle.value.text_content()
