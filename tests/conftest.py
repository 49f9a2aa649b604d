# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pagewait  # noqa: F401
except ImportError:
    raise ImportError("pagewait is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from pagewait.dom import DomPage
from pagewait.waiter import Waiter


@pytest.fixture
def page() -> DomPage:
    """Fresh snapshot page with an empty document in the main frame."""
    page = DomPage()
    yield page
    page.close()


@pytest.fixture
def waiter() -> Waiter:
    return Waiter(default_timeout_ms=5_000)


@pytest.fixture(autouse=True)
def _block_real_browser(monkeypatch):
    """Safety net: the unit suite never launches a browser.

    Tests for the Playwright adapter build their pages from mocks.
    """

    async def _no_launch(*args, **kwargs):
        raise RuntimeError("Test tried to launch a real browser. Build the page from mocks instead.")

    monkeypatch.setattr("playwright.async_api.BrowserType.launch", _no_launch)

