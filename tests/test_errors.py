# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the pagewait exception hierarchy."""

from __future__ import annotations

import pytest

from pagewait.errors import (
    ContextDisposedError,
    EvaluationError,
    FrameDetachedError,
    InvalidOptionError,
    NavigationRace,
    PageWaitError,
    ParseError,
    WaitTimeoutError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls",
        [ParseError, InvalidOptionError, WaitTimeoutError, FrameDetachedError, EvaluationError, ContextDisposedError],
    )
    def test_public_errors_share_base(self, cls):
        assert issubclass(cls, PageWaitError)

    def test_timeout_is_builtin_timeout(self):
        with pytest.raises(TimeoutError):
            raise WaitTimeoutError("waiting for function failed: timeout 5ms exceeded", timeout_ms=5)

    def test_navigation_race_is_internal(self):
        assert not issubclass(NavigationRace, PageWaitError)
        assert "generation 3" in str(NavigationRace(3))


class TestPayloads:
    def test_parse_error_keeps_selector(self):
        err = ParseError("Unexpected token", selector="div >>")
        assert err.selector == "div >>"
        assert str(err) == "Unexpected token"

    def test_evaluation_error_keeps_original_message(self):
        err = EvaluationError("Oh my")
        assert err.original_message == "Oh my"
        assert str(err) == "Evaluation failed: Oh my"

    def test_timeout_report_defaults_to_empty(self):
        err = WaitTimeoutError("x", timeout_ms=10)
        assert err.timeout_ms == 10
        assert err.report == {}
