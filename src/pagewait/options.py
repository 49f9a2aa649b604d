# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Wait option parsing and validation.

All validation happens here, synchronously, before any polling begins.
Defaults come from the environment at import time.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .errors import InvalidOptionError

DEFAULT_TIMEOUT_MS = float(os.environ.get("PAGEWAIT_DEFAULT_TIMEOUT_MS", "30000"))
FALLBACK_POLL_MS = float(os.environ.get("PAGEWAIT_FALLBACK_POLL_MS", "100"))

# Retired option names mapped to the option that replaced them.
_RETIRED_OPTIONS = {"visibility": "wait_for"}


class WaitKind(StrEnum):
    FUNCTION = "function"
    SELECTOR = "selector"


class WaitCondition(StrEnum):
    """Element state a selector wait resolves on."""

    ATTACHED = "attached"
    VISIBLE = "visible"
    HIDDEN = "hidden"
    DETACHED = "detached"


@dataclass(frozen=True, slots=True)
class WaitOptions:
    """Validated options for one wait.

    ``timeout_ms == 0`` disables the deadline. ``polling`` is either
    ``"raf"``, ``"mutation"`` or a positive interval in milliseconds.
    """

    timeout_ms: float
    polling: str | float
    wait_for: WaitCondition = WaitCondition.ATTACHED

    @property
    def has_deadline(self) -> bool:
        return self.timeout_ms > 0


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def validate_polling(value: Any) -> str | float:
    if _is_number(value):
        if value <= 0:
            raise InvalidOptionError("Cannot poll with non-positive interval")
        return float(value)
    if value in ("raf", "mutation"):
        return value
    raise InvalidOptionError(f"Unknown polling option: {value}")


def validate_timeout(value: Any) -> float:
    if not _is_number(value) or value < 0:
        raise InvalidOptionError(f"timeout must be a non-negative number, got {value!r}")
    return float(value)


def validate_condition(value: Any) -> WaitCondition:
    if isinstance(value, str):
        try:
            return WaitCondition(value)
        except ValueError:
            pass
    raise InvalidOptionError(f'Unsupported waitFor option "{value}"')


def parse_options(
    options: Mapping[str, Any] | None,
    *,
    kind: WaitKind,
    default_timeout_ms: float = DEFAULT_TIMEOUT_MS,
) -> WaitOptions:
    """Validate a raw option mapping into WaitOptions.

    Raises:
        InvalidOptionError: unknown or retired key, or a bad value.
    """
    raw = dict(options or {})
    for key in raw:
        if key in _RETIRED_OPTIONS:
            raise InvalidOptionError(
                f"options.{key} is not supported, did you mean options.{_RETIRED_OPTIONS[key]}?"
            )
        if key not in ("timeout", "polling", "wait_for"):
            raise InvalidOptionError(f"Unknown option: {key}")
        if key == "wait_for" and kind is WaitKind.FUNCTION:
            raise InvalidOptionError("options.wait_for only applies to selector waits")

    timeout_ms = validate_timeout(raw.get("timeout", default_timeout_ms))
    default_polling = "mutation" if kind is WaitKind.SELECTOR else "raf"
    polling = validate_polling(raw.get("polling", default_polling))
    if polling == "mutation" and kind is WaitKind.FUNCTION:
        # Mutation polling is reserved for selector waits.
        raise InvalidOptionError("Unknown polling option: mutation")
    condition = validate_condition(raw.get("wait_for", WaitCondition.ATTACHED.value))
    return WaitOptions(timeout_ms=timeout_ms, polling=polling, wait_for=condition)
