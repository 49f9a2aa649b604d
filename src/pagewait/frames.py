# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Frame capabilities the wait engine consumes.

Transports (the lxml snapshot page, the Playwright adapter) implement this
protocol; the engine never talks to a browser any other way.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .contexts import ContextTracker, ExecutionContext

Unsubscribe = Callable[[], None]


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Outcome of one remote round trip.

    ``is_reference`` marks values that must be handed back as a RemoteHandle
    (DOM nodes, objects) rather than copied out as plain values.
    """

    value: Any
    is_reference: bool = False


@runtime_checkable
class Frame(Protocol):
    @property
    def frame_id(self) -> str: ...

    @property
    def tracker(self) -> ContextTracker: ...

    @property
    def is_detached(self) -> bool: ...

    def current_execution_context(self) -> ExecutionContext | None: ...

    async def evaluate(self, context: ExecutionContext, expression: Any, args: Sequence[Any] = ()) -> EvaluationResult:
        """Run ``expression`` in ``context``.

        Raises ContextDisposedError (or a transport error) when the context
        went away, any other exception when the script itself threw.
        """
        ...

    def observe_mutations(self, context: ExecutionContext, callback: Callable[[], None]) -> Unsubscribe | None:
        """Call ``callback`` once per batch of DOM mutations.

        Returns None when the page has no mutation primitive.
        """
        ...

    def observe_animation_frames(self, context: ExecutionContext, callback: Callable[[], None]) -> Unsubscribe: ...
