# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge for pagewait.

Human-readable ConsoleRenderer by default, JSONRenderer for log shippers.
Wait tasks bind their identity through contextvars so every record emitted
while a task drives its loop carries ``wait_task`` and ``frame_id``.

Leaf module: no pagewait imports. Safe to call early in startup.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

DEFAULT_LEVEL = os.environ.get("PAGEWAIT_LOG_LEVEL", "INFO")
JSON_OUTPUT = os.environ.get("PAGEWAIT_LOG_JSON", "").strip().lower() in ("1", "true", "yes")


def configure(*, json_output: bool = JSON_OUTPUT, level: str = DEFAULT_LEVEL) -> None:
    """Route stdlib logging through structlog processors.

    Args:
        json_output: True for JSON lines, False for console output.
        level: Root logger level name; unknown names fall back to INFO.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


@contextmanager
def bound_task(task_id: str, frame_id: str) -> Iterator[None]:
    """Bind wait-task identity to every log record emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(wait_task=task_id, frame_id=frame_id)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
