"""
Structured logging setup.

All components log through structlog with snake_case event names and keyword
context, e.g. ``logger.warning("execution_attempt_failed", attempt=2)``.
configure_logging() installs the processor chain once per process; the
EventBuffer processor keeps the most recent events in memory so callers can
inspect what the pipeline did without a log backend.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any

import structlog

from adaptive_agent.core.domain.buffers import RingBuffer

DEFAULT_EVENT_CAPACITY = 10_000


class EventBuffer:
    """
    structlog processor that captures a copy of every event it sees.

    Must run after ``add_log_level`` so the level is present on the event.
    """

    def __init__(self, capacity: int = DEFAULT_EVENT_CAPACITY):
        self._events: RingBuffer[dict[str, Any]] = RingBuffer(capacity)

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        entry = dict(event_dict)
        entry.setdefault("level", method_name)
        entry.setdefault("captured_at", datetime.now().isoformat())
        self._events.append(entry)
        return event_dict

    def get_recent_events(
        self,
        limit: int = 100,
        level: str | None = None,
        component: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return captured events, newest last, optionally filtered."""
        events = self._events.snapshot()
        if level:
            events = [e for e in events if e.get("level") == level]
        if component:
            events = [e for e in events if e.get("component") == component]
        return events[-limit:] if limit > 0 else []

    def counts_by_level(self) -> dict[str, int]:
        return dict(Counter(e.get("level", "unknown") for e in self._events))

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    event_buffer: EventBuffer | None = None,
) -> EventBuffer:
    """
    Configure structlog for console or JSON output.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_output: Render JSON lines instead of the dev console format
        event_buffer: Buffer to capture events into (created if omitted)

    Returns:
        The EventBuffer wired into the processor chain.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(level=numeric_level, format="%(message)s")
    buffer = event_buffer if event_buffer is not None else EventBuffer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            buffer,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
    return buffer
