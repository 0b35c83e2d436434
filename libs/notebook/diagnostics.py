"""Observable sink for best-effort failures.

Exports and chunk writes are side effects that must never fail the query
that produced them. Their failures are still facts an operator (or a test)
needs to see, so instead of only logging them they are reported here, where
they are logged, kept in a bounded history and pushed to subscribers.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticEvent:
    """A single reported failure."""

    source: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


DiagnosticSubscriber = Callable[[DiagnosticEvent], None]


class DiagnosticsChannel:
    """
    Bounded history of diagnostic events with subscriber callbacks.

    Attributes:
        max_events: Maximum number of events retained
    """

    def __init__(self, max_events: int = 1000) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self._events: deque[DiagnosticEvent] = deque(maxlen=max_events)
        self._subscribers: list[DiagnosticSubscriber] = []
        self._lock = Lock()

    def report(self, source: str, message: str, /, **context: Any) -> DiagnosticEvent:
        """Record a failure and notify subscribers."""
        event = DiagnosticEvent(source=source, message=message, context=dict(context))
        logger.warning(
            "diagnostic_reported",
            extra={"context": {"source": source, "diagnostic": message, **context}},
        )
        with self._lock:
            self._events.append(event)
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("diagnostic_subscriber_failed", extra={"source": source})
        return event

    def subscribe(self, callback: DiagnosticSubscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def events(self) -> list[DiagnosticEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
