"""
Typed publish/subscribe event bus.
Components publish change events; any interested consumer subscribes by event type.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineChanged:
    previous: Optional[str]
    current: str


@dataclass(frozen=True)
class SummaryUpdated:
    recording_id: str
    summary: Any                     # SummaryResult


@dataclass(frozen=True)
class JobStatusChanged:
    job_id: str
    previous: Optional[str]
    status: Any                      # TranscriptionJobStatus


@dataclass(frozen=True)
class RecordingRenamed:
    old_ref: str
    new_ref: str
    new_name: str


class EventBus:
    """Thread-safe fan-out of events to handlers registered per event type."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: dict[type, list[Callable]] = {}

    def subscribe(self, event_type: type, handler: Callable) -> Callable[[], None]:
        """Register handler for event_type. Returns a function that unsubscribes it."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event) -> int:
        """Deliver event to every subscriber of its type. Returns the number of handlers called."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("Event handler %r failed for %s: %s",
                             handler, type(event).__name__, e, exc_info=True)
        return len(handlers)

    def subscriber_count(self, event_type: type) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, []))
