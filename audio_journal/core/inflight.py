"""
Per-recording in-flight operation guard.
At most one operation of a given kind may run for one recording at a time.
"""

import logging
import threading
from contextlib import contextmanager

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import ErrorCode

logger = logging.getLogger(__name__)


class InFlightGuard:
    """Lock-protected set of recording ids with an active operation."""

    def __init__(self, kind: str):
        self.kind = kind
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def acquire(self, recording_id: str):
        with self._lock:
            if recording_id in self._active:
                raise JobError(ErrorCode.OPERATION_CONFLICT,
                               f"A {self.kind} operation is already running for '{recording_id}'")
            self._active.add(recording_id)
        logger.debug("%s started for %s", self.kind, recording_id)

    def release(self, recording_id: str):
        with self._lock:
            self._active.discard(recording_id)

    def is_active(self, recording_id: str) -> bool:
        with self._lock:
            return recording_id in self._active

    def active(self) -> set[str]:
        with self._lock:
            return set(self._active)

    @contextmanager
    def claim(self, recording_id: str):
        self.acquire(recording_id)
        try:
            yield
        finally:
            self.release(recording_id)
