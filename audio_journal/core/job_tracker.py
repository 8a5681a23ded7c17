"""
Transcription job tracking.

Drives one backend call to a terminal state:
    Submitted -> Polling -> Completed | Failed | TimedOut
with Cancelled reachable from Submitted or Polling. Synchronous backends
go straight from Submitted to Completed/Failed. Every transition is
reported to listeners and, when a bus is given, published as JobStatusChanged.
"""

import logging
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Callable

from audio_journal.core.constants import (
    ErrorCode, TranscriptionJobState as S, RemoteJobState,
    TERMINAL_JOB_STATES, POLL_INTERVAL_SEC, POLL_TIMEOUT_SEC,
    STORE_KEY_PENDING_JOBS,
)
from audio_journal.core.error_codes import JobError
from audio_journal.core.event_bus import EventBus, JobStatusChanged, RecordingRenamed
from audio_journal.core.models import TranscriptionJobStatus, TranscriptSegment, PendingJob
from audio_journal.core.ports import (
    AsyncTranscriptionBackend, SyncTranscriptionBackend, BlobStore,
)
from audio_journal.core.store import utc_now, load_json, save_json

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    S.SUBMITTED: {S.POLLING, S.COMPLETED, S.FAILED, S.CANCELLED},
    S.POLLING: {S.COMPLETED, S.FAILED, S.TIMED_OUT, S.CANCELLED},
    S.COMPLETED: set(),
    S.FAILED: set(),
    S.TIMED_OUT: set(),
    S.CANCELLED: set(),
}

_TERMINAL_ERRORS = {
    S.FAILED: ErrorCode.JOB_FAILED,
    S.TIMED_OUT: ErrorCode.JOB_TIMED_OUT,
    S.CANCELLED: ErrorCode.CANCELLED,
}


def can_transition(current: str, new: str) -> bool:
    return new in _ALLOWED_TRANSITIONS.get(current, set())


class TranscriptionJobTracker:
    """State machine over a single transcription backend call."""

    def __init__(self, backend: AsyncTranscriptionBackend | SyncTranscriptionBackend,
                 poll_interval: float = POLL_INTERVAL_SEC,
                 bus: EventBus | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.backend = backend
        self.poll_interval = poll_interval
        self.bus = bus
        self._clock = clock
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._status: TranscriptionJobStatus | None = None
        self._sync_result: tuple[str, list[TranscriptSegment]] | None = None
        self._listeners: list[Callable[[TranscriptionJobStatus, str | None], None]] = []
        self.last_poll_error: JobError | None = None

    @classmethod
    def resume(cls, backend: AsyncTranscriptionBackend, job_id: str, **kwargs) -> "TranscriptionJobTracker":
        """Re-attach to a job submitted earlier; polling resumes without resubmitting."""
        tracker = cls(backend, **kwargs)
        tracker._status = TranscriptionJobStatus(job_id=job_id, state=S.POLLING, updated_at=utc_now())
        return tracker

    # ── State ─────────────────────────────────────────────────────────

    @property
    def status(self) -> TranscriptionJobStatus | None:
        with self._lock:
            return replace(self._status) if self._status else None

    @property
    def state(self) -> str | None:
        with self._lock:
            return self._status.state if self._status else None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES

    def add_listener(self, listener: Callable[[TranscriptionJobStatus, str | None], None]):
        self._listeners.append(listener)

    def _transition(self, new_state: str, failure_reason: str | None = None,
                    result_locator: str | None = None) -> bool:
        """Apply a transition. Returns False if the job already reached a terminal state."""
        with self._lock:
            current = self._status.state
            if current in TERMINAL_JOB_STATES:
                return False
            if not can_transition(current, new_state):
                raise JobError(ErrorCode.PROCESSING_FAILED,
                               f"Illegal job transition {current} -> {new_state}")
            self._status = replace(
                self._status,
                state=new_state,
                failure_reason=failure_reason,
                result_locator=result_locator,
                updated_at=utc_now(),
            )
            snapshot = replace(self._status)

        logger.info("Job %s: %s -> %s", snapshot.job_id, current, new_state)
        self._notify(snapshot, current)
        return True

    def _notify(self, status: TranscriptionJobStatus, previous: str | None):
        for listener in list(self._listeners):
            listener(status, previous)
        if self.bus is not None:
            self.bus.publish(JobStatusChanged(status.job_id, previous, status))

    # ── Submission ────────────────────────────────────────────────────

    def submit(self, audio: Path) -> TranscriptionJobStatus:
        if self._status is not None:
            raise JobError(ErrorCode.JOB_SUBMIT_FAILED, "Tracker already holds a job")

        if isinstance(self.backend, SyncTranscriptionBackend):
            return self._run_sync(audio)

        try:
            job_id = self.backend.submit(audio)
        except JobError as e:
            raise JobError(ErrorCode.JOB_SUBMIT_FAILED, e.message, retryable=e.retryable)
        except Exception as e:
            raise JobError(ErrorCode.JOB_SUBMIT_FAILED, f"Submitting {Path(audio).name} failed: {e}")
        if not job_id:
            raise JobError(ErrorCode.JOB_SUBMIT_FAILED, "Backend returned an empty job id")

        with self._lock:
            self._status = TranscriptionJobStatus(job_id=job_id, state=S.SUBMITTED, updated_at=utc_now())
            snapshot = replace(self._status)
        logger.info("Submitted job %s for %s", job_id, Path(audio).name)
        self._notify(snapshot, None)
        return snapshot

    def _run_sync(self, audio: Path) -> TranscriptionJobStatus:
        with self._lock:
            self._status = TranscriptionJobStatus(job_id=f"sync-{uuid.uuid4()}",
                                                  state=S.SUBMITTED, updated_at=utc_now())
            snapshot = replace(self._status)
        self._notify(snapshot, None)

        if self._cancel_event.is_set():
            self._transition(S.CANCELLED)
            return self.status

        try:
            self._sync_result = self.backend.transcribe(audio)
        except JobError as e:
            self._transition(S.FAILED, failure_reason=e.message)
            return self.status
        except Exception as e:
            self._transition(S.FAILED, failure_reason=str(e))
            return self.status

        if not self._transition(S.COMPLETED, result_locator=str(audio)):
            self._sync_result = None
        return self.status

    # ── Polling ───────────────────────────────────────────────────────

    def poll_once(self) -> TranscriptionJobStatus:
        """
        Query the backend once and apply the answer.
        Transient poll failures leave the job in Polling.
        """
        if self._status is None:
            raise JobError(ErrorCode.JOB_POLL_FAILED, "No job has been submitted")
        if self.is_terminal:
            return self.status
        if self.state == S.SUBMITTED:
            self._transition(S.POLLING)

        job_id = self._status.job_id
        try:
            remote = self.backend.poll(job_id)
        except JobError as e:
            if e.code == ErrorCode.JOB_NOT_FOUND:
                self._transition(S.FAILED, failure_reason=e.message)
            else:
                self.last_poll_error = e
                logger.warning("Poll failed for job %s: %s", job_id, e.message)
            return self.status
        except Exception as e:
            self.last_poll_error = JobError(ErrorCode.JOB_POLL_FAILED, str(e))
            logger.warning("Poll failed for job %s: %s", job_id, e)
            return self.status

        self.last_poll_error = None
        if remote.state == RemoteJobState.COMPLETED:
            if not remote.result_locator:
                self._transition(S.FAILED, failure_reason="Completed job has no transcript location")
            else:
                self._transition(S.COMPLETED, result_locator=remote.result_locator)
        elif remote.state == RemoteJobState.FAILED:
            self._transition(S.FAILED, failure_reason=remote.failure_reason or "Unknown error")
        elif remote.state != RemoteJobState.IN_PROGRESS:
            self._transition(S.FAILED, failure_reason=f"Unknown job status '{remote.state}'")
        return self.status

    def wait(self, timeout: float = POLL_TIMEOUT_SEC) -> TranscriptionJobStatus:
        """
        Poll until a terminal state or until timeout seconds pass.
        Timing out leaves the remote job running; it can be resumed later.
        """
        deadline = self._clock() + timeout
        while True:
            status = self.poll_once()
            if status.state in TERMINAL_JOB_STATES:
                return status

            remaining = deadline - self._clock()
            if remaining <= 0:
                reason = f"No result after {timeout:.0f}s"
                if self.last_poll_error is not None:
                    reason += f" (last poll error: {self.last_poll_error.message})"
                self._transition(S.TIMED_OUT, failure_reason=reason)
                return self.status

            if self._cancel_event.wait(min(self.poll_interval, remaining)):
                self._transition(S.CANCELLED)
                return self.status

    def cancel(self):
        """Stop tracking. The wait loop wakes immediately and schedules no further poll."""
        self._cancel_event.set()
        if self._status is not None:
            self._transition(S.CANCELLED)

    # ── Results ───────────────────────────────────────────────────────

    def fetch(self) -> tuple[str, list[TranscriptSegment]]:
        status = self.status
        if status is None or status.state != S.COMPLETED:
            state = status.state if status else "not submitted"
            code = _TERMINAL_ERRORS.get(state, ErrorCode.JOB_FAILED)
            reason = status.failure_reason if status and status.failure_reason else state
            raise JobError(code, f"Job has no result: {reason}")

        if self._sync_result is not None:
            return self._sync_result

        try:
            return self.backend.fetch(status.result_locator)
        except JobError:
            raise
        except Exception as e:
            raise JobError(ErrorCode.INVALID_RESULT_FORMAT, f"Fetching transcript failed: {e}")

    def run(self, audio: Path, timeout: float = POLL_TIMEOUT_SEC) -> tuple[str, list[TranscriptSegment]]:
        """Submit, wait and fetch in one call. Raises JobError for any non-completed outcome."""
        self.submit(audio)
        if not self.is_terminal:
            self.wait(timeout)
        return self.fetch()


class PendingJobRegistry:
    """
    Persisted list of submitted asynchronous jobs.
    Lets a later session pick up results instead of resubmitting.
    """

    def __init__(self, store: BlobStore, backend: AsyncTranscriptionBackend,
                 bus: EventBus | None = None):
        self.store = store
        self.backend = backend
        self._lock = threading.Lock()
        self._unsubscribe = None
        if bus is not None:
            self._unsubscribe = bus.subscribe(RecordingRenamed, self._on_recording_renamed)

    def _load(self) -> list[PendingJob]:
        jobs = []
        for item in load_json(self.store, STORE_KEY_PENDING_JOBS, []):
            try:
                jobs.append(PendingJob(**item))
            except TypeError as e:
                logger.warning("Skipping unreadable pending job: %s", e)
        return jobs

    def _save(self, jobs: list[PendingJob]):
        save_json(self.store, STORE_KEY_PENDING_JOBS, [j.to_dict() for j in jobs])

    def pending(self) -> list[PendingJob]:
        with self._lock:
            return self._load()

    def add(self, job_id: str, recording_ref: str, recording_name: str) -> PendingJob:
        job = PendingJob(job_id, str(recording_ref), recording_name, utc_now())
        with self._lock:
            jobs = [j for j in self._load() if j.job_id != job_id]
            jobs.append(job)
            self._save(jobs)
        return job

    def remove(self, job_id: str):
        with self._lock:
            self._save([j for j in self._load() if j.job_id != job_id])

    def retarget(self, old_ref: str, new_ref: str, new_name: str) -> int:
        """Point pending jobs for a renamed recording at its new identity."""
        updated = 0
        with self._lock:
            jobs = self._load()
            for job in jobs:
                if job.recording_ref == str(old_ref):
                    job.recording_ref = str(new_ref)
                    job.recording_name = new_name
                    updated += 1
            if updated:
                self._save(jobs)
        if updated:
            logger.info("Retargeted %d pending job(s) from %s to %s", updated, old_ref, new_ref)
        return updated

    def _on_recording_renamed(self, event: RecordingRenamed):
        self.retarget(event.old_ref, event.new_ref, event.new_name)

    def check_completed(self) -> list[tuple[PendingJob, str, list[TranscriptSegment]]]:
        """
        Re-query every pending job once.
        Returns finished transcripts; finished and failed jobs leave the list.
        """
        finished = []
        for job in self.pending():
            tracker = TranscriptionJobTracker.resume(self.backend, job.job_id)
            status = tracker.poll_once()
            if status.state == S.COMPLETED:
                try:
                    text, segments = tracker.fetch()
                except JobError as e:
                    logger.warning("Job %s completed but transcript fetch failed: %s", job.job_id, e)
                    continue
                finished.append((job, text, segments))
                self.remove(job.job_id)
            elif status.state == S.FAILED:
                logger.warning("Pending job %s failed: %s", job.job_id, status.failure_reason)
                self.remove(job.job_id)
        return finished

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
