"""
End-to-end recording pipeline.
chunk -> transcribe each chunk -> reassemble -> clean up chunks ->
validate -> summarize, reported as success, degraded or failed.
"""

import logging
import threading
import time
from pathlib import Path

from audio_journal.core.error_codes import JobError, recovery_suggestion
from audio_journal.core.constants import (
    ErrorCode, PipelineOutcome, TranscriptionJobState,
    CHUNK_OVERLAP_SEC, EXPORT_TIMEOUT_SEC, POLL_INTERVAL_SEC, POLL_TIMEOUT_SEC,
)
from audio_journal.core.chunk_export import AudioChunker
from audio_journal.core.chunk_planner import limit_for_backend
from audio_journal.core.event_bus import EventBus
from audio_journal.core.job_tracker import TranscriptionJobTracker, PendingJobRegistry
from audio_journal.core.models import PipelineReport, ReassemblyResult
from audio_journal.core.orchestrator import SummarizationOrchestrator
from audio_journal.core.ports import AsyncTranscriptionBackend, SyncTranscriptionBackend
from audio_journal.core.quality import validate_transcript
from audio_journal.core.reassembly import build_transcript_chunk, reassemble

logger = logging.getLogger(__name__)


class RecordingPipeline:

    def __init__(self, chunker: AudioChunker,
                 backend: SyncTranscriptionBackend | AsyncTranscriptionBackend,
                 backend_kind: str,
                 orchestrator: SummarizationOrchestrator,
                 config=None, bus: EventBus | None = None,
                 pending: PendingJobRegistry | None = None):
        self.chunker = chunker
        self.backend = backend
        self.backend_kind = backend_kind
        self.orchestrator = orchestrator
        self.config = config
        self.bus = bus
        self.pending = pending
        self._lock = threading.Lock()
        self._active: dict[str, tuple[threading.Event, TranscriptionJobTracker | None]] = {}

    def _setting(self, name: str, default):
        return getattr(self.config, name) if self.config is not None else default

    # ── Cancellation ──────────────────────────────────────────────────

    def cancel(self, recording_id: str) -> bool:
        """Cancel a running pipeline; its current job wait wakes immediately."""
        with self._lock:
            entry = self._active.get(recording_id)
        if entry is None:
            return False
        event, tracker = entry
        event.set()
        if tracker is not None:
            tracker.cancel()
        logger.info("Cancellation requested for %s", recording_id)
        return True

    # ── Transcription ─────────────────────────────────────────────────

    def transcribe(self, recording: Path, recording_id: str, recording_name: str = "",
                   cancel_event: threading.Event | None = None,
                   deadline: float | None = None) -> ReassemblyResult:
        """
        Chunk the recording, transcribe every chunk in order and reassemble.
        Chunk files are removed afterwards unless keep_chunk_artifacts is set.
        """
        overlap = self._setting('chunk_overlap_sec', CHUNK_OVERLAP_SEC)
        limit = limit_for_backend(self.backend_kind, overlap)
        result = self.chunker.chunk_file(
            recording, limit, cancel_event=cancel_event,
            export_timeout=self._setting('export_timeout_sec', EXPORT_TIMEOUT_SEC),
            recording_id=recording_id,
        )

        try:
            transcript_chunks = []
            for chunk in result.chunks:
                if cancel_event is not None and cancel_event.is_set():
                    raise JobError(ErrorCode.CANCELLED, "Transcription was cancelled")
                text, segments = self._transcribe_chunk(chunk.chunk_ref, recording_id, recording_name,
                                                        deadline)
                logger.debug("Chunk %d of %s transcribed (%d segments)",
                             chunk.sequence_number, recording_id, len(segments))
                transcript_chunks.append(build_transcript_chunk(chunk, text, segments))
            return reassemble(transcript_chunks, overlap)
        finally:
            self._set_tracker(recording_id, None)
            if result.was_chunked and not self._setting('keep_chunk_artifacts', False):
                try:
                    self.chunker.cleanup_chunks(result)
                except JobError as e:
                    logger.warning("Chunk cleanup for %s left files behind: %s", recording_id, e.message)

    def _set_tracker(self, recording_id: str, tracker: TranscriptionJobTracker | None):
        with self._lock:
            if recording_id in self._active:
                event, _ = self._active[recording_id]
                self._active[recording_id] = (event, tracker)

    def _transcribe_chunk(self, audio: Path, recording_id: str, recording_name: str,
                          deadline: float | None):
        tracker = TranscriptionJobTracker(
            self.backend,
            poll_interval=self._setting('poll_interval_sec', POLL_INTERVAL_SEC),
            bus=self.bus,
        )
        self._set_tracker(recording_id, tracker)

        timeout = self._setting('poll_timeout_sec', POLL_TIMEOUT_SEC)
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise JobError(ErrorCode.PROCESSING_TIMEOUT, "Pipeline time limit reached")
            timeout = min(timeout, remaining)

        status = tracker.submit(audio)
        is_async = isinstance(self.backend, AsyncTranscriptionBackend)
        if is_async and self.pending is not None:
            self.pending.add(status.job_id, recording_id, recording_name)

        if not tracker.is_terminal:
            status = tracker.wait(timeout)

        # a timed-out job may still finish; keep it for a later check
        if is_async and self.pending is not None and status.state != TranscriptionJobState.TIMED_OUT:
            self.pending.remove(status.job_id)
        return tracker.fetch()

    # ── Full run ──────────────────────────────────────────────────────

    def process(self, recording: Path, recording_id: str, recording_name: str = "",
                cancel_event: threading.Event | None = None,
                timeout: float | None = None) -> PipelineReport:
        """Run a recording end to end. Never raises for pipeline failures; see the report."""
        cancel_event = cancel_event or threading.Event()
        deadline = time.monotonic() + timeout if timeout else None
        with self._lock:
            if recording_id in self._active:
                return self._failed(recording_id, JobError(
                    ErrorCode.OPERATION_CONFLICT, f"Recording '{recording_id}' is already being processed"))
            self._active[recording_id] = (cancel_event, None)

        try:
            return self._process(Path(recording), recording_id, recording_name, cancel_event, deadline)
        finally:
            with self._lock:
                self._active.pop(recording_id, None)

    def _process(self, recording: Path, recording_id: str, recording_name: str,
                 cancel_event: threading.Event, deadline: float | None) -> PipelineReport:
        started = time.monotonic()
        try:
            reassembly = self.transcribe(recording, recording_id, recording_name, cancel_event, deadline)
        except JobError as e:
            return self._failed(recording_id, e)

        transcript = reassembly.full_text
        fitness = validate_transcript(transcript, self.config)
        if not fitness.is_fit:
            if fitness.show_verbatim:
                logger.info("%s is short (%d words), showing transcript without a summary",
                            recording_id, fitness.word_count)
                return PipelineReport(recording_id, PipelineOutcome.DEGRADED,
                                      transcript=transcript, reason=fitness.reason)
            return self._failed(recording_id, JobError(ErrorCode.INSUFFICIENT_CONTENT, fitness.reason),
                                transcript)

        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return self._failed(recording_id, JobError(
                    ErrorCode.PROCESSING_TIMEOUT, "Pipeline time limit reached before summarization"), transcript)

        try:
            outcome = self.orchestrator.summarize(transcript, recording_id, recording_name, cancel_event,
                                                  timeout=remaining)
        except JobError as e:
            return self._failed(recording_id, e, transcript)

        degraded = outcome.fallback_used or not outcome.quality.acceptable
        reasons = []
        if outcome.failure is not None:
            reasons.append(f"{outcome.failure.engine_name} failed, offline analysis used")
        elif outcome.fallback_used:
            reasons.append("Selected engine unavailable, offline analysis used")
        if not outcome.quality.acceptable:
            reasons.append(f"Summary quality: {outcome.quality.tier}")

        logger.info("Processed %s in %.1fs: %s", recording_id, time.monotonic() - started,
                    "degraded" if degraded else "success")
        return PipelineReport(
            recording_id=recording_id,
            outcome=PipelineOutcome.DEGRADED if degraded else PipelineOutcome.SUCCESS,
            summary=outcome.summary,
            transcript=transcript,
            reason="; ".join(reasons),
            recovery_actions=[a.value for a in outcome.recovery_actions],
            quality=outcome.quality,
            fallback_used=outcome.fallback_used,
        )

    @staticmethod
    def _failed(recording_id: str, error: JobError, transcript: str | None = None) -> PipelineReport:
        if error.code == ErrorCode.CANCELLED:
            logger.info("Processing of %s cancelled", recording_id)
        else:
            logger.error("Processing of %s failed: %s", recording_id, error)
        return PipelineReport(
            recording_id=recording_id,
            outcome=PipelineOutcome.FAILED,
            transcript=transcript,
            reason=error.message,
            recovery_actions=[recovery_suggestion(error.code)],
        )
