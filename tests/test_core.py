#!/usr/bin/env python3
"""
Unit tests for AudioJournal core modules.
Tests cover: config, errors, chunk planning, chunk export, job tracking,
reassembly, storage, event bus, transcript parsing and HTTP backoff.
"""

import sys
import json
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import requests

from audio_journal.core.constants import (
    ErrorCode, RETRYABLE_ERRORS, ChunkingStrategy, TranscriptionBackendKind,
    TranscriptionJobState as S, RemoteJobState, OPENAI_MAX_BYTES, ON_DEVICE_MAX_SEC,
    STORE_KEY_SUMMARIES,
)
from audio_journal.core.config import AppConfig
from audio_journal.core.error_codes import JobError, is_retryable, recovery_suggestion
from audio_journal.core.security_utils import sanitize_name, run_subprocess_cancellable
from audio_journal.core.models import (
    AudioInfo, AudioChunk, ChunkingLimit, RemoteJobStatus, TranscriptChunk,
    TranscriptSegment, SummaryResult, TaskItem,
)
from audio_journal.core.ports import (
    ChunkExporter, AsyncTranscriptionBackend, SyncTranscriptionBackend,
)
from audio_journal.core.chunk_planner import (
    limit_for_backend, needs_chunking, plan_chunks, plan_by_duration, plan_word_batches,
)
from audio_journal.core.chunk_export import AudioChunker, FfmpegChunkExporter
from audio_journal.core.inflight import InFlightGuard
from audio_journal.core.job_tracker import (
    TranscriptionJobTracker, PendingJobRegistry, can_transition,
)
from audio_journal.core.reassembly import (
    build_transcript_chunk, dedupe_segments, reassemble,
)
from audio_journal.core.event_bus import EventBus, JobStatusChanged, RecordingRenamed
from audio_journal.core.store import SqliteBlobStore, SummaryStore, load_json
from audio_journal.core.backends import parse_whisper_json, parse_transcript_json
from audio_journal.core.http_utils import request_with_backoff


# ── Fakes ─────────────────────────────────────────────────────────────

class FakeExporter(ChunkExporter):
    """Writes a small placeholder file per chunk; can set a cancel event after N exports."""

    def __init__(self, cancel_event=None, cancel_after=None):
        self.cancel_event = cancel_event
        self.cancel_after = cancel_after
        self.written = []

    def export(self, source, start_time, end_time, destination, timeout=None, cancel_event=None):
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"\x00" * 16)
        self.written.append(destination)
        if self.cancel_event is not None and len(self.written) == self.cancel_after:
            self.cancel_event.set()
        return destination


class BlockingExporter(FakeExporter):
    """Second export blocks like a running ffmpeg process until cancelled."""

    def export(self, source, start_time, end_time, destination, timeout=None, cancel_event=None):
        if not self.written:
            return super().export(source, start_time, end_time, destination, timeout, cancel_event)
        destination.write_bytes(b"partial")
        self.partial = destination
        if cancel_event is None or not cancel_event.wait(5):
            raise AssertionError("export did not receive the cancel event")
        raise JobError(ErrorCode.CANCELLED, f"export of {destination.name} stopped")


def fixed_inspector(duration, size=1_000_000):
    return lambda path: AudioInfo(Path(path), duration, size)


class ScriptedBackend(AsyncTranscriptionBackend):
    """Answers polls from a script; the last answer repeats."""

    def __init__(self, answers, job_id="j1", transcript=("hello from the job", [])):
        self.answers = list(answers)
        self.job_id = job_id
        self.transcript = transcript
        self.polls = 0
        self.fetched = None

    def submit(self, audio):
        return self.job_id

    def poll(self, job_id):
        self.polls += 1
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def fetch(self, result_locator):
        self.fetched = result_locator
        return self.transcript


class FakeSyncBackend(SyncTranscriptionBackend):

    def __init__(self, result=None, error=None):
        self.result = result or ("synchronous text", [])
        self.error = error

    def transcribe(self, audio):
        if self.error is not None:
            raise self.error
        return self.result


class StepClock:
    """Monotonic clock that advances a fixed step on every read."""

    def __init__(self, step):
        self.step = step
        self.now = 0.0

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def seg(text, start, end, speaker="Speaker"):
    return TranscriptSegment(speaker, text, start, end)


# ── Tests ─────────────────────────────────────────────────────────────

class TestConfig(unittest.TestCase):
    """Test JSON config loading and clamping."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "config.json"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults_without_file(self):
        config = AppConfig(self.path)
        self.assertEqual(config.chunk_overlap_sec, 2.0)
        self.assertFalse(config.keep_chunk_artifacts)

    def test_out_of_range_values_clamped(self):
        self.path.write_text(json.dumps({
            "chunk_overlap_sec": 100,
            "poll_interval_sec": "not a number",
            "whisper_url": "http://localhost:9000/",
        }))
        config = AppConfig(self.path)
        self.assertEqual(config.chunk_overlap_sec, 30.0)
        self.assertEqual(config.poll_interval_sec, 10)
        self.assertEqual(config.get("whisper_url"), "http://localhost:9000")

    def test_set_persists(self):
        config = AppConfig(self.path)
        config.set("shorten_word_budget", 5)
        self.assertEqual(config.shorten_word_budget, 100)
        self.assertEqual(AppConfig(self.path).shorten_word_budget, 100)

    def test_as_dict_masks_key(self):
        config = AppConfig(self.path)
        config.set("openai_api_key", "sk-secret")
        self.assertEqual(config.as_dict()["openai_api_key"], "***")


class TestErrorCodes(unittest.TestCase):
    """Test error classification."""

    def test_retryable_errors(self):
        self.assertTrue(is_retryable(ErrorCode.NETWORK_TRANSIENT))
        self.assertTrue(is_retryable(ErrorCode.PROCESSING_TIMEOUT))
        self.assertIn(ErrorCode.QUOTA_EXCEEDED, RETRYABLE_ERRORS)

    def test_non_retryable_errors(self):
        self.assertFalse(is_retryable(ErrorCode.INSUFFICIENT_CONTENT))
        self.assertFalse(is_retryable(ErrorCode.REASSEMBLY_FAILED))

    def test_job_error_auto_retryable(self):
        self.assertTrue(JobError(ErrorCode.ENGINE_UNAVAILABLE, "down").retryable)
        self.assertFalse(JobError(ErrorCode.CANCELLED, "stop").retryable)
        self.assertTrue(JobError(ErrorCode.PROCESSING_FAILED, "x", retryable=True).retryable)

    def test_recovery_suggestion(self):
        self.assertIn("longer", recovery_suggestion(ErrorCode.INSUFFICIENT_CONTENT))
        self.assertEqual(recovery_suggestion("ERR_SOMETHING_NEW"), "Try again later.")


class TestSecurityUtils(unittest.TestCase):
    """Test name sanitization and the cancellable subprocess helper."""

    def test_unsafe_chars_removed(self):
        self.assertEqual(sanitize_name('Plan: Q3/Q4 "review"'), "Plan Q3 Q4 review")

    def test_long_name_cut_on_word(self):
        name = sanitize_name("Call the vendor tomorrow about the delayed hardware shipment")
        self.assertEqual(name, "Call the vendor tomorrow about the")
        self.assertLessEqual(len(name), 35)

    def test_empty(self):
        self.assertEqual(sanitize_name(""), "")

    def test_cancellable_subprocess_output(self):
        result = run_subprocess_cancellable([sys.executable, "-c", "print('ok')"],
                                            threading.Event(), timeout=30)
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "ok")

    def test_cancel_stops_running_subprocess(self):
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            with self.assertRaises(JobError) as ctx:
                run_subprocess_cancellable([sys.executable, "-c", "import time; time.sleep(30)"],
                                           cancel, timeout=60)
        finally:
            timer.cancel()
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        self.assertLess(time.monotonic() - started, 10)

    def test_subprocess_timeout(self):
        with self.assertRaises(subprocess.TimeoutExpired):
            run_subprocess_cancellable([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)


class TestChunkPlanning(unittest.TestCase):
    """Test chunk boundary planning."""

    def setUp(self):
        self.limit = ChunkingLimit(ChunkingStrategy.DURATION, max_seconds=300, overlap_sec=2)

    def test_duration_plan(self):
        bounds = plan_chunks(1000, 16_000_000, self.limit)
        self.assertEqual([b[0] for b in bounds], [0, 300, 600, 900])
        self.assertEqual([b[1] for b in bounds], [302, 602, 902, 1000])

    def test_plan_covers_whole_recording(self):
        for duration in (301, 599.5, 1000, 7201):
            bounds = plan_chunks(duration, 1, self.limit)
            self.assertEqual(bounds[0][0], 0)
            self.assertEqual(bounds[-1][1], duration)
            for (_, end), (next_start, _) in zip(bounds, bounds[1:]):
                self.assertLessEqual(next_start, end)

    def test_within_limit_not_chunked(self):
        self.assertFalse(needs_chunking(300, 1, self.limit))
        self.assertEqual(plan_chunks(120, 1, self.limit), [(0.0, 120.0)])

    def test_exact_multiple(self):
        bounds = plan_by_duration(600, 300, 0)
        self.assertEqual(bounds, [(0.0, 300.0), (300.0, 600.0)])

    def test_file_size_plan(self):
        limit = ChunkingLimit(ChunkingStrategy.FILE_SIZE, max_bytes=24 * 1024 * 1024, overlap_sec=2)
        bounds = plan_chunks(600, 50 * 1024 * 1024, limit)
        self.assertEqual(len(bounds), 3)
        self.assertEqual(bounds[-1][1], 600)

    def test_invalid_duration(self):
        with self.assertRaises(JobError) as ctx:
            plan_chunks(0, 100, self.limit)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_INPUT)

    def test_limit_for_backend(self):
        openai = limit_for_backend(TranscriptionBackendKind.OPENAI)
        self.assertEqual(openai.strategy, ChunkingStrategy.FILE_SIZE)
        self.assertEqual(openai.max_bytes, OPENAI_MAX_BYTES)
        self.assertEqual(limit_for_backend(TranscriptionBackendKind.ON_DEVICE).max_seconds, ON_DEVICE_MAX_SEC)
        with self.assertRaises(JobError):
            limit_for_backend("carrier-pigeon")

    def test_word_batches(self):
        words = [f"w{i}" for i in range(25)]
        self.assertEqual([len(b) for b in plan_word_batches(words, 10)], [10, 10, 5])
        self.assertEqual([len(b) for b in plan_word_batches(words, 10, overlap_words=2)], [12, 12, 5])
        self.assertEqual(plan_word_batches([], 10), [])


class TestAudioChunker(unittest.TestCase):
    """Test chunk export, cancellation and cleanup."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.recording = Path(self.tmpdir.name) / "standup.m4a"
        self.recording.write_bytes(b"audio")
        self.limit = ChunkingLimit(ChunkingStrategy.DURATION, max_seconds=300, overlap_sec=2)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_chunk_and_cleanup(self):
        chunker = AudioChunker(FakeExporter(), fixed_inspector(1000))
        result = chunker.chunk_file(self.recording, self.limit)

        self.assertTrue(result.was_chunked)
        self.assertEqual([c.sequence_number for c in result.chunks], [0, 1, 2, 3])
        self.assertTrue(AudioChunker.validate_chunks(result))
        self.assertIn("_chunk_", result.chunks[0].chunk_ref.name)

        AudioChunker.cleanup_chunks(result)
        self.assertFalse(result.temp_dir.exists())
        self.assertTrue(self.recording.exists())

    def test_short_recording_uses_original(self):
        chunker = AudioChunker(FakeExporter(), fixed_inspector(120))
        result = chunker.chunk_file(self.recording, self.limit)
        self.assertFalse(result.was_chunked)
        self.assertEqual(result.chunks[0].chunk_ref, self.recording)

        AudioChunker.cleanup_chunks(result)
        self.assertTrue(self.recording.exists())

    def test_cancel_removes_partial_chunks(self):
        cancel = threading.Event()
        exporter = FakeExporter(cancel_event=cancel, cancel_after=2)
        chunker = AudioChunker(exporter, fixed_inspector(1000))

        with self.assertRaises(JobError) as ctx:
            chunker.chunk_file(self.recording, self.limit, cancel_event=cancel)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        self.assertEqual(len(exporter.written), 2)
        for path in exporter.written:
            self.assertFalse(path.exists())
        self.assertFalse(exporter.written[0].parent.exists())
        self.assertTrue(self.recording.exists())

    def test_cancel_stops_export_in_progress(self):
        cancel = threading.Event()
        exporter = BlockingExporter()
        chunker = AudioChunker(exporter, fixed_inspector(1000))
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            with self.assertRaises(JobError) as ctx:
                chunker.chunk_file(self.recording, self.limit, cancel_event=cancel)
        finally:
            timer.cancel()
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        self.assertFalse(exporter.partial.exists())
        self.assertFalse(exporter.partial.parent.exists())
        self.assertTrue(self.recording.exists())

    def test_ffmpeg_export_forwards_cancel_event(self):
        cancel = threading.Event()
        destination = Path(self.tmpdir.name) / "out" / "standup_chunk_0.m4a"
        with mock.patch("audio_journal.core.chunk_export.run_subprocess_cancellable",
                        side_effect=JobError(ErrorCode.CANCELLED, "ffmpeg cancelled")) as run:
            with self.assertRaises(JobError) as ctx:
                FfmpegChunkExporter().export(self.recording, 0.0, 10.0, destination, 30, cancel_event=cancel)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        args, kwargs = run.call_args
        self.assertEqual(args[0][0], "ffmpeg")
        self.assertIs(args[1], cancel)

    def test_concurrent_operation_rejected(self):
        guard = InFlightGuard("chunking")
        chunker = AudioChunker(FakeExporter(), fixed_inspector(1000), guard)
        with guard.claim("rec-1"):
            with self.assertRaises(JobError) as ctx:
                chunker.chunk_file(self.recording, self.limit, recording_id="rec-1")
        self.assertEqual(ctx.exception.code, ErrorCode.OPERATION_CONFLICT)
        self.assertFalse(guard.is_active("rec-1"))


class TestJobTracker(unittest.TestCase):
    """Test the transcription job state machine."""

    def test_async_job_completes(self):
        locator = "https://results.example.com/j1.json"
        backend = ScriptedBackend([
            RemoteJobStatus(RemoteJobState.IN_PROGRESS),
            RemoteJobStatus(RemoteJobState.IN_PROGRESS),
            RemoteJobStatus(RemoteJobState.COMPLETED, result_locator=locator),
        ])
        tracker = TranscriptionJobTracker(backend, poll_interval=0.01)
        seen = []
        tracker.add_listener(lambda status, previous: seen.append((previous, status.state)))

        tracker.submit(Path("memo.m4a"))
        status = tracker.wait(timeout=5)

        self.assertEqual(status.state, S.COMPLETED)
        self.assertEqual(status.result_locator, locator)
        self.assertEqual(backend.polls, 3)
        self.assertEqual(seen, [(None, S.SUBMITTED), (S.SUBMITTED, S.POLLING), (S.POLLING, S.COMPLETED)])

        text, segments = tracker.fetch()
        self.assertEqual(text, "hello from the job")
        self.assertEqual(backend.fetched, locator)

    def test_transitions_published(self):
        bus = EventBus()
        events = []
        bus.subscribe(JobStatusChanged, events.append)
        backend = ScriptedBackend([RemoteJobStatus(RemoteJobState.COMPLETED, result_locator="loc")])
        TranscriptionJobTracker(backend, poll_interval=0.01, bus=bus).run(Path("memo.m4a"), timeout=5)
        self.assertEqual([e.status.state for e in events], [S.SUBMITTED, S.POLLING, S.COMPLETED])

    def test_timeout(self):
        backend = ScriptedBackend([RemoteJobStatus(RemoteJobState.IN_PROGRESS)])
        tracker = TranscriptionJobTracker(backend, poll_interval=0.01, clock=StepClock(10))
        tracker.submit(Path("memo.m4a"))
        status = tracker.wait(timeout=30)
        self.assertEqual(status.state, S.TIMED_OUT)
        with self.assertRaises(JobError) as ctx:
            tracker.fetch()
        self.assertEqual(ctx.exception.code, ErrorCode.JOB_TIMED_OUT)

    def test_cancel_wakes_wait(self):
        backend = ScriptedBackend([RemoteJobStatus(RemoteJobState.IN_PROGRESS)])
        tracker = TranscriptionJobTracker(backend, poll_interval=30)
        tracker.submit(Path("memo.m4a"))
        timer = threading.Timer(0.05, tracker.cancel)
        timer.start()
        started = time.monotonic()
        status = tracker.wait(timeout=60)
        timer.join()

        self.assertEqual(status.state, S.CANCELLED)
        self.assertLess(time.monotonic() - started, 5)
        self.assertEqual(backend.polls, 1)

    def test_remote_failure(self):
        backend = ScriptedBackend([RemoteJobStatus(RemoteJobState.FAILED, failure_reason="bad audio")])
        tracker = TranscriptionJobTracker(backend, poll_interval=0.01)
        tracker.submit(Path("memo.m4a"))
        status = tracker.wait(timeout=5)
        self.assertEqual(status.state, S.FAILED)
        self.assertEqual(status.failure_reason, "bad audio")
        with self.assertRaises(JobError) as ctx:
            tracker.fetch()
        self.assertEqual(ctx.exception.code, ErrorCode.JOB_FAILED)

    def test_transient_poll_error_keeps_polling(self):
        backend = ScriptedBackend([
            JobError(ErrorCode.NETWORK_TRANSIENT, "connection reset"),
            RemoteJobStatus(RemoteJobState.COMPLETED, result_locator="loc"),
        ])
        tracker = TranscriptionJobTracker(backend, poll_interval=0.01)
        tracker.submit(Path("memo.m4a"))
        self.assertEqual(tracker.poll_once().state, S.POLLING)
        self.assertIsNotNone(tracker.last_poll_error)
        self.assertEqual(tracker.poll_once().state, S.COMPLETED)

    def test_missing_job_fails(self):
        backend = ScriptedBackend([JobError(ErrorCode.JOB_NOT_FOUND, "no such job")])
        tracker = TranscriptionJobTracker.resume(backend, "j9")
        self.assertEqual(tracker.poll_once().state, S.FAILED)

    def test_sync_backend(self):
        tracker = TranscriptionJobTracker(FakeSyncBackend(("fast result", [seg("fast result", 0, 2)])))
        text, segments = tracker.run(Path("memo.m4a"))
        self.assertEqual(tracker.state, S.COMPLETED)
        self.assertEqual(text, "fast result")
        self.assertEqual(len(segments), 1)

    def test_sync_backend_failure(self):
        tracker = TranscriptionJobTracker(FakeSyncBackend(error=JobError(ErrorCode.PROCESSING_FAILED, "boom")))
        status = tracker.submit(Path("memo.m4a"))
        self.assertEqual(status.state, S.FAILED)
        with self.assertRaises(JobError):
            tracker.fetch()

    def test_second_submit_rejected(self):
        tracker = TranscriptionJobTracker(ScriptedBackend([RemoteJobStatus(RemoteJobState.IN_PROGRESS)]))
        tracker.submit(Path("memo.m4a"))
        with self.assertRaises(JobError) as ctx:
            tracker.submit(Path("memo.m4a"))
        self.assertEqual(ctx.exception.code, ErrorCode.JOB_SUBMIT_FAILED)

    def test_allowed_transitions(self):
        self.assertTrue(can_transition(S.SUBMITTED, S.POLLING))
        self.assertTrue(can_transition(S.POLLING, S.TIMED_OUT))
        self.assertFalse(can_transition(S.SUBMITTED, S.TIMED_OUT))
        for terminal in (S.COMPLETED, S.FAILED, S.TIMED_OUT, S.CANCELLED):
            for target in (S.SUBMITTED, S.POLLING, S.COMPLETED, S.FAILED):
                self.assertFalse(can_transition(terminal, target))


class TestPendingJobs(unittest.TestCase):
    """Test the persisted pending job list."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = SqliteBlobStore(Path(self.tmpdir.name) / "store.db")
        self.bus = EventBus()

    def tearDown(self):
        self.store.close()
        self.tmpdir.cleanup()

    def test_rename_retargets_pending_job(self):
        registry = PendingJobRegistry(self.store, ScriptedBackend([RemoteJobStatus(RemoteJobState.IN_PROGRESS)]),
                                      bus=self.bus)
        registry.add("j1", "rec-old", "Old Name")
        self.bus.publish(RecordingRenamed("rec-old", "rec-new", "New Name"))

        pending = registry.pending()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].recording_ref, "rec-new")
        self.assertEqual(pending[0].recording_name, "New Name")
        registry.close()
        self.assertEqual(self.bus.subscriber_count(RecordingRenamed), 0)

    def test_check_completed(self):
        backend = ScriptedBackend([RemoteJobStatus(RemoteJobState.COMPLETED, result_locator="loc")])
        registry = PendingJobRegistry(self.store, backend)
        registry.add("j1", "rec-1", "Standup")

        finished = registry.check_completed()
        self.assertEqual(len(finished), 1)
        job, text, _segments = finished[0]
        self.assertEqual(job.job_id, "j1")
        self.assertEqual(text, "hello from the job")
        self.assertEqual(registry.pending(), [])

    def test_still_running_job_stays(self):
        registry = PendingJobRegistry(self.store, ScriptedBackend([RemoteJobStatus(RemoteJobState.IN_PROGRESS)]))
        registry.add("j1", "rec-1", "Standup")
        self.assertEqual(registry.check_completed(), [])
        self.assertEqual(len(registry.pending()), 1)


class TestReassembly(unittest.TestCase):
    """Test transcript reassembly and overlap deduplication."""

    def _chunks(self):
        first = TranscriptChunk("rec-0", 0, "", [
            seg("we went over the budget numbers", 280.0, 295.0),
            seg("and then we", 300.2, 301.5),
        ], 0.0, 302.0)
        second = TranscriptChunk("rec-1", 1, "", [
            seg("and then we", 0.3, 1.5),
            seg("moved on to hiring", 2.0, 6.0),
        ], 300.0, 600.0)
        return first, second

    def test_overlap_phrase_kept_once(self):
        result = reassemble(list(self._chunks()), overlap_sec=2)
        self.assertEqual(result.full_text.count("and then we"), 1)
        self.assertEqual(result.total_segment_count, 3)
        self.assertEqual(result.full_text, "we went over the budget numbers and then we moved on to hiring")

    def test_global_timestamps_monotonic(self):
        result = reassemble(list(self._chunks()), overlap_sec=2)
        starts = [s.start_time for s in result.segments]
        self.assertEqual(starts, sorted(starts))
        self.assertAlmostEqual(result.segments[-1].start_time, 302.0)

    def test_input_order_irrelevant(self):
        first, second = self._chunks()
        self.assertEqual(reassemble([second, first]).full_text, reassemble([first, second]).full_text)

    def test_missing_chunk_fails(self):
        first, second = self._chunks()
        second.sequence_number = 2
        with self.assertRaises(JobError) as ctx:
            reassemble([first, second])
        self.assertEqual(ctx.exception.code, ErrorCode.REASSEMBLY_FAILED)

    def test_empty_fails(self):
        with self.assertRaises(JobError):
            reassemble([])

    def test_dedupe_idempotent(self):
        segments = [seg("yes", 10.0, 11.0), seg("yes", 10.3, 11.0), seg("no", 12.0, 13.0),
                    seg("yes", 100.0, 101.0)]
        once = dedupe_segments(segments)
        self.assertEqual(len(once), 3)
        self.assertEqual(dedupe_segments(once), once)

    def test_dedupe_unsorted_input(self):
        segments = [seg("yes", 100.0, 101.0), seg("yes", 10.3, 11.0), seg("no", 12.0, 13.0),
                    seg("yes", 10.0, 11.0)]
        once = dedupe_segments(segments)
        self.assertEqual([s.start_time for s in once], [10.0, 12.0, 100.0])
        self.assertEqual(dedupe_segments(once), once)

    def test_speaker_aliases(self):
        first, second = self._chunks()
        first.speaker_mappings = {"spk_0": "Alice"}
        second.speaker_mappings = {"spk_0": "Alicia", "spk_1": "Bob"}
        result = reassemble([first, second])
        self.assertEqual(result.speaker_mappings, {"spk_0": "Alice", "spk_1": "Bob"})
        self.assertEqual(result.speaker_aliases, {"spk_0": ["Alicia"]})

    def test_chunk_without_segments(self):
        chunk = AudioChunk(Path("/tmp/rec.m4a"), Path("/tmp/rec_chunk_1.m4a"), 1, 300.0, 602.0)
        transcript = build_transcript_chunk(chunk, " plain text only ", [])
        self.assertEqual(transcript.chunk_id, "rec-1")
        self.assertEqual(len(transcript.segments), 1)
        self.assertEqual(transcript.segments[0].text, "plain text only")
        self.assertAlmostEqual(transcript.segments[0].end_time, 302.0)


class TestStore(unittest.TestCase):
    """Test the SQLite blob store and summary collection."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = SqliteBlobStore(Path(self.tmpdir.name) / "nested" / "store.db")

    def tearDown(self):
        self.store.close()
        self.tmpdir.cleanup()

    def test_blob_round_trip(self):
        self.assertIsNone(self.store.get("missing"))
        self.store.set("k", "v1")
        self.store.set("k", "v2")
        self.assertEqual(self.store.get("k"), "v2")
        self.assertEqual(self.store.keys(), ["k"])
        self.store.delete("k")
        self.assertIsNone(self.store.get("k"))

    def test_corrupt_blob_uses_default(self):
        self.store.set(STORE_KEY_SUMMARIES, "{not json")
        self.assertEqual(load_json(self.store, STORE_KEY_SUMMARIES, []), [])

    def test_summary_replaced_per_recording(self):
        summaries = SummaryStore(self.store)
        summaries.save(SummaryResult("rec-1", "Standup", "first", tasks=[TaskItem("Call Sam")]))
        summaries.save(SummaryResult("rec-1", "Standup", "second"))
        summaries.save(SummaryResult("rec-2", "Retro", "other"))

        self.assertEqual(len(summaries.all()), 2)
        self.assertEqual(summaries.get("rec-1").text, "second")

    def test_summary_items_restored(self):
        summaries = SummaryStore(self.store)
        summaries.save(SummaryResult("rec-1", "Standup", "text", tasks=[TaskItem("Call Sam")]))
        restored = SummaryStore(self.store).get("rec-1")
        self.assertIsInstance(restored.tasks[0], TaskItem)
        self.assertEqual(restored.tasks[0].text, "Call Sam")

    def test_rename_and_delete(self):
        summaries = SummaryStore(self.store)
        summaries.save(SummaryResult("rec-1", "Standup", "text"))
        self.assertTrue(summaries.rename("rec-1", "rec-9", "Daily Standup"))
        self.assertIsNone(summaries.get("rec-1"))
        self.assertEqual(summaries.get("rec-9").recording_name, "Daily Standup")
        self.assertTrue(summaries.delete("rec-9"))
        self.assertFalse(summaries.delete("rec-9"))


class TestEventBus(unittest.TestCase):
    """Test typed publish/subscribe."""

    def test_subscribe_and_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(RecordingRenamed, received.append)
        self.assertEqual(bus.publish(RecordingRenamed("a", "b", "B")), 1)
        unsubscribe()
        self.assertEqual(bus.publish(RecordingRenamed("b", "c", "C")), 0)
        self.assertEqual(len(received), 1)

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(RecordingRenamed, broken)
        bus.subscribe(RecordingRenamed, received.append)
        bus.publish(RecordingRenamed("a", "b", "B"))
        self.assertEqual(len(received), 1)


class TestTranscriptParsing(unittest.TestCase):
    """Test backend transcript documents."""

    def test_whisper_json(self):
        text, segments = parse_whisper_json({
            "text": " hello there ",
            "segments": [{"text": " hello", "start": 0.0, "end": 1.2}, {"text": "  ", "start": 1.2, "end": 2}],
        })
        self.assertEqual(text, "hello there")
        self.assertEqual(len(segments), 1)
        self.assertEqual(segments[0].end_time, 1.2)

    def test_whisper_json_without_text(self):
        with self.assertRaises(JobError) as ctx:
            parse_whisper_json({"segments": []})
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_RESULT_FORMAT)

    def test_cloud_transcript_speakers(self):
        doc = {"results": {
            "transcripts": [{"transcript": "Hi Bob. Hi Alice."}],
            "speaker_labels": {"segments": [
                {"speaker_label": "spk_0", "start_time": "0.0", "end_time": "1.0"},
                {"speaker_label": "spk_1", "start_time": "1.0", "end_time": "2.0"},
            ]},
            "items": [
                {"type": "pronunciation", "start_time": "0.1", "alternatives": [{"content": "Hi", "confidence": "0.9"}]},
                {"type": "pronunciation", "start_time": "0.5", "alternatives": [{"content": "Bob", "confidence": "0.7"}]},
                {"type": "punctuation", "alternatives": [{"content": "."}]},
                {"type": "pronunciation", "start_time": "1.2", "alternatives": [{"content": "Hi", "confidence": "1.0"}]},
                {"type": "pronunciation", "start_time": "1.6", "alternatives": [{"content": "Alice", "confidence": "1.0"}]},
            ],
        }}
        text, segments = parse_transcript_json(doc)
        self.assertEqual(text, "Hi Bob. Hi Alice.")
        self.assertEqual([s.speaker_label for s in segments], ["spk_0", "spk_1"])
        self.assertEqual(segments[0].text, "Hi Bob")
        self.assertAlmostEqual(segments[0].confidence, 0.8)

    def test_cloud_transcript_missing_text(self):
        with self.assertRaises(JobError):
            parse_transcript_json({"results": {"transcripts": []}})


class TestHttpBackoff(unittest.TestCase):
    """Test request retry and error mapping."""

    @staticmethod
    def _response(status, body=""):
        resp = mock.MagicMock()
        resp.status_code = status
        resp.text = body
        return resp

    def test_retries_after_rate_limit(self):
        sleeps = []
        with mock.patch("audio_journal.core.http_utils.requests.request",
                        side_effect=[self._response(429), self._response(200)]) as request:
            resp = request_with_backoff("GET", "http://svc/x", "Svc", timeout=5, sleep=sleeps.append)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(request.call_count, 2)
        self.assertEqual(len(sleeps), 1)

    def test_rate_limit_exhausted(self):
        with mock.patch("audio_journal.core.http_utils.requests.request", return_value=self._response(429)):
            with self.assertRaises(JobError) as ctx:
                request_with_backoff("GET", "http://svc/x", "Svc", timeout=5, sleep=lambda s: None)
        self.assertEqual(ctx.exception.code, ErrorCode.QUOTA_EXCEEDED)

    def test_status_mapping(self):
        cases = [(503, ErrorCode.ENGINE_UNAVAILABLE), (401, ErrorCode.CONFIGURATION_MISSING),
                 (500, ErrorCode.PROCESSING_FAILED)]
        for status, code in cases:
            with mock.patch("audio_journal.core.http_utils.requests.request",
                            return_value=self._response(status, "oops")):
                with self.assertRaises(JobError) as ctx:
                    request_with_backoff("GET", "http://svc/x", "Svc", timeout=5)
            self.assertEqual(ctx.exception.code, code)

    def test_connection_error(self):
        with mock.patch("audio_journal.core.http_utils.requests.request",
                        side_effect=requests.exceptions.ConnectionError("refused")):
            with self.assertRaises(JobError) as ctx:
                request_with_backoff("GET", "http://svc/x", "Svc", timeout=5)
        self.assertEqual(ctx.exception.code, ErrorCode.NETWORK_TRANSIENT)
        self.assertTrue(ctx.exception.retryable)


if __name__ == "__main__":
    unittest.main()
