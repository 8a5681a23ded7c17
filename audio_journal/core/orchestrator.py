"""
Summarization orchestrator.
Validates transcript fitness, runs the current engine, falls back to the
offline engine on any engine failure, scores and persists results, and
carries out recovery actions on request.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import requests

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, STORE_KEY_ENGINE_FAILURES, MAX_STORED_FAILURES,
    ENGINE_TIMEOUT_SEC, RETRY_DELAY_SEC, SHORTEN_WORD_BUDGET, CONNECTIVITY_CHECK_URL,
    MAX_TASKS, MAX_REMINDERS, CHUNKED_SUMMARY_METHOD, MANUAL_SUMMARY_METHOD,
)
from audio_journal.core.chunk_planner import plan_word_batches
from audio_journal.core.engine_registry import EngineRegistry
from audio_journal.core.engines import EngineKind, SummarizationEngine, OfflineEngine
from audio_journal.core.event_bus import EventBus, SummaryUpdated, RecordingRenamed
from audio_journal.core.extractors import generate_recording_name
from audio_journal.core.inflight import InFlightGuard
from audio_journal.core.models import (
    EngineOutput, EngineFailure, SummaryResult, SummaryQuality, SummaryStatistics,
)
from audio_journal.core.ports import BlobStore
from audio_journal.core.quality import ensure_fit, score_summary
from audio_journal.core.store import SummaryStore, load_json, save_json, utc_now

logger = logging.getLogger(__name__)


class RecoveryAction(Enum):
    RETRY_SAME_ENGINE = "Retry with the same engine"
    SWITCH_ENGINE = "Switch to the next available engine"
    SHORTEN_INPUT = "Summarize the transcript in smaller parts"
    RETRY_AFTER_DELAY = "Wait and retry"
    CHECK_CONNECTIVITY = "Check the network connection and retry"
    SWITCH_TO_OFFLINE_ENGINE = "Use offline analysis"
    REQUEST_MANUAL_SUMMARY = "Write the summary manually"


_ACTIONS_BY_ERROR = {
    ErrorCode.PROCESSING_TIMEOUT: [RecoveryAction.SHORTEN_INPUT, RecoveryAction.RETRY_AFTER_DELAY,
                                   RecoveryAction.SWITCH_ENGINE, RecoveryAction.SWITCH_TO_OFFLINE_ENGINE],
    ErrorCode.NETWORK_TRANSIENT: [RecoveryAction.CHECK_CONNECTIVITY, RecoveryAction.RETRY_AFTER_DELAY,
                                  RecoveryAction.SWITCH_TO_OFFLINE_ENGINE],
    ErrorCode.QUOTA_EXCEEDED: [RecoveryAction.RETRY_AFTER_DELAY, RecoveryAction.SWITCH_ENGINE,
                               RecoveryAction.SWITCH_TO_OFFLINE_ENGINE],
    ErrorCode.ENGINE_UNAVAILABLE: [RecoveryAction.SWITCH_ENGINE, RecoveryAction.CHECK_CONNECTIVITY,
                                   RecoveryAction.SWITCH_TO_OFFLINE_ENGINE],
    ErrorCode.CONFIGURATION_MISSING: [RecoveryAction.SWITCH_ENGINE, RecoveryAction.SWITCH_TO_OFFLINE_ENGINE],
    ErrorCode.INVALID_RESULT_FORMAT: [RecoveryAction.RETRY_SAME_ENGINE, RecoveryAction.SWITCH_ENGINE,
                                      RecoveryAction.SWITCH_TO_OFFLINE_ENGINE],
}
_DEFAULT_ACTIONS = [RecoveryAction.RETRY_SAME_ENGINE, RecoveryAction.SWITCH_ENGINE,
                    RecoveryAction.SWITCH_TO_OFFLINE_ENGINE, RecoveryAction.REQUEST_MANUAL_SUMMARY]
_LOW_QUALITY_ACTIONS = [RecoveryAction.RETRY_SAME_ENGINE, RecoveryAction.SWITCH_ENGINE,
                        RecoveryAction.REQUEST_MANUAL_SUMMARY]


def suggest_recovery_actions(error: Exception) -> list[RecoveryAction]:
    code = error.code if isinstance(error, JobError) else None
    return list(_ACTIONS_BY_ERROR.get(code, _DEFAULT_ACTIONS))


@dataclass
class SummarizationOutcome:
    summary: SummaryResult
    quality: SummaryQuality
    fallback_used: bool = False
    failure: Optional[EngineFailure] = None
    recovery_actions: list[RecoveryAction] = field(default_factory=list)


class SummarizationOrchestrator:

    def __init__(self, registry: EngineRegistry, summaries: SummaryStore, store: BlobStore,
                 config=None, bus: EventBus | None = None, sleep=time.sleep):
        self.registry = registry
        self.summaries = summaries
        self.store = store
        self.config = config
        self.bus = bus
        self._sleep = sleep
        self._lock = threading.RLock()
        self._guard = InFlightGuard("summarization")
        self._failures = [EngineFailure(**f) for f in load_json(store, STORE_KEY_ENGINE_FAILURES, [])
                          if isinstance(f, dict)]

        self._handlers = {
            RecoveryAction.RETRY_SAME_ENGINE: self._retry_same_engine,
            RecoveryAction.SWITCH_ENGINE: self._switch_engine,
            RecoveryAction.SHORTEN_INPUT: self._shorten_input,
            RecoveryAction.RETRY_AFTER_DELAY: self._retry_after_delay,
            RecoveryAction.CHECK_CONNECTIVITY: self._check_connectivity,
            RecoveryAction.SWITCH_TO_OFFLINE_ENGINE: self._switch_to_offline,
            RecoveryAction.REQUEST_MANUAL_SUMMARY: self._manual_summary,
        }
        unhandled = set(RecoveryAction) - set(self._handlers)
        if unhandled:
            raise JobError(ErrorCode.CONFIGURATION_MISSING,
                           f"Recovery actions without a handler: {sorted(a.name for a in unhandled)}")

        self._unsubscribe = bus.subscribe(RecordingRenamed, self._on_recording_renamed) if bus else None

    # ── Settings ──────────────────────────────────────────────────────

    def _setting(self, key: str, default):
        return self.config.get(key, default) if self.config is not None else default

    @property
    def engine_timeout(self) -> float:
        return self._setting('engine_timeout_sec', ENGINE_TIMEOUT_SEC)

    # ── Main entry point ──────────────────────────────────────────────

    def process_complete(self, text: str, recording_id: str, recording_name: str = "",
                         cancel_event: threading.Event | None = None) -> SummaryResult:
        return self.summarize(text, recording_id, recording_name, cancel_event).summary

    def summarize(self, text: str, recording_id: str, recording_name: str = "",
                  cancel_event: threading.Event | None = None,
                  timeout: float | None = None) -> SummarizationOutcome:
        """
        Summarize a transcript with the current engine.
        Unfit transcripts raise INSUFFICIENT_CONTENT before any engine runs.
        Engine failures are recorded and answered with the offline engine;
        the outcome then carries suggested recovery actions.
        timeout, when given, caps the engine timeout for this call.
        """
        ensure_fit(text, self.config)

        with self._guard.claim(recording_id):
            started = time.monotonic()
            kind = self.registry.current
            engine = self.registry.engine(kind)
            failure = None
            actions: list[RecoveryAction] = []

            if not self.registry.is_available(kind):
                logger.info("%s is unavailable, using offline analysis", engine.name)
                output, engine = self._offline_output(text), self.registry.engine(EngineKind.OFFLINE)
                fallback = kind != EngineKind.OFFLINE
                method = f"{engine.name} (fallback)" if fallback else engine.name
            else:
                try:
                    self._check_cancelled(cancel_event)
                    engine_timeout = self.engine_timeout if timeout is None else min(self.engine_timeout, timeout)
                    output = engine.process_complete(text, timeout=engine_timeout)
                    fallback = False
                    method = engine.name
                except Exception as e:
                    if isinstance(e, JobError) and e.code == ErrorCode.CANCELLED:
                        raise
                    if not isinstance(e, JobError):
                        logger.error("%s raised an unexpected error", engine.name, exc_info=True)
                    failure = self._record_failure(engine, started, text, e)
                    actions = suggest_recovery_actions(e)
                    output, engine = self._offline_output(text), self.registry.engine(EngineKind.OFFLINE)
                    fallback = True
                    method = f"{engine.name} (fallback)"

            summary = self._build_summary(output, engine, method, text, recording_id, recording_name, started,
                                          selected=kind)
            quality = self._publish(summary, cancel_event)
            if not quality.acceptable and not actions:
                actions = list(_LOW_QUALITY_ACTIONS)
            return SummarizationOutcome(summary, quality, fallback, failure, actions)

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None):
        if cancel_event is not None and cancel_event.is_set():
            raise JobError(ErrorCode.CANCELLED, "Summarization was cancelled")

    def _offline_output(self, text: str) -> EngineOutput:
        return self.registry.engine(EngineKind.OFFLINE).process_complete(text)

    def _record_failure(self, engine: SummarizationEngine, started: float, text: str,
                        error: Exception) -> EngineFailure:
        failure = EngineFailure(
            engine_name=engine.name,
            occurred_at=utc_now(),
            elapsed_sec=round(time.monotonic() - started, 3),
            input_chars=len(text),
            input_words=len(text.split()),
            error=str(error),
        )
        logger.warning("%s failed after %.1fs on %d words: %s; falling back to offline analysis",
                       engine.name, failure.elapsed_sec, failure.input_words, error)
        with self._lock:
            self._failures.append(failure)
            self._failures = self._failures[-MAX_STORED_FAILURES:]
            save_json(self.store, STORE_KEY_ENGINE_FAILURES, [f.to_dict() for f in self._failures])
        return failure

    @staticmethod
    def _confidence(engine: SummarizationEngine, output: EngineOutput) -> float:
        base = 0.6 if isinstance(engine, OfflineEngine) else 0.8
        items = output.tasks + output.reminders
        if items:
            base += 0.1 * sum(i.confidence for i in items) / len(items)
        return round(min(base, 1.0), 3)

    def _build_summary(self, output: EngineOutput, engine: SummarizationEngine, method: str,
                       text: str, recording_id: str, recording_name: str, started: float,
                       selected: EngineKind | None = None) -> SummaryResult:
        titles = list(output.titles)
        if not titles:
            titles = [generate_recording_name(text, output.content_type, output.tasks, output.reminders)]
        return SummaryResult(
            recording_id=recording_id,
            recording_name=recording_name or titles[0],
            text=output.summary,
            tasks=list(output.tasks),
            reminders=list(output.reminders),
            titles=titles,
            content_type=output.content_type,
            engine_name=engine.name,
            ai_method=method,
            confidence=self._confidence(engine, output),
            original_word_count=len(text.split()),
            processing_time=round(time.monotonic() - started, 3),
            generated_at=utc_now(),
            selected_engine=(selected or self.registry.current).value,
        )

    def _publish(self, summary: SummaryResult, cancel_event: threading.Event | None = None) -> SummaryQuality:
        quality = score_summary(summary)
        with self._lock:
            self._check_cancelled(cancel_event)
            self.summaries.save(summary)
        if self.bus is not None:
            self.bus.publish(SummaryUpdated(summary.recording_id, summary))
        logger.info("Summary for %s by %s: %s (score %.2f)",
                    summary.recording_id, summary.ai_method, quality.tier, quality.score)
        return quality

    def _run_engine(self, kind: EngineKind, text: str, recording_id: str, recording_name: str,
                    method: str | None = None) -> SummaryResult:
        """Run one engine with no fallback; failures propagate to the caller."""
        engine = self.registry.engine(kind)
        started = time.monotonic()
        try:
            output = engine.process_complete(text, timeout=self.engine_timeout)
        except Exception as e:
            self._record_failure(engine, started, text, e)
            raise
        summary = self._build_summary(output, engine, method or engine.name, text,
                                      recording_id, recording_name, started, selected=kind)
        self._publish(summary)
        return summary

    # ── Recovery ──────────────────────────────────────────────────────

    def recover(self, action: RecoveryAction, text: str, recording_id: str,
                recording_name: str = "", manual_text: str = "") -> SummaryResult:
        """
        Carry out one recovery action for a recording. Each action can be
        repeated; failures raise JobError so another action can be tried.
        """
        handler = self._handlers[action]
        if action != RecoveryAction.REQUEST_MANUAL_SUMMARY and not text.strip():
            raise JobError(ErrorCode.INSUFFICIENT_CONTENT,
                           f"Transcript for {recording_id} is empty, nothing to summarize")
        logger.info("Recovery for %s: %s", recording_id, action.value)
        with self._guard.claim(recording_id):
            if action == RecoveryAction.REQUEST_MANUAL_SUMMARY:
                return handler(text, recording_id, recording_name, manual_text)
            return handler(text, recording_id, recording_name)

    def _retry_same_engine(self, text, recording_id, recording_name):
        return self._run_engine(self.registry.current, text, recording_id, recording_name)

    def _switch_engine(self, text, recording_id, recording_name):
        self.registry.refresh()
        nxt = self.registry.next_available(self.registry.current)
        if nxt is None:
            raise JobError(ErrorCode.ENGINE_UNAVAILABLE, "No other engine is available")
        self.registry.set_engine(nxt.value)
        return self._run_engine(nxt, text, recording_id, recording_name)

    def _shorten_input(self, text, recording_id, recording_name):
        budget = self._setting('shorten_word_budget', SHORTEN_WORD_BUDGET)
        batches = plan_word_batches(text.split(), budget)
        engine = self.registry.current_engine
        started = time.monotonic()

        outputs = []
        for part in batches:
            try:
                outputs.append(engine.process_complete(' '.join(part), timeout=self.engine_timeout))
            except Exception as e:
                self._record_failure(engine, started, text, e)
                raise

        combined = EngineOutput(
            summary="".join(f"\n\n## Part {i}\n\n{o.summary}" for i, o in enumerate(outputs, 1)).strip(),
            tasks=_unique_by_text([t for o in outputs for t in o.tasks])[:self._setting('max_tasks', MAX_TASKS)],
            reminders=_unique_by_text(
                [r for o in outputs for r in o.reminders])[:self._setting('max_reminders', MAX_REMINDERS)],
            content_type=outputs[0].content_type,
            titles=outputs[0].titles,
        )
        logger.info("Summarized %s in %d parts of up to %d words", recording_id, len(outputs), budget)
        summary = self._build_summary(combined, engine, CHUNKED_SUMMARY_METHOD, text,
                                      recording_id, recording_name, started)
        self._publish(summary)
        return summary

    def _retry_after_delay(self, text, recording_id, recording_name):
        delay = self._setting('retry_delay_sec', RETRY_DELAY_SEC)
        logger.info("Retrying %s in %.0fs", recording_id, delay)
        self._sleep(delay)
        return self._retry_same_engine(text, recording_id, recording_name)

    def _check_connectivity(self, text, recording_id, recording_name):
        url = self._setting('connectivity_check_url', CONNECTIVITY_CHECK_URL)
        try:
            requests.get(url, timeout=10)
        except requests.exceptions.RequestException as e:
            raise JobError(ErrorCode.NETWORK_TRANSIENT, f"No network connection: {e}")
        return self._retry_same_engine(text, recording_id, recording_name)

    def _switch_to_offline(self, text, recording_id, recording_name):
        self.registry.set_engine(EngineKind.OFFLINE.value)
        return self._run_engine(EngineKind.OFFLINE, text, recording_id, recording_name)

    def _manual_summary(self, text, recording_id, recording_name, manual_text=""):
        body = manual_text.strip() or (
            "*Automatic summarization failed for this recording. "
            "Please review the transcript and write a summary manually.*"
        )
        name = recording_name or f"Recording {recording_id}"
        summary = SummaryResult(
            recording_id=recording_id,
            recording_name=name,
            text=f"## Manual Summary Required\n\n{body}",
            titles=[name],
            engine_name="Manual",
            ai_method=MANUAL_SUMMARY_METHOD,
            confidence=1.0 if manual_text.strip() else 0.0,
            original_word_count=len(text.split()),
            generated_at=utc_now(),
            selected_engine=self.registry.current.value,
        )
        self._publish(summary)
        return summary

    # ── Queries ───────────────────────────────────────────────────────

    def engine_changed_since(self, summary: SummaryResult) -> bool:
        """
        True when the user has selected a different engine since summary was made.
        An offline fallback does not count as a change.
        """
        selected = summary.selected_engine or summary.engine_name
        return selected != self.registry.current.value

    def failures(self) -> list[EngineFailure]:
        with self._lock:
            return list(self._failures)

    def is_in_flight(self, recording_id: str) -> bool:
        return self._guard.is_active(recording_id)

    def statistics(self) -> SummaryStatistics:
        summaries = self.summaries.all()
        by_engine: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for s in summaries:
            by_engine[s.engine_name] = by_engine.get(s.engine_name, 0) + 1
            by_type[s.content_type] = by_type.get(s.content_type, 0) + 1
        average = sum(s.confidence for s in summaries) / len(summaries) if summaries else 0.0
        return SummaryStatistics(len(summaries), round(average, 3), by_engine, by_type)

    def _on_recording_renamed(self, event: RecordingRenamed):
        if self.summaries.rename(event.old_ref, event.new_ref, event.new_name):
            logger.info("Summary moved from %s to %s", event.old_ref, event.new_ref)

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


def _unique_by_text(items: list) -> list:
    seen = set()
    unique = []
    for item in items:
        key = item.text.strip().lower()
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique
