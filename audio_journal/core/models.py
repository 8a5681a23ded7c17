"""
Data models (plain dataclasses) for AudioJournal.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from audio_journal.core.constants import (
    TranscriptionJobState, ContentType, TaskPriority, TaskCategory,
    ReminderUrgency, EngineHealthStatus, QualityTier,
)


# ── Audio & chunking ──────────────────────────────────────────────────

@dataclass(frozen=True)
class AudioInfo:
    path: Path
    duration_sec: float
    size_bytes: int


@dataclass(frozen=True)
class ChunkingLimit:
    strategy: str                    # ChunkingStrategy value
    max_bytes: Optional[int] = None
    max_seconds: Optional[float] = None
    overlap_sec: float = 0.0


@dataclass
class AudioChunk:
    original_ref: Path
    chunk_ref: Path
    sequence_number: int
    start_time: float
    end_time: float
    byte_size: int = 0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class ChunkingResult:
    chunks: list[AudioChunk]
    total_duration: float
    total_size: int
    elapsed_time: float = 0.0
    temp_dir: Optional[Path] = None

    @property
    def was_chunked(self) -> bool:
        return any(c.chunk_ref != c.original_ref for c in self.chunks)


# ── Transcripts ───────────────────────────────────────────────────────

@dataclass
class TranscriptSegment:
    speaker_label: str
    text: str
    start_time: float
    end_time: float
    confidence: float = 1.0


@dataclass
class TranscriptChunk:
    chunk_id: str
    sequence_number: int
    raw_text: str
    segments: list[TranscriptSegment]
    start_time: float
    end_time: float
    speaker_mappings: dict[str, str] = field(default_factory=dict)


@dataclass
class ReassemblyResult:
    segments: list[TranscriptSegment]
    full_text: str
    speaker_mappings: dict[str, str]
    speaker_aliases: dict[str, list[str]]
    total_segment_count: int
    elapsed_time: float
    source_chunks: list[TranscriptChunk]


# ── Transcription jobs ────────────────────────────────────────────────

@dataclass
class RemoteJobStatus:
    """One poll answer from an asynchronous backend."""
    state: str                       # RemoteJobState value
    result_locator: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class TranscriptionJobStatus:
    job_id: str
    state: str = TranscriptionJobState.SUBMITTED
    failure_reason: Optional[str] = None
    result_locator: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class PendingJob:
    job_id: str
    recording_ref: str
    recording_name: str
    started_at: str

    def to_dict(self) -> dict:
        return asdict(self)


# ── Summaries ─────────────────────────────────────────────────────────

@dataclass
class TaskItem:
    text: str
    priority: str = TaskPriority.MEDIUM
    time_reference: Optional[str] = None
    category: str = TaskCategory.GENERAL
    confidence: float = 0.5


@dataclass
class ReminderItem:
    text: str
    time_reference: str = "No specific time"
    urgency: str = ReminderUrgency.LATER
    confidence: float = 0.5


@dataclass
class SummaryResult:
    recording_id: str
    recording_name: str
    text: str
    tasks: list[TaskItem] = field(default_factory=list)
    reminders: list[ReminderItem] = field(default_factory=list)
    titles: list[str] = field(default_factory=list)
    content_type: str = ContentType.GENERAL
    engine_name: str = ""
    ai_method: str = ""
    confidence: float = 0.0
    original_word_count: int = 0
    processing_time: float = 0.0
    generated_at: Optional[str] = None
    # selection at request time; engine_name differs after a fallback
    selected_engine: Optional[str] = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def compression_ratio(self) -> float:
        if self.original_word_count <= 0:
            return 0.0
        return self.word_count / self.original_word_count

    @property
    def quality_description(self) -> str:
        if self.confidence >= 0.8:
            return QualityTier.HIGH
        if self.confidence >= 0.6:
            return QualityTier.GOOD
        if self.confidence >= 0.4:
            return QualityTier.FAIR
        return QualityTier.LOW

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SummaryResult":
        data = dict(data)
        data['tasks'] = [TaskItem(**t) for t in data.get('tasks', [])]
        data['reminders'] = [ReminderItem(**r) for r in data.get('reminders', [])]
        return cls(**data)


# ── Engines & diagnostics ─────────────────────────────────────────────

@dataclass
class EngineOutput:
    """Combined result of one engine's summary/task/reminder/classification calls."""
    summary: str
    tasks: list[TaskItem]
    reminders: list[ReminderItem]
    content_type: str
    titles: list[str] = field(default_factory=list)


@dataclass
class EngineDescriptor:
    kind: str
    name: str
    is_available: bool
    is_coming_soon: bool
    requirements: list[str]
    version: str


@dataclass(frozen=True)
class EngineValidation:
    is_known: bool
    is_available: bool
    message: str


@dataclass
class EngineFailure:
    engine_name: str
    occurred_at: str
    elapsed_sec: float
    input_chars: int
    input_words: int
    error: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EngineHealth:
    name: str
    status: str = EngineHealthStatus.HEALTHY
    requirements: tuple[str, ...] = ()
    message: str = ""


@dataclass(frozen=True)
class HealthReport:
    current_engine: str
    available_count: int
    unavailable_count: int
    coming_soon_count: int
    engines: tuple[EngineHealth, ...]

    @property
    def total_engines(self) -> int:
        return len(self.engines)


@dataclass(frozen=True)
class SummaryStatistics:
    total_summaries: int
    average_confidence: float
    by_engine: dict
    by_content_type: dict


# ── Validation & pipeline reports ─────────────────────────────────────

@dataclass(frozen=True)
class FitnessReport:
    is_fit: bool
    word_count: int
    reason: str = ""
    show_verbatim: bool = False


@dataclass(frozen=True)
class SummaryQuality:
    score: float
    tier: str
    issues: tuple[str, ...] = ()

    @property
    def acceptable(self) -> bool:
        return self.tier != QualityTier.UNACCEPTABLE


@dataclass
class PipelineReport:
    recording_id: str
    outcome: str                     # PipelineOutcome value
    summary: Optional[SummaryResult] = None
    transcript: Optional[str] = None
    reason: str = ""
    recovery_actions: list = field(default_factory=list)
    quality: Optional[SummaryQuality] = None
    fallback_used: bool = False
