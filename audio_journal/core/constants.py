"""
Shared constants for AudioJournal.
Single source of truth, imported by every other module.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "AudioJournal"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / ".config" / APP_NAME
APP_LOG_DIR = HOME / ".cache" / APP_NAME / "logs"
STORE_PATH = APP_SUPPORT_DIR / "store.db"
CONFIG_PATH = pathlib.Path(os.environ.get("AUDIO_JOURNAL_CONFIG", APP_SUPPORT_DIR / "config.json"))

CHUNK_DIR_PREFIX = "AudioChunks_"
CHUNK_FILE_MARKER = "_chunk_"

# ── Store keys ────────────────────────────────────────────────────────
STORE_KEY_SELECTED_ENGINE = "selectedAIEngine"
STORE_KEY_SUMMARIES = "summaries"
STORE_KEY_PENDING_JOBS = "pendingTranscriptionJobs"
STORE_KEY_ENGINE_FAILURES = "engineFailures"
MAX_STORED_FAILURES = 50

# ── Transcription job states ──────────────────────────────────────────
class TranscriptionJobState:
    SUBMITTED = "Submitted"
    POLLING = "Polling"
    COMPLETED = "Completed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"

TERMINAL_JOB_STATES = {
    TranscriptionJobState.COMPLETED,
    TranscriptionJobState.FAILED,
    TranscriptionJobState.TIMED_OUT,
    TranscriptionJobState.CANCELLED,
}

# Backend-reported status of a remote job
class RemoteJobState:
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

# ── Chunking strategies ───────────────────────────────────────────────
class ChunkingStrategy:
    FILE_SIZE = "file_size"
    DURATION = "duration"

# Transcription backends with distinct upload limits
class TranscriptionBackendKind:
    OPENAI = "openai"
    WHISPER = "whisper"
    CLOUD_JOB = "cloud_job"
    ON_DEVICE = "on_device"

# ── Content classification ────────────────────────────────────────────
class ContentType:
    MEETING = "Meeting"
    PERSONAL_JOURNAL = "Personal Journal"
    TECHNICAL = "Technical"
    GENERAL = "General"

class TaskPriority:
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

TASK_PRIORITY_ORDER = {TaskPriority.HIGH: 0, TaskPriority.MEDIUM: 1, TaskPriority.LOW: 2}

class TaskCategory:
    CALL = "Call"
    MEETING = "Meeting"
    PURCHASE = "Purchase"
    RESEARCH = "Research"
    EMAIL = "Email"
    TRAVEL = "Travel"
    HEALTH = "Health"
    GENERAL = "General"

class ReminderUrgency:
    IMMEDIATE = "Immediate"
    TODAY = "Today"
    THIS_WEEK = "This Week"
    LATER = "Later"

REMINDER_URGENCY_ORDER = {
    ReminderUrgency.IMMEDIATE: 0,
    ReminderUrgency.TODAY: 1,
    ReminderUrgency.THIS_WEEK: 2,
    ReminderUrgency.LATER: 3,
}

# ── Engine health / pipeline outcome ──────────────────────────────────
class EngineHealthStatus:
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    COMING_SOON = "coming_soon"

class QualityTier:
    HIGH = "High Quality"
    GOOD = "Good Quality"
    FAIR = "Fair Quality"
    LOW = "Low Quality"
    UNACCEPTABLE = "Unacceptable"

class PipelineOutcome:
    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILED = "failed"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    CONFIGURATION_MISSING = "ERR_CONFIGURATION_MISSING"
    REASSEMBLY_FAILED = "ERR_REASSEMBLY_FAILED"
    JOB_SUBMIT_FAILED = "ERR_JOB_SUBMIT_FAILED"
    JOB_FAILED = "ERR_JOB_FAILED"
    JOB_NOT_FOUND = "ERR_JOB_NOT_FOUND"
    JOB_TIMED_OUT = "ERR_JOB_TIMED_OUT"
    INVALID_RESULT_FORMAT = "ERR_INVALID_RESULT_FORMAT"
    INSUFFICIENT_CONTENT = "ERR_INSUFFICIENT_CONTENT"
    CLEANUP_FAILED = "ERR_CLEANUP_FAILED"
    INVALID_INPUT = "ERR_INVALID_INPUT"
    AUDIO_INSPECT_FAILED = "ERR_AUDIO_INSPECT_FAILED"
    OPERATION_CONFLICT = "ERR_OPERATION_CONFLICT"
    CANCELLED = "ERR_CANCELLED"
    PROCESSING_FAILED = "ERR_PROCESSING_FAILED"

    # Retryable
    CHUNK_EXPORT_FAILED = "ERR_CHUNK_EXPORT_FAILED"
    JOB_POLL_FAILED = "ERR_JOB_POLL_FAILED"
    ENGINE_UNAVAILABLE = "ERR_ENGINE_UNAVAILABLE"
    PROCESSING_TIMEOUT = "ERR_PROCESSING_TIMEOUT"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"
    QUOTA_EXCEEDED = "ERR_QUOTA_EXCEEDED"

RETRYABLE_ERRORS = {
    ErrorCode.CHUNK_EXPORT_FAILED,
    ErrorCode.JOB_POLL_FAILED,
    ErrorCode.ENGINE_UNAVAILABLE,
    ErrorCode.PROCESSING_TIMEOUT,
    ErrorCode.NETWORK_TRANSIENT,
    ErrorCode.QUOTA_EXCEEDED,
}

# ── Chunking defaults ─────────────────────────────────────────────────
CHUNK_OVERLAP_SEC = 2.0
EXPORT_TIMEOUT_SEC = 120
OPENAI_MAX_BYTES = 24 * 1024 * 1024      # hosted API upload ceiling
WHISPER_MAX_SEC = 2 * 3600
CLOUD_JOB_MAX_SEC = 2 * 3600
ON_DEVICE_MAX_SEC = 15 * 60

# ── Job polling ───────────────────────────────────────────────────────
POLL_INTERVAL_SEC = 10
POLL_TIMEOUT_SEC = 3600

# ── Transcript fitness / summary quality ──────────────────────────────
MIN_WORD_COUNT = 50
REPETITION_FLOOR = 0.3
LYRICS_REPETITION_FLOOR = 0.15
ERROR_TOKEN_RATIO = 0.3
DEDUP_PREFIX_CHARS = 50

PLACEHOLDER_PATTERNS = [
    r"^\s*processing\W*$",
    r"^\s*transcription (is )?(in progress|processing|pending)\W*$",
    r"^\s*(the )?job is (still )?running\W*$",
    r"^\s*transcribing\W*$",
    r"^\s*please wait\W*$",
    r"^\s*no transcript (is )?available( yet)?\W*$",
    r"^\s*\[?(blank_audio|no speech( detected)?|silence|inaudible)\]?\W*$",
]

ERROR_TOKENS = {
    "error", "errors", "failed", "failure", "exception", "unavailable",
    "timeout", "timed", "denied", "invalid", "null", "undefined", "nan",
    "[inaudible]", "[unintelligible]", "[error]",
}

LYRICS_INDICATORS = [
    "chorus", "verse", "oh", "ooh", "yeah", "la", "na", "hey", "baby",
    "whoa", "woah", "love", "heart", "tonight", "dance",
]

# ── Summarization defaults ────────────────────────────────────────────
MAX_SUMMARY_LENGTH = 500
MAX_TASKS = 5
MAX_REMINDERS = 5
MIN_CONFIDENCE = 0.7
ENGINE_TIMEOUT_SEC = 120
RETRY_DELAY_SEC = 5
MONITOR_INTERVAL_SEC = 30
SHORTEN_WORD_BUDGET = 1000
MAX_NAME_LENGTH = 35
OFFLINE_MAX_INPUT_WORDS = 10000

NO_CONTENT_SUMMARY = "## Summary\n\n*No meaningful content found for summarization.*"
MANUAL_SUMMARY_METHOD = "Manual Required"
CHUNKED_SUMMARY_METHOD = "Chunked Processing"

# ── Network backends ──────────────────────────────────────────────────
OLLAMA_URL = "http://localhost"
OLLAMA_PORT = 11434
OLLAMA_MODEL = "llama2:7b"
OLLAMA_MAX_TOKENS = 2048
OLLAMA_TEMPERATURE = 0.1

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_MODEL = "gpt-4o-mini"
WHISPER_MODEL = "whisper-1"

CONNECTIVITY_CHECK_URL = "https://www.apple.com"
HTTP_ERROR_BODY_CHARS = 300

# Characters forbidden in generated recording names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
