"""
Chunk boundary planning.
Pure functions: (duration, size, limit) -> ordered (start, end) boundaries.

Size-based limits are converted to an equivalent duration ceiling using the
file's average bytes-per-second, then planned the same way as duration limits.
Chunk sizes are not re-checked after export.
"""

import math
import logging

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, ChunkingStrategy, TranscriptionBackendKind, CHUNK_OVERLAP_SEC,
    OPENAI_MAX_BYTES, WHISPER_MAX_SEC, CLOUD_JOB_MAX_SEC, ON_DEVICE_MAX_SEC,
)
from audio_journal.core.models import ChunkingLimit

logger = logging.getLogger(__name__)

# float noise guard for ceil(duration / max_chunk)
_EPSILON = 1e-9


def limit_for_backend(backend: str, overlap_sec: float = CHUNK_OVERLAP_SEC) -> ChunkingLimit:
    """Return the upload limit for a transcription backend kind."""
    if backend == TranscriptionBackendKind.OPENAI:
        return ChunkingLimit(ChunkingStrategy.FILE_SIZE, max_bytes=OPENAI_MAX_BYTES,
                             overlap_sec=overlap_sec)
    if backend == TranscriptionBackendKind.WHISPER:
        return ChunkingLimit(ChunkingStrategy.DURATION, max_seconds=WHISPER_MAX_SEC,
                             overlap_sec=overlap_sec)
    if backend == TranscriptionBackendKind.CLOUD_JOB:
        return ChunkingLimit(ChunkingStrategy.DURATION, max_seconds=CLOUD_JOB_MAX_SEC,
                             overlap_sec=overlap_sec)
    if backend == TranscriptionBackendKind.ON_DEVICE:
        return ChunkingLimit(ChunkingStrategy.DURATION, max_seconds=ON_DEVICE_MAX_SEC,
                             overlap_sec=overlap_sec)
    raise JobError(ErrorCode.INVALID_INPUT, f"Unknown transcription backend '{backend}'")


def _check_inputs(duration: float, size: int, limit: ChunkingLimit):
    if duration is None or duration <= 0:
        raise JobError(ErrorCode.INVALID_INPUT, f"Duration must be positive, got {duration!r}")
    if size is None or size < 0:
        raise JobError(ErrorCode.INVALID_INPUT, f"Size must be non-negative, got {size!r}")
    if limit.overlap_sec < 0:
        raise JobError(ErrorCode.INVALID_INPUT, "Overlap must be non-negative")
    if limit.strategy == ChunkingStrategy.FILE_SIZE:
        if not limit.max_bytes or limit.max_bytes <= 0:
            raise JobError(ErrorCode.INVALID_INPUT, "File-size limit needs a positive max_bytes")
    elif limit.strategy == ChunkingStrategy.DURATION:
        if not limit.max_seconds or limit.max_seconds <= 0:
            raise JobError(ErrorCode.INVALID_INPUT, "Duration limit needs a positive max_seconds")
    else:
        raise JobError(ErrorCode.INVALID_INPUT, f"Unknown chunking strategy '{limit.strategy}'")


def needs_chunking(duration: float, size: int, limit: ChunkingLimit) -> bool:
    """Check whether a recording exceeds the backend limit."""
    _check_inputs(duration, size, limit)
    if limit.strategy == ChunkingStrategy.FILE_SIZE:
        return size > limit.max_bytes
    return duration > limit.max_seconds


def max_chunk_duration(duration: float, size: int, limit: ChunkingLimit) -> float:
    """Duration ceiling per chunk, converting a byte ceiling via average bitrate."""
    _check_inputs(duration, size, limit)
    if limit.strategy == ChunkingStrategy.DURATION:
        return float(limit.max_seconds)
    bytes_per_second = size / duration
    if bytes_per_second <= 0:
        return float(duration)
    return limit.max_bytes / bytes_per_second


def plan_by_duration(duration: float, max_duration: float,
                     overlap_sec: float = 0.0) -> list[tuple[float, float]]:
    """
    Split [0, duration] into ceil(duration / max_duration) ranges.
    Overlap is appended to every chunk except the last, whose end is
    always exactly the total duration.
    """
    if duration <= 0 or max_duration <= 0:
        raise JobError(ErrorCode.INVALID_INPUT,
                       f"Cannot plan duration={duration!r} with max={max_duration!r}")

    count = max(1, math.ceil(duration / max_duration - _EPSILON))
    bounds = []
    for i in range(count):
        start = i * max_duration
        if i == count - 1:
            end = float(duration)
        else:
            base_end = min(start + max_duration, duration)
            end = min(base_end + overlap_sec, duration)
        bounds.append((float(start), float(end)))
    return bounds


def plan_chunks(duration: float, size: int, limit: ChunkingLimit) -> list[tuple[float, float]]:
    """
    Plan chunk boundaries for one recording.
    Returns a single full-span range when the recording is within the limit.
    """
    if not needs_chunking(duration, size, limit):
        return [(0.0, float(duration))]

    max_duration = max_chunk_duration(duration, size, limit)
    bounds = plan_by_duration(duration, max_duration, limit.overlap_sec)
    logger.debug("Planned %d chunks (max %.1fs, overlap %.1fs) for %.1fs",
                 len(bounds), max_duration, limit.overlap_sec, duration)
    return bounds


def plan_word_batches(words: list[str], budget: int, overlap_words: int = 0) -> list[list[str]]:
    """
    Split a word list into batches of at most budget (+overlap) words,
    reusing the duration strategy with word positions as the time axis.
    """
    if not words:
        return []
    if budget <= 0:
        raise JobError(ErrorCode.INVALID_INPUT, f"Word budget must be positive, got {budget!r}")
    if len(words) <= budget:
        return [list(words)]

    batches = []
    for start, end in plan_by_duration(len(words), budget, overlap_words):
        batches.append(words[int(start):int(end)])
    return batches
