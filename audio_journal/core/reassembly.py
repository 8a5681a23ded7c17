"""
Transcript reassembly.
Merges per-chunk transcripts (chunk-local timestamps) into one global,
speaker-labelled transcript and removes content duplicated by chunk overlap.
"""

import logging
import math
import time
from collections import deque

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import ErrorCode, CHUNK_OVERLAP_SEC, DEDUP_PREFIX_CHARS
from audio_journal.core.models import (
    AudioChunk, TranscriptChunk, TranscriptSegment, ReassemblyResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SPEAKER = "Speaker"


def build_transcript_chunk(chunk: AudioChunk, text: str,
                           segments: list[TranscriptSegment],
                           speaker_mappings: dict[str, str] | None = None) -> TranscriptChunk:
    """
    Wrap one backend result for an audio chunk.
    A result without segments becomes a single segment spanning the chunk.
    """
    if not segments:
        segments = [TranscriptSegment(DEFAULT_SPEAKER, text.strip(), 0.0, chunk.duration)]
    return TranscriptChunk(
        chunk_id=f"{chunk.original_ref.stem}-{chunk.sequence_number}",
        sequence_number=chunk.sequence_number,
        raw_text=text,
        segments=list(segments),
        start_time=chunk.start_time,
        end_time=chunk.end_time,
        speaker_mappings=dict(speaker_mappings or {}),
    )


# ── Segment dedup ─────────────────────────────────────────────────────

def dedupe_key(segment: TranscriptSegment, prefix_chars: int = DEDUP_PREFIX_CHARS) -> tuple[str, int]:
    return segment.text.strip()[:prefix_chars], int(math.floor(segment.start_time + 0.5))


def dedupe_segments(segments: list[TranscriptSegment], window_sec: float = CHUNK_OVERLAP_SEC,
                    prefix_chars: int = DEDUP_PREFIX_CHARS) -> list[TranscriptSegment]:
    """
    Drop segments whose (text prefix, rounded start) key was already seen
    within the sliding window. The first occurrence is kept.
    Out-of-order input is stable-sorted by start time first.
    """
    if any(b.start_time < a.start_time for a, b in zip(segments, segments[1:])):
        segments = sorted(segments, key=lambda s: s.start_time)

    # keys of the same rounded second can be up to a second apart
    window = max(window_sec, 0.0) + 1.0
    seen: dict[tuple[str, int], float] = {}
    recent: deque = deque()
    kept = []

    for segment in segments:
        while recent and recent[0][1] < segment.start_time - window:
            old_key, old_start = recent.popleft()
            if seen.get(old_key) == old_start:
                del seen[old_key]

        key = dedupe_key(segment, prefix_chars)
        if key in seen:
            logger.debug("Dropping duplicate segment at %.2fs: %r", segment.start_time, key[0])
            continue
        seen[key] = segment.start_time
        recent.append((key, segment.start_time))
        kept.append(segment)

    return kept


# ── Reassembly ────────────────────────────────────────────────────────

def _check_sequence(chunks: list[TranscriptChunk]) -> list[TranscriptChunk]:
    if not chunks:
        raise JobError(ErrorCode.REASSEMBLY_FAILED, "No transcript chunks provided")

    ordered = sorted(chunks, key=lambda c: c.sequence_number)
    numbers = [c.sequence_number for c in ordered]
    if len(set(numbers)) != len(numbers):
        raise JobError(ErrorCode.REASSEMBLY_FAILED, "Duplicate chunk sequence numbers")
    for index, chunk in enumerate(ordered):
        if chunk.sequence_number != index:
            raise JobError(ErrorCode.REASSEMBLY_FAILED, f"Missing chunk sequence number {index}")
    return ordered


def _merge_speakers(chunks: list[TranscriptChunk]) -> tuple[dict[str, str], dict[str, list[str]]]:
    """First mapping for a label wins; differing later names are kept as aliases."""
    mappings: dict[str, str] = {}
    aliases: dict[str, list[str]] = {}
    for chunk in chunks:
        for label, name in chunk.speaker_mappings.items():
            if label not in mappings:
                mappings[label] = name
            elif mappings[label] != name and name not in aliases.get(label, []):
                aliases.setdefault(label, []).append(name)
    return mappings, aliases


def reassemble(chunks: list[TranscriptChunk], overlap_sec: float = CHUNK_OVERLAP_SEC,
               prefix_chars: int = DEDUP_PREFIX_CHARS) -> ReassemblyResult:
    """
    Merge transcript chunks into one global transcript.
    Sequence numbers must be exactly 0..N-1; any gap fails the whole merge.
    """
    started = time.monotonic()
    ordered = _check_sequence(chunks)

    global_segments = []
    for chunk in ordered:
        local = sorted(chunk.segments, key=lambda s: s.start_time)
        for seg in local:
            global_segments.append(TranscriptSegment(
                speaker_label=seg.speaker_label,
                text=seg.text,
                start_time=seg.start_time + chunk.start_time,
                end_time=seg.end_time + chunk.start_time,
                confidence=seg.confidence,
            ))

    # segments inside an overlap window can land out of order; dedupe re-sorts them
    segments = dedupe_segments(global_segments, overlap_sec, prefix_chars)

    mappings, aliases = _merge_speakers(ordered)
    full_text = ' '.join(s.text.strip() for s in segments if s.text.strip())

    elapsed = time.monotonic() - started
    logger.info("Reassembled %d chunks into %d segments (%d duplicates dropped)",
                len(ordered), len(segments), len(global_segments) - len(segments))
    return ReassemblyResult(
        segments=segments,
        full_text=full_text,
        speaker_mappings=mappings,
        speaker_aliases=aliases,
        total_segment_count=len(segments),
        elapsed_time=elapsed,
        source_chunks=ordered,
    )
