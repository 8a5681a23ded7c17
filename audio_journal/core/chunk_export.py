"""
Audio chunking operation.
Plans boundaries, exports each range with ffmpeg (or any ChunkExporter),
and owns the temporary chunk files until cleanup.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from audio_journal.core.security_utils import run_subprocess_cancellable
from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, CHUNK_DIR_PREFIX, CHUNK_FILE_MARKER, EXPORT_TIMEOUT_SEC,
)
from audio_journal.core.models import AudioChunk, AudioInfo, ChunkingLimit, ChunkingResult
from audio_journal.core.ports import ChunkExporter
from audio_journal.core.audio_inspect import inspect_audio
from audio_journal.core.chunk_planner import plan_chunks
from audio_journal.core.inflight import InFlightGuard

logger = logging.getLogger(__name__)


class FfmpegChunkExporter(ChunkExporter):
    """
    Cuts a time range out of a recording without re-encoding.
    Setting cancel_event stops a running ffmpeg process.
    """

    def export(self, source: Path, start_time: float, end_time: float,
               destination: Path, timeout: float | None = None,
               cancel_event: Optional[threading.Event] = None) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        args = [
            "ffmpeg",
            "-y",
            "-i", str(source),
            "-ss", f"{start_time:.3f}",
            "-t", f"{end_time - start_time:.3f}",
            "-codec:a", "copy",
            str(destination),
        ]

        try:
            result = run_subprocess_cancellable(args, cancel_event, timeout=timeout or EXPORT_TIMEOUT_SEC)
        except subprocess.TimeoutExpired:
            raise JobError(ErrorCode.CHUNK_EXPORT_FAILED,
                           f"ffmpeg timed out exporting {destination.name}")
        except OSError as e:
            raise JobError(ErrorCode.CHUNK_EXPORT_FAILED, f"ffmpeg could not be started: {e}")

        if result.returncode != 0:
            raise JobError(ErrorCode.CHUNK_EXPORT_FAILED,
                           f"ffmpeg failed for {destination.name}: "
                           f"{result.stderr[:200] if result.stderr else 'unknown error'}")

        if not destination.exists():
            raise JobError(ErrorCode.CHUNK_EXPORT_FAILED, f"Chunk file {destination.name} not created")

        return destination


def chunk_file_name(original: Path, index: int) -> str:
    return f"{original.stem}{CHUNK_FILE_MARKER}{index}{original.suffix}"


class AudioChunker:
    """
    Runs one chunking operation per recording.
    Emits chunks in sequence-number order; cancelling or failing removes
    every chunk file written so far.
    """

    def __init__(self, exporter: ChunkExporter | None = None,
                 inspector: Callable[[Path], AudioInfo] = inspect_audio,
                 guard: InFlightGuard | None = None):
        self.exporter = exporter or FfmpegChunkExporter()
        self.inspector = inspector
        self.guard = guard or InFlightGuard("chunking")

    def chunk_file(self, recording: Path, limit: ChunkingLimit,
                   cancel_event: Optional[threading.Event] = None,
                   export_timeout: float | None = None,
                   recording_id: str | None = None) -> ChunkingResult:
        recording = Path(recording)
        key = recording_id or str(recording)
        with self.guard.claim(key):
            return self._chunk(recording, limit, cancel_event, export_timeout)

    def _chunk(self, recording: Path, limit: ChunkingLimit,
               cancel_event: Optional[threading.Event],
               export_timeout: float | None) -> ChunkingResult:
        started = time.monotonic()
        info = self.inspector(recording)
        bounds = plan_chunks(info.duration_sec, info.size_bytes, limit)

        if len(bounds) == 1:
            chunk = AudioChunk(
                original_ref=recording,
                chunk_ref=recording,
                sequence_number=0,
                start_time=0.0,
                end_time=info.duration_sec,
                byte_size=info.size_bytes,
            )
            return ChunkingResult([chunk], info.duration_sec, info.size_bytes,
                                  time.monotonic() - started)

        temp_dir = Path(tempfile.mkdtemp(prefix=CHUNK_DIR_PREFIX))
        result = ChunkingResult([], info.duration_sec, info.size_bytes, temp_dir=temp_dir)
        logger.info("Chunking %s into %d parts in %s", recording.name, len(bounds), temp_dir)

        try:
            for index, (start, end) in enumerate(bounds):
                if cancel_event is not None and cancel_event.is_set():
                    raise JobError(ErrorCode.CANCELLED, f"Chunking of {recording.name} cancelled")

                destination = temp_dir / chunk_file_name(recording, index)
                try:
                    path = self.exporter.export(recording, start, end, destination, export_timeout,
                                                cancel_event=cancel_event)
                except JobError:
                    raise
                except (OSError, subprocess.SubprocessError) as e:
                    raise JobError(ErrorCode.CHUNK_EXPORT_FAILED, f"Chunk {index} export failed: {e}")

                result.chunks.append(AudioChunk(
                    original_ref=recording,
                    chunk_ref=path,
                    sequence_number=index,
                    start_time=start,
                    end_time=end,
                    byte_size=path.stat().st_size if path.exists() else 0,
                ))
                logger.debug("Exported chunk %d: %.1f-%.1fs", index, start, end)

            if cancel_event is not None and cancel_event.is_set():
                raise JobError(ErrorCode.CANCELLED, f"Chunking of {recording.name} cancelled")
        except JobError:
            self._discard_partial(temp_dir, recording)
            raise

        result.elapsed_time = time.monotonic() - started
        logger.info("Created %d chunks for %s in %.2fs",
                    len(result.chunks), recording.name, result.elapsed_time)
        return result

    @staticmethod
    def _discard_partial(temp_dir: Path, original: Path):
        """Remove a half-built chunk directory; the original is never touched."""
        if temp_dir.resolve() == original.parent.resolve():
            return
        shutil.rmtree(temp_dir, ignore_errors=True)
        if temp_dir.exists():
            logger.warning("Could not fully remove partial chunks in %s", temp_dir)

    @staticmethod
    def validate_chunks(result: ChunkingResult) -> bool:
        """Check every chunk file exists and is readable."""
        for chunk in result.chunks:
            path = chunk.chunk_ref
            if not path.is_file() or not os.access(path, os.R_OK):
                logger.warning("Chunk %d missing or unreadable: %s", chunk.sequence_number, path)
                return False
        return True

    @staticmethod
    def cleanup_chunks(result: ChunkingResult):
        """
        Delete chunk files and their temp directory.
        The original recording is never deleted.
        """
        errors = []
        for chunk in result.chunks:
            if chunk.chunk_ref == chunk.original_ref:
                continue
            try:
                chunk.chunk_ref.unlink(missing_ok=True)
                logger.debug("Deleted: %s", chunk.chunk_ref)
            except OSError as e:
                errors.append(f"{chunk.chunk_ref.name}: {e}")

        temp_dir = result.temp_dir
        if temp_dir is not None and temp_dir.exists():
            leftovers = list(temp_dir.iterdir())
            if all(CHUNK_FILE_MARKER in p.name for p in leftovers):
                try:
                    shutil.rmtree(temp_dir)
                    logger.debug("Removed chunk directory: %s", temp_dir)
                except OSError as e:
                    errors.append(f"{temp_dir}: {e}")
            else:
                logger.warning("Leaving %s in place, it holds non-chunk files", temp_dir)

        if errors:
            raise JobError(ErrorCode.CLEANUP_FAILED, "; ".join(errors))
