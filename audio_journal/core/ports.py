"""
Abstract interfaces for the collaborators the core depends on.

The core never talks to ffmpeg, a transcription service, a completion API,
storage or a notification system directly; it goes through these contracts.
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path

from audio_journal.core.models import RemoteJobStatus, TranscriptSegment


class ChunkExporter(ABC):
    @abstractmethod
    def export(self, source: Path, start_time: float, end_time: float,
               destination: Path, timeout: float | None = None,
               cancel_event: threading.Event | None = None) -> Path:
        """
        Write the [start_time, end_time) range of source to destination. Returns the chunk path.
        An export in progress stops with JobError(CANCELLED) once cancel_event is set.
        """


class SyncTranscriptionBackend(ABC):
    @abstractmethod
    def transcribe(self, audio: Path) -> tuple[str, list[TranscriptSegment]]:
        """Transcribe a file in one call. Returns (text, segments) in file-local time."""


class AsyncTranscriptionBackend(ABC):
    @abstractmethod
    def submit(self, audio: Path) -> str:
        """Start a remote transcription job. Returns the job id."""

    @abstractmethod
    def poll(self, job_id: str) -> RemoteJobStatus:
        """Return the current remote status of a job."""

    @abstractmethod
    def fetch(self, result_locator: str) -> tuple[str, list[TranscriptSegment]]:
        """Download a finished transcript. Returns (text, segments)."""


class CompletionBackend(ABC):
    @abstractmethod
    def complete(self, prompt: str, options: dict | None = None) -> str:
        """Send a prompt to a text-generation service. Returns the generated text."""

    @abstractmethod
    def is_reachable(self) -> bool:
        """Return True if the service can currently be reached."""


class BlobStore(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the blob stored under key, or None."""

    @abstractmethod
    def set(self, key: str, blob: str) -> None:
        """Store blob under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""
