"""
Audio file inspection: duration via ffprobe, size via stat.
"""

import logging
import subprocess
from pathlib import Path

from audio_journal.core.security_utils import run_subprocess_capture
from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import ErrorCode
from audio_journal.core.models import AudioInfo

logger = logging.getLogger(__name__)


def get_audio_duration(audio_path: Path) -> float:
    """Get audio duration in seconds using ffprobe. Returns 0.0 when unknown."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(audio_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("ffprobe failed for %s: %s", audio_path, e)
        return 0.0

    if result.returncode != 0:
        logger.warning("ffprobe rc=%d for %s: %s", result.returncode, audio_path,
                       (result.stderr or "")[:200])
        return 0.0

    try:
        return float(result.stdout.strip())
    except ValueError:
        return 0.0


def inspect_audio(audio_path: Path) -> AudioInfo:
    """Report duration and byte size of a recording."""
    audio_path = Path(audio_path)
    if not audio_path.is_file():
        raise JobError(ErrorCode.AUDIO_INSPECT_FAILED, f"Recording not found: {audio_path}")

    size = audio_path.stat().st_size
    duration = get_audio_duration(audio_path)
    if duration <= 0:
        raise JobError(ErrorCode.AUDIO_INSPECT_FAILED,
                       f"Could not determine duration of {audio_path.name}")

    logger.debug("Inspected %s: %.1fs, %d bytes", audio_path.name, duration, size)
    return AudioInfo(path=audio_path, duration_sec=duration, size_bytes=size)
