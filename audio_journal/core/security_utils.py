"""
Security utilities for AudioJournal.
- Safe subprocess execution (argument arrays only, optionally cancellable)
- Recording name sanitization
"""

import re
import subprocess
import threading
import time
import logging

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import ErrorCode, UNSAFE_FILENAME_CHARS, MAX_NAME_LENGTH

logger = logging.getLogger(__name__)


# ── Name safety ───────────────────────────────────────────────────────

def sanitize_name(name: str, max_len: int = MAX_NAME_LENGTH) -> str:
    """Sanitize a generated recording name for display and file use."""
    if not name:
        return ""
    safe = re.sub(UNSAFE_FILENAME_CHARS, ' ', name)
    safe = safe.replace('..', '')
    safe = re.sub(r'\s+', ' ', safe).strip()
    if len(safe) > max_len:
        # cut on a word boundary when one exists
        cut = safe[:max_len + 1]
        space = cut.rfind(' ')
        safe = cut[:space] if space > max_len // 2 else safe[:max_len]
    return safe.strip(' .,;:-')


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: float = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


def run_subprocess_cancellable(args: list[str], cancel_event: threading.Event | None = None,
                               timeout: float = 300, poll_interval: float = 0.25,
                               **kwargs) -> subprocess.CompletedProcess:
    """
    Run a subprocess that is terminated when cancel_event is set.
    Raises subprocess.TimeoutExpired after timeout, JobError(CANCELLED) on cancel.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    kwargs.pop('shell', None)
    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    process = subprocess.Popen(args, shell=False, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                               text=True, **kwargs)
    deadline = time.monotonic() + timeout
    try:
        while True:
            try:
                stdout, stderr = process.communicate(timeout=poll_interval)
                return subprocess.CompletedProcess(args, process.returncode, stdout, stderr)
            except subprocess.TimeoutExpired:
                pass
            if cancel_event is not None and cancel_event.is_set():
                _stop(process)
                raise JobError(ErrorCode.CANCELLED, f"{args[0]} cancelled")
            if time.monotonic() >= deadline:
                _stop(process)
                raise subprocess.TimeoutExpired(args, timeout)
    finally:
        if process.poll() is None:
            _stop(process)


def _stop(process: subprocess.Popen, grace: float = 5.0):
    """SIGTERM first, SIGKILL if the process does not exit in time."""
    if process.poll() is not None:
        return
    logger.debug("Terminating subprocess PID=%d", process.pid)
    process.terminate()
    try:
        process.communicate(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.warning("PID=%d ignored SIGTERM, killing", process.pid)
        process.kill()
        process.communicate()
