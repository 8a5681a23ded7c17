"""
Standardised error handling for AudioJournal.
"""

from audio_journal.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when chunking, transcription or summarization hits a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


_RECOVERY_SUGGESTIONS = {
    ErrorCode.CONFIGURATION_MISSING: "Check the engine settings and provide the missing credentials or server address.",
    ErrorCode.CHUNK_EXPORT_FAILED: "Make sure ffmpeg is installed and the recording is readable, then try again.",
    ErrorCode.REASSEMBLY_FAILED: "Re-run transcription for the recording; one or more chunks are missing.",
    ErrorCode.JOB_SUBMIT_FAILED: "Check your network connection and backend credentials, then resubmit.",
    ErrorCode.JOB_POLL_FAILED: "The backend could not be reached; the job will be checked again later.",
    ErrorCode.JOB_FAILED: "The transcription service rejected the recording. Try a different engine.",
    ErrorCode.JOB_NOT_FOUND: "The job no longer exists on the backend. Submit the recording again.",
    ErrorCode.JOB_TIMED_OUT: "The job is still running remotely; check again later to pick up the result.",
    ErrorCode.INVALID_RESULT_FORMAT: "The backend returned an unexpected transcript format.",
    ErrorCode.INSUFFICIENT_CONTENT: "Record a longer session with clearer speech.",
    ErrorCode.ENGINE_UNAVAILABLE: "Switch to another engine or check the engine's requirements.",
    ErrorCode.PROCESSING_TIMEOUT: "Try again, or split the transcript into shorter parts.",
    ErrorCode.CLEANUP_FAILED: "Remove the leftover chunk files from the temporary directory manually.",
    ErrorCode.INVALID_INPUT: "Check the input values and try again.",
    ErrorCode.AUDIO_INSPECT_FAILED: "Make sure the recording exists and ffprobe is installed.",
    ErrorCode.OPERATION_CONFLICT: "Wait for the running operation to finish or cancel it first.",
    ErrorCode.CANCELLED: "The operation was cancelled; start it again when ready.",
    ErrorCode.NETWORK_TRANSIENT: "Check your internet connection and try again.",
    ErrorCode.QUOTA_EXCEEDED: "Service quota exceeded. Wait a while or switch engines.",
    ErrorCode.PROCESSING_FAILED: "Try again, or switch to the offline engine.",
}


def recovery_suggestion(code: str) -> str:
    return _RECOVERY_SUGGESTIONS.get(code, "Try again later.")
