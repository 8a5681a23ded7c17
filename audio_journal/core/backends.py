"""
Transcription backend adapters.

- WhisperHttpBackend: synchronous, OpenAI-compatible /audio/transcriptions
  (hosted API or a self-hosted Whisper server).
- parse_transcript_json: result documents produced by asynchronous cloud
  transcription jobs.
"""

import logging
from pathlib import Path

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import ErrorCode, WHISPER_MODEL
from audio_journal.core.http_utils import request_with_backoff, response_json
from audio_journal.core.models import TranscriptSegment
from audio_journal.core.ports import SyncTranscriptionBackend

logger = logging.getLogger(__name__)

DEFAULT_SPEAKER = "Speaker"


class WhisperHttpBackend(SyncTranscriptionBackend):
    """Whisper transcription over HTTP, returning timed segments."""

    def __init__(self, base_url: str, api_key: str = "", model: str = WHISPER_MODEL,
                 timeout: float | None = None):
        if not base_url:
            raise JobError(ErrorCode.CONFIGURATION_MISSING, "Whisper server URL is not configured")
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def transcribe(self, audio: Path) -> tuple[str, list[TranscriptSegment]]:
        audio = Path(audio)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        # ~1 min per 10MB, minimum 120s
        timeout = self.timeout or max(120, int(audio.stat().st_size / (10 * 1024 * 1024) * 60) + 60)

        with open(audio, 'rb') as f:
            resp = request_with_backoff(
                "POST", f"{self.base_url}/audio/transcriptions", "Whisper",
                timeout=timeout,
                headers=headers,
                files={"file": (audio.name, f)},
                data={"model": self.model, "response_format": "verbose_json"},
            )
        return parse_whisper_json(response_json(resp, "Whisper"))


def parse_whisper_json(data: dict) -> tuple[str, list[TranscriptSegment]]:
    if not isinstance(data, dict) or 'text' not in data:
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, "Whisper response has no 'text' field")

    segments = []
    for seg in data.get('segments') or []:
        text = (seg.get('text') or '').strip()
        if not text:
            continue
        segments.append(TranscriptSegment(
            speaker_label=DEFAULT_SPEAKER,
            text=text,
            start_time=float(seg.get('start', 0.0)),
            end_time=float(seg.get('end', 0.0)),
        ))
    return data['text'].strip(), segments


def parse_transcript_json(data: dict) -> tuple[str, list[TranscriptSegment]]:
    """
    Read a cloud transcription result document:
    results.transcripts[0].transcript plus optional speaker_labels.segments,
    whose words are attributed from results.items by start time.
    """
    try:
        results = data['results']
        text = results['transcripts'][0]['transcript']
    except (KeyError, IndexError, TypeError):
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, "Transcript document has no transcript text")

    items = [i for i in results.get('items', []) if i.get('type', 'pronunciation') == 'pronunciation'
             and 'start_time' in i]
    label_segments = (results.get('speaker_labels') or {}).get('segments') or []

    segments = []
    try:
        for index, seg in enumerate(label_segments):
            start = float(seg['start_time'])
            end = float(seg['end_time'])
            is_last = index == len(label_segments) - 1
            words, confidences = [], []
            for item in items:
                item_start = float(item['start_time'])
                if start <= item_start < end or (is_last and item_start == end):
                    alt = (item.get('alternatives') or [{}])[0]
                    words.append(alt.get('content', ''))
                    confidences.append(float(alt.get('confidence', 1.0)))
            if not words:
                continue
            segments.append(TranscriptSegment(
                speaker_label=seg.get('speaker_label', DEFAULT_SPEAKER),
                text=' '.join(words),
                start_time=start,
                end_time=end,
                confidence=sum(confidences) / len(confidences),
            ))
    except (KeyError, TypeError, ValueError) as e:
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, f"Malformed speaker segments: {e}")

    return text.strip(), segments

