"""
Application configuration manager.
Stores settings in a JSON file under the user config directory.
"""

import json
import logging
import os
from pathlib import Path

from audio_journal.core.constants import (
    CONFIG_PATH, CHUNK_OVERLAP_SEC, EXPORT_TIMEOUT_SEC,
    POLL_INTERVAL_SEC, POLL_TIMEOUT_SEC,
    MIN_WORD_COUNT, REPETITION_FLOOR, LYRICS_REPETITION_FLOOR, ERROR_TOKEN_RATIO,
    ENGINE_TIMEOUT_SEC, RETRY_DELAY_SEC, MONITOR_INTERVAL_SEC, SHORTEN_WORD_BUDGET,
    MAX_SUMMARY_LENGTH, MAX_TASKS, MAX_REMINDERS, MIN_CONFIDENCE,
    OLLAMA_URL, OLLAMA_PORT, OLLAMA_MODEL, OPENAI_BASE_URL, OPENAI_MODEL,
    CONNECTIVITY_CHECK_URL,
)

logger = logging.getLogger(__name__)

# key -> (type, min, max)
_BOUNDS = {
    'chunk_overlap_sec': (float, 0.0, 30.0),
    'export_timeout_sec': (int, 10, 3600),
    'poll_interval_sec': (float, 1.0, 300.0),
    'poll_timeout_sec': (float, 60.0, 14400.0),
    'min_word_count': (int, 1, 1000),
    'repetition_floor': (float, 0.05, 0.95),
    'lyrics_repetition_floor': (float, 0.01, 0.95),
    'error_token_ratio': (float, 0.05, 1.0),
    'engine_timeout_sec': (float, 5.0, 1800.0),
    'retry_delay_sec': (float, 0.0, 300.0),
    'monitor_interval_sec': (float, 5.0, 3600.0),
    'shorten_word_budget': (int, 100, 20000),
    'max_summary_length': (int, 100, 5000),
    'max_tasks': (int, 1, 50),
    'max_reminders': (int, 1, 50),
    'min_confidence': (float, 0.0, 1.0),
    'ollama_port': (int, 1, 65535),
}

_DEFAULTS = {
    'chunk_overlap_sec': CHUNK_OVERLAP_SEC,
    'export_timeout_sec': EXPORT_TIMEOUT_SEC,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'poll_timeout_sec': POLL_TIMEOUT_SEC,
    'min_word_count': MIN_WORD_COUNT,
    'repetition_floor': REPETITION_FLOOR,
    'lyrics_repetition_floor': LYRICS_REPETITION_FLOOR,
    'error_token_ratio': ERROR_TOKEN_RATIO,
    'engine_timeout_sec': ENGINE_TIMEOUT_SEC,
    'retry_delay_sec': RETRY_DELAY_SEC,
    'monitor_interval_sec': MONITOR_INTERVAL_SEC,
    'shorten_word_budget': SHORTEN_WORD_BUDGET,
    'max_summary_length': MAX_SUMMARY_LENGTH,
    'max_tasks': MAX_TASKS,
    'max_reminders': MAX_REMINDERS,
    'min_confidence': MIN_CONFIDENCE,
    'ollama_url': OLLAMA_URL,
    'ollama_port': OLLAMA_PORT,
    'ollama_model': OLLAMA_MODEL,
    'openai_base_url': OPENAI_BASE_URL,
    'openai_model': OPENAI_MODEL,
    'openai_api_key': "",
    'whisper_url': "",
    'keep_chunk_artifacts': False,
    'connectivity_check_url': CONNECTIVITY_CHECK_URL,
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)
                return
            for key, value in saved.items():
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _BOUNDS:
            cast, low, high = _BOUNDS[key]
            try:
                value = cast(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(low, min(high, value))

        if key == 'keep_chunk_artifacts':
            return bool(value)

        if key in ('ollama_url', 'openai_base_url', 'whisper_url', 'connectivity_check_url'):
            return str(value or "").rstrip('/')

        return value

    def as_dict(self) -> dict:
        """Config snapshot with secrets masked."""
        data = dict(self._data)
        if data.get('openai_api_key'):
            data['openai_api_key'] = "***"
        return data

    # ── Typed accessors ───────────────────────────────────────────────

    @property
    def chunk_overlap_sec(self) -> float:
        return self._data['chunk_overlap_sec']

    @property
    def export_timeout_sec(self) -> int:
        return self._data['export_timeout_sec']

    @property
    def poll_interval_sec(self) -> float:
        return self._data['poll_interval_sec']

    @property
    def poll_timeout_sec(self) -> float:
        return self._data['poll_timeout_sec']

    @property
    def engine_timeout_sec(self) -> float:
        return self._data['engine_timeout_sec']

    @property
    def retry_delay_sec(self) -> float:
        return self._data['retry_delay_sec']

    @property
    def monitor_interval_sec(self) -> float:
        return self._data['monitor_interval_sec']

    @property
    def shorten_word_budget(self) -> int:
        return self._data['shorten_word_budget']

    @property
    def ollama_base_url(self) -> str:
        return f"{self._data['ollama_url']}:{self._data['ollama_port']}"

    @property
    def openai_api_key(self) -> str:
        return os.environ.get("OPENAI_API_KEY") or self._data.get('openai_api_key', "")

    @openai_api_key.setter
    def openai_api_key(self, value: str):
        self._data['openai_api_key'] = value
        self.save()

    @property
    def keep_chunk_artifacts(self) -> bool:
        return self._data.get('keep_chunk_artifacts', False)

    @keep_chunk_artifacts.setter
    def keep_chunk_artifacts(self, value: bool):
        self._data['keep_chunk_artifacts'] = bool(value)
        self.save()
