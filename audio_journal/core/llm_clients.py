"""
Completion backends for network summarization engines.
- OllamaClient: local Ollama server (/api/tags, /api/generate).
- OpenAIClient: OpenAI-compatible /chat/completions.
"""

import logging
import re

import requests

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, OLLAMA_MODEL, OLLAMA_MAX_TOKENS, OLLAMA_TEMPERATURE,
    OPENAI_BASE_URL, OPENAI_MODEL, ENGINE_TIMEOUT_SEC,
)
from audio_journal.core.http_utils import request_with_backoff, response_json
from audio_journal.core.ports import CompletionBackend

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_WORD_COUNT_RE = re.compile(r"\s*\(\d+\s+words?\)\s*$")


def strip_thinking(text: str) -> str:
    """Remove <think>...</think> reasoning blocks and trailing "(N words)" notes."""
    cleaned = _THINK_RE.sub("", text)
    if "</think>" in cleaned:
        cleaned = cleaned.rsplit("</think>", 1)[1]
    cleaned = _WORD_COUNT_RE.sub("", cleaned)
    return re.sub(r"\n{3,}", "\n\n", cleaned.replace("\\n", "\n")).strip()


class OllamaClient(CompletionBackend):

    def __init__(self, base_url: str, model: str = OLLAMA_MODEL,
                 max_tokens: int = OLLAMA_MAX_TOKENS, temperature: float = OLLAMA_TEMPERATURE,
                 timeout: float = ENGINE_TIMEOUT_SEC):
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    def is_reachable(self) -> bool:
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=5)
        except requests.exceptions.RequestException as e:
            logger.debug("Ollama not reachable at %s: %s", self.base_url, e)
            return False
        return resp.status_code == 200

    def complete(self, prompt: str, options: dict | None = None) -> str:
        opts = {
            "num_predict": self.max_tokens,
            "temperature": self.temperature,
            "top_p": 0.9,
            "top_k": 40,
        }
        opts.update(options or {})
        resp = request_with_backoff(
            "POST", f"{self.base_url}/api/generate", "Ollama",
            timeout=self.timeout,
            json={"model": self.model, "prompt": prompt, "stream": False, "options": opts},
        )
        data = response_json(resp, "Ollama")
        if 'response' not in data:
            raise JobError(ErrorCode.INVALID_RESULT_FORMAT, "Ollama response has no 'response' field")
        return strip_thinking(data['response'])


class OpenAIClient(CompletionBackend):

    def __init__(self, api_key: str, base_url: str = OPENAI_BASE_URL, model: str = OPENAI_MODEL,
                 timeout: float = ENGINE_TIMEOUT_SEC):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def is_reachable(self) -> bool:
        if not self.api_key:
            return False
        try:
            resp = requests.get(f"{self.base_url}/models", headers=self._headers(), timeout=10)
        except requests.exceptions.RequestException as e:
            logger.debug("OpenAI endpoint not reachable: %s", e)
            return False
        return resp.status_code == 200

    def complete(self, prompt: str, options: dict | None = None) -> str:
        if not self.api_key:
            raise JobError(ErrorCode.CONFIGURATION_MISSING, "OpenAI API key is not configured")
        options = dict(options or {})
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": options.pop("system", "You are a precise assistant.")},
                {"role": "user", "content": prompt},
            ],
            "temperature": options.pop("temperature", 0.1),
        }
        body.update(options)

        resp = request_with_backoff(
            "POST", f"{self.base_url}/chat/completions", "OpenAI",
            timeout=self.timeout, headers=self._headers(), json=body,
        )
        data = response_json(resp, "OpenAI")
        try:
            return data['choices'][0]['message']['content'].strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            raise JobError(ErrorCode.INVALID_RESULT_FORMAT, "OpenAI response has no message content")
