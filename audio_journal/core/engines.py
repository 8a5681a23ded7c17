"""
Summarization engines.

EngineKind is the closed set of known engines; each kind maps to one
SummarizationEngine implementation:
- OfflineEngine: rule-based, no network, always available.
- OllamaEngine / OpenAIEngine: network LLM engines over a CompletionBackend.
- PlaceholderEngine: announced engines that are not usable yet.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from enum import Enum

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, ContentType, TaskPriority, TaskCategory, ReminderUrgency,
    MAX_TASKS, MAX_REMINDERS, MIN_CONFIDENCE, MAX_SUMMARY_LENGTH, OFFLINE_MAX_INPUT_WORDS,
    OLLAMA_URL, OLLAMA_PORT, OLLAMA_MODEL, OPENAI_BASE_URL, OPENAI_MODEL, ENGINE_TIMEOUT_SEC,
)
from audio_journal.core.content_analyzer import (
    build_basic_summary, classify_content, score_sentence,
)
from audio_journal.core.extractors import extract_tasks, extract_reminders
from audio_journal.core.llm_clients import OllamaClient, OpenAIClient
from audio_journal.core.models import EngineOutput, TaskItem, ReminderItem
from audio_journal.core.ports import CompletionBackend

logger = logging.getLogger(__name__)


class EngineKind(Enum):
    """Known engines, in registry order."""
    OFFLINE = "Offline Analysis"
    LOCAL_LLM = "Local LLM (Ollama)"
    OPENAI = "OpenAI"
    BEDROCK = "AWS Bedrock"
    WHISPER = "Whisper-Based"

    @classmethod
    def from_name(cls, name: str) -> "EngineKind | None":
        for kind in cls:
            if kind.value == name or kind.name == name:
                return kind
        return None


LLM_ITEM_CONFIDENCE = 0.8


class SummarizationEngine(ABC):
    kind: EngineKind
    version = "1.0"
    is_coming_soon = False
    # independent sub-calls may run on a thread pool
    concurrent_calls = False

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the engine can be used right now."""

    def requirements(self) -> list[str]:
        """Human-readable unmet requirements, empty when available."""
        return []

    @abstractmethod
    def generate_summary(self, text: str) -> str:
        ...

    @abstractmethod
    def extract_tasks(self, text: str) -> list[TaskItem]:
        ...

    @abstractmethod
    def extract_reminders(self, text: str) -> list[ReminderItem]:
        ...

    @abstractmethod
    def classify_content(self, text: str) -> str:
        ...

    def generate_titles(self, text: str) -> list[str]:
        return []

    def process_complete(self, text: str, timeout: float | None = None) -> EngineOutput:
        """
        Run summary, task, reminder, classification and title calls on the
        same text. The result is assembled only after every call has returned.
        """
        calls = {
            'summary': self.generate_summary,
            'tasks': self.extract_tasks,
            'reminders': self.extract_reminders,
            'content_type': self.classify_content,
            'titles': self.generate_titles,
        }
        if not self.concurrent_calls:
            results = {key: fn(text) for key, fn in calls.items()}
            return EngineOutput(**results)

        pool = ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix=f"engine-{self.kind.name.lower()}")
        try:
            futures = {key: pool.submit(fn, text) for key, fn in calls.items()}
            done, not_done = wait_futures(futures.values(), timeout=timeout)
            if not_done:
                for future in not_done:
                    future.cancel()
                raise JobError(ErrorCode.PROCESSING_TIMEOUT,
                               f"{self.name} did not finish within {timeout:.0f}s")
            results = {key: future.result() for key, future in futures.items()}
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return EngineOutput(**results)


# ── Offline engine ────────────────────────────────────────────────────

class OfflineEngine(SummarizationEngine):
    """Local heuristics only. Never touches the network."""

    kind = EngineKind.OFFLINE

    def __init__(self, config=None, sentence_scorer=score_sentence):
        self.config = config
        self.sentence_scorer = sentence_scorer

    def _setting(self, key: str, default):
        return self.config.get(key, default) if self.config is not None else default

    @staticmethod
    def _cap(text: str) -> str:
        words = text.split()
        if len(words) <= OFFLINE_MAX_INPUT_WORDS:
            return text
        logger.debug("Offline engine truncating input from %d to %d words",
                     len(words), OFFLINE_MAX_INPUT_WORDS)
        return ' '.join(words[:OFFLINE_MAX_INPUT_WORDS])

    def is_available(self) -> bool:
        return True

    def generate_summary(self, text: str) -> str:
        return build_basic_summary(
            self._cap(text),
            scorer=self.sentence_scorer,
            max_length=self._setting('max_summary_length', MAX_SUMMARY_LENGTH),
        )

    def extract_tasks(self, text: str) -> list[TaskItem]:
        return extract_tasks(self._cap(text),
                             max_tasks=self._setting('max_tasks', MAX_TASKS),
                             min_confidence=self._setting('min_confidence', MIN_CONFIDENCE))

    def extract_reminders(self, text: str) -> list[ReminderItem]:
        return extract_reminders(self._cap(text),
                                 max_reminders=self._setting('max_reminders', MAX_REMINDERS),
                                 min_confidence=self._setting('min_confidence', MIN_CONFIDENCE))

    def classify_content(self, text: str) -> str:
        return classify_content(self._cap(text))


# ── Network LLM engines ───────────────────────────────────────────────

SUMMARY_PROMPT = """Please provide a concise summary of the following transcript. Focus on the main points, key decisions, and important information. Keep the summary under {words} words.

Format your response using markdown: bold for key points, bullet points for lists, paragraph breaks where needed.

Transcript:
{text}

Summary:"""

TASKS_PROMPT = """Analyze the following transcript and extract any tasks or to-dos mentioned.

Return ONLY this JSON (no markdown):
{{"tasks": [{{"text": "task description", "priority": "High|Medium|Low", "category": "Call|Email|Meeting|Purchase|Research|Travel|Health|General", "timeReference": "time if mentioned, otherwise null"}}]}}

Only include items you are at least 80% confident about. Return an empty array if there are none.

Transcript:
{text}"""

REMINDERS_PROMPT = """Analyze the following transcript and extract any reminders, deadlines or appointments mentioned.

Return ONLY this JSON (no markdown):
{{"reminders": [{{"text": "reminder description", "urgency": "Immediate|Today|This Week|Later", "timeReference": "time if mentioned, otherwise null"}}]}}

Only include items you are at least 80% confident about. Return an empty array if there are none.

Transcript:
{text}"""

CLASSIFY_PROMPT = """Classify the following transcript as exactly one of: Meeting, Personal Journal, Technical, General.
Answer with the category name only.

Transcript:
{text}"""

TITLE_PROMPT = """Generate a concise, descriptive title (2-5 words) for this transcript. Capture the main topic. Return ONLY the title, no quotes or explanation.

Transcript:
{text}"""

_TITLE_PREFIXES = ["title:", "name:", "generated title:", "the title is:", "here's the title:"]


def parse_json_object(response: str) -> dict:
    """Extract the outermost JSON object from an LLM response."""
    start = response.find('{')
    end = response.rfind('}')
    if start == -1 or end <= start:
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, "Response contains no JSON object")
    try:
        data = json.loads(response[start:end + 1])
    except json.JSONDecodeError as e:
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, f"Failed to parse JSON response: {e}")
    if not isinstance(data, dict):
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, "JSON response is not an object")
    return data


def _pick(value, allowed: list[str], default: str) -> str:
    for option in allowed:
        if isinstance(value, str) and value.strip().lower() == option.lower():
            return option
    return default


def parse_tasks(data: dict) -> list[TaskItem]:
    priorities = [TaskPriority.HIGH, TaskPriority.MEDIUM, TaskPriority.LOW]
    categories = [TaskCategory.CALL, TaskCategory.EMAIL, TaskCategory.MEETING, TaskCategory.PURCHASE,
                  TaskCategory.RESEARCH, TaskCategory.TRAVEL, TaskCategory.HEALTH, TaskCategory.GENERAL]
    tasks = []
    for raw in data.get('tasks') or []:
        if not isinstance(raw, dict) or not str(raw.get('text', '')).strip():
            continue
        tasks.append(TaskItem(
            text=str(raw['text']).strip(),
            priority=_pick(raw.get('priority'), priorities, TaskPriority.MEDIUM),
            time_reference=raw.get('timeReference') or None,
            category=_pick(raw.get('category'), categories, TaskCategory.GENERAL),
            confidence=LLM_ITEM_CONFIDENCE,
        ))
    return tasks


def parse_reminders(data: dict) -> list[ReminderItem]:
    urgencies = [ReminderUrgency.IMMEDIATE, ReminderUrgency.TODAY,
                 ReminderUrgency.THIS_WEEK, ReminderUrgency.LATER]
    reminders = []
    for raw in data.get('reminders') or []:
        if not isinstance(raw, dict) or not str(raw.get('text', '')).strip():
            continue
        reminders.append(ReminderItem(
            text=str(raw['text']).strip(),
            time_reference=raw.get('timeReference') or "No specific time",
            urgency=_pick(raw.get('urgency'), urgencies, ReminderUrgency.LATER),
            confidence=LLM_ITEM_CONFIDENCE,
        ))
    return reminders


def clean_title(response: str) -> str | None:
    """Normalise a model-generated title; None when it looks like nonsense."""
    title = response.replace('"', '').replace("'", '').replace('*', '').replace('#', '').strip()
    lowered = title.lower()
    for prefix in _TITLE_PREFIXES:
        if lowered.startswith(prefix):
            title = title[len(prefix):].strip()
            break
    title = re.sub(r"[.!?]+$", "", title).strip()[:50].strip()

    words = title.split()
    if len(words) < 2 or len(words) > 6:
        return None
    if len({w.lower() for w in words}) < int(len(words) * 0.7):
        return None
    return title


class LLMEngine(SummarizationEngine):
    """Engine backed by a text-completion service."""

    concurrent_calls = True

    def __init__(self, client: CompletionBackend, config=None):
        self.client = client
        self.config = config

    def _complete(self, prompt: str) -> str:
        response = self.client.complete(prompt)
        if not response or not response.strip():
            raise JobError(ErrorCode.INVALID_RESULT_FORMAT, f"{self.name} returned an empty response")
        return response.strip()

    def _limit(self, key: str, default: int) -> int:
        return self.config.get(key, default) if self.config is not None else default

    def generate_summary(self, text: str) -> str:
        words = max(50, self._limit('max_summary_length', MAX_SUMMARY_LENGTH) // 2)
        return self._complete(SUMMARY_PROMPT.format(words=words, text=text))

    def extract_tasks(self, text: str) -> list[TaskItem]:
        data = parse_json_object(self._complete(TASKS_PROMPT.format(text=text)))
        return parse_tasks(data)[:self._limit('max_tasks', MAX_TASKS)]

    def extract_reminders(self, text: str) -> list[ReminderItem]:
        data = parse_json_object(self._complete(REMINDERS_PROMPT.format(text=text)))
        return parse_reminders(data)[:self._limit('max_reminders', MAX_REMINDERS)]

    def classify_content(self, text: str) -> str:
        answer = self._complete(CLASSIFY_PROMPT.format(text=text))
        types = [ContentType.PERSONAL_JOURNAL, ContentType.MEETING, ContentType.TECHNICAL, ContentType.GENERAL]
        for content_type in types:
            if content_type.lower() in answer.lower():
                return content_type
        logger.debug("%s gave unrecognised classification %r, using local heuristic", self.name, answer[:40])
        return classify_content(text)

    def generate_titles(self, text: str) -> list[str]:
        title = clean_title(self._complete(TITLE_PROMPT.format(text=text)))
        return [title] if title else []


class OllamaEngine(LLMEngine):
    kind = EngineKind.LOCAL_LLM

    def is_available(self) -> bool:
        return self.client.is_reachable()

    def requirements(self) -> list[str]:
        if self.is_available():
            return []
        return ["Ollama server running and reachable", "A downloaded model"]


class OpenAIEngine(LLMEngine):
    kind = EngineKind.OPENAI

    def _has_key(self) -> bool:
        return bool(getattr(self.client, 'api_key', ''))

    def is_available(self) -> bool:
        return self._has_key()

    def requirements(self) -> list[str]:
        return [] if self._has_key() else ["OpenAI API key"]


# ── Announced engines ─────────────────────────────────────────────────

class PlaceholderEngine(SummarizationEngine):
    """An engine that is listed but not usable yet."""

    is_coming_soon = True

    def __init__(self, kind: EngineKind, requirements: list[str]):
        self.kind = kind
        self._requirements = list(requirements)

    def is_available(self) -> bool:
        return False

    def requirements(self) -> list[str]:
        return list(self._requirements)

    def _unavailable(self, *_args):
        raise JobError(ErrorCode.ENGINE_UNAVAILABLE, f"{self.name} is coming soon")

    generate_summary = _unavailable
    extract_tasks = _unavailable
    extract_reminders = _unavailable
    classify_content = _unavailable


def build_engines(config=None, ollama_client: CompletionBackend | None = None,
                  openai_client: CompletionBackend | None = None) -> dict[EngineKind, SummarizationEngine]:
    """One live instance per EngineKind."""
    if ollama_client is None:
        base = config.ollama_base_url if config is not None else f"{OLLAMA_URL}:{OLLAMA_PORT}"
        ollama_client = OllamaClient(
            base,
            model=config.get('ollama_model', OLLAMA_MODEL) if config is not None else OLLAMA_MODEL,
            timeout=config.engine_timeout_sec if config is not None else ENGINE_TIMEOUT_SEC,
        )
    if openai_client is None:
        openai_client = OpenAIClient(
            config.openai_api_key if config is not None else "",
            base_url=config.get('openai_base_url', OPENAI_BASE_URL) if config is not None else OPENAI_BASE_URL,
            model=config.get('openai_model', OPENAI_MODEL) if config is not None else OPENAI_MODEL,
            timeout=config.engine_timeout_sec if config is not None else ENGINE_TIMEOUT_SEC,
        )

    engines = {
        EngineKind.OFFLINE: OfflineEngine(config),
        EngineKind.LOCAL_LLM: OllamaEngine(ollama_client, config),
        EngineKind.OPENAI: OpenAIEngine(openai_client, config),
        EngineKind.BEDROCK: PlaceholderEngine(EngineKind.BEDROCK, ["AWS credentials", "Bedrock model access"]),
        EngineKind.WHISPER: PlaceholderEngine(EngineKind.WHISPER, ["Whisper summarization service"]),
    }
    missing = set(EngineKind) - set(engines)
    if missing:
        raise JobError(ErrorCode.CONFIGURATION_MISSING, f"No engine for {sorted(k.name for k in missing)}")
    return engines
