"""
Rule-based task and reminder extraction plus recording-name generation.
No network access; used by the offline engine and the fallback path.
"""

import datetime
import logging
import re

from audio_journal.core.constants import (
    TaskPriority, TaskCategory, ReminderUrgency, ContentType,
    TASK_PRIORITY_ORDER, REMINDER_URGENCY_ORDER,
    MAX_TASKS, MAX_REMINDERS, MIN_CONFIDENCE, MAX_NAME_LENGTH,
)
from audio_journal.core.content_analyzer import extract_sentences, extract_key_phrases
from audio_journal.core.models import TaskItem, ReminderItem
from audio_journal.core.security_utils import sanitize_name

logger = logging.getLogger(__name__)

# (phrase, category, base priority), first match wins
TASK_PATTERNS = [
    ("need to call", TaskCategory.CALL, TaskPriority.MEDIUM),
    ("have to call", TaskCategory.CALL, TaskPriority.HIGH),
    ("must call", TaskCategory.CALL, TaskPriority.HIGH),
    ("call", TaskCategory.CALL, TaskPriority.MEDIUM),
    ("phone", TaskCategory.CALL, TaskPriority.MEDIUM),

    ("need to meet", TaskCategory.MEETING, TaskPriority.MEDIUM),
    ("schedule meeting", TaskCategory.MEETING, TaskPriority.MEDIUM),
    ("meeting with", TaskCategory.MEETING, TaskPriority.MEDIUM),
    ("appointment", TaskCategory.MEETING, TaskPriority.MEDIUM),

    ("need to buy", TaskCategory.PURCHASE, TaskPriority.MEDIUM),
    ("have to buy", TaskCategory.PURCHASE, TaskPriority.MEDIUM),
    ("purchase", TaskCategory.PURCHASE, TaskPriority.MEDIUM),
    ("order", TaskCategory.PURCHASE, TaskPriority.LOW),

    ("need to email", TaskCategory.EMAIL, TaskPriority.MEDIUM),
    ("send email", TaskCategory.EMAIL, TaskPriority.MEDIUM),
    ("email", TaskCategory.EMAIL, TaskPriority.LOW),
    ("message", TaskCategory.EMAIL, TaskPriority.LOW),

    ("need to research", TaskCategory.RESEARCH, TaskPriority.LOW),
    ("look into", TaskCategory.RESEARCH, TaskPriority.LOW),
    ("investigate", TaskCategory.RESEARCH, TaskPriority.MEDIUM),
    ("find out", TaskCategory.RESEARCH, TaskPriority.LOW),

    ("need to go", TaskCategory.TRAVEL, TaskPriority.MEDIUM),
    ("have to go", TaskCategory.TRAVEL, TaskPriority.MEDIUM),
    ("visit", TaskCategory.TRAVEL, TaskPriority.MEDIUM),
    ("travel to", TaskCategory.TRAVEL, TaskPriority.MEDIUM),

    ("doctor", TaskCategory.HEALTH, TaskPriority.MEDIUM),
    ("medical", TaskCategory.HEALTH, TaskPriority.HIGH),
    ("health", TaskCategory.HEALTH, TaskPriority.MEDIUM),
]

URGENT_INDICATORS = ["urgent", "asap", "immediately", "right away", "today", "now"]
HIGH_INDICATORS = ["important", "critical", "must", "have to", "tomorrow"]
LOW_INDICATORS = ["maybe", "eventually", "sometime", "when possible"]
STRONG_VERBS = ["must", "need", "have to", "should", "will"]
TARGET_WORDS = ["with", "about", "for"]

REMINDER_INDICATORS = [
    "remind me", "don't forget", "remember to", "make sure to",
    "deadline", "due", "appointment", "meeting at", "call at",
]
STRONG_REMINDER_WORDS = ["deadline", "due", "appointment", "meeting", "call"]

TIME_PHRASES = [
    "later today", "later this week", "this morning", "this afternoon", "this evening",
    "next week", "next month", "next year", "today", "tomorrow", "tonight",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "june",
    "july", "august", "september", "october", "november", "december",
]
TIME_REGEXES = [
    re.compile(r"\bat \d{1,2}(:\d{2})?\s?(am|pm)?\b", re.IGNORECASE),
    re.compile(r"\bby \d{1,2}(:\d{2})?\s?(am|pm)?\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}(:\d{2})?\s?(am|pm)\b", re.IGNORECASE),
    re.compile(r"\bin \d+ (hours?|minutes?|days?)\b", re.IGNORECASE),
]

TASK_PREFIXES = ["i need to", "i have to", "i must", "we need to", "we have to", "we must"]
REMINDER_PREFIXES = ["remind me to", "don't forget to", "remember to", "make sure to"]

NAME_PREFIXES = {
    ContentType.MEETING: "Meeting",
    ContentType.PERSONAL_JOURNAL: "Journal",
    ContentType.TECHNICAL: "Tech",
    ContentType.GENERAL: "Note",
}


def _mentions(lowered: str, phrase: str) -> bool:
    return re.search(r"\b" + re.escape(phrase), lowered) is not None


def _mentions_any(lowered: str, phrases: list[str]) -> bool:
    return any(_mentions(lowered, p) for p in phrases)


def extract_time_reference(sentence: str) -> str | None:
    """First time phrase (title-cased) or clock/offset expression in the sentence."""
    lowered = sentence.lower()
    for phrase in TIME_PHRASES:
        if re.search(r"\b" + re.escape(phrase) + r"\b", lowered):
            return phrase.title()
    for regex in TIME_REGEXES:
        match = regex.search(sentence)
        if match:
            return match.group(0)
    return None


def _strip_prefix(sentence: str, prefixes: list[str]) -> str:
    cleaned = sentence.strip()
    lowered = cleaned.lower()
    for prefix in prefixes:
        if lowered.startswith(prefix):
            cleaned = cleaned[len(prefix):].strip()
            break
    if cleaned:
        cleaned = cleaned[0].upper() + cleaned[1:]
    return cleaned


# ── Tasks ─────────────────────────────────────────────────────────────

def adjust_priority(base: str, sentence: str) -> str:
    lowered = sentence.lower()
    if _mentions_any(lowered, URGENT_INDICATORS):
        return TaskPriority.HIGH
    if _mentions_any(lowered, HIGH_INDICATORS):
        return TaskPriority.MEDIUM if base == TaskPriority.LOW else TaskPriority.HIGH
    if _mentions_any(lowered, LOW_INDICATORS):
        return TaskPriority.LOW
    return base


def task_confidence(sentence: str) -> float:
    lowered = sentence.lower()
    confidence = 0.5
    if _mentions_any(lowered, STRONG_VERBS):
        confidence += 0.2
    if any(re.search(rf"\b{w}\b", lowered) for w in TARGET_WORDS):
        confidence += 0.1
    if extract_time_reference(sentence) is not None:
        confidence += 0.2
    return min(round(confidence, 2), 1.0)


def task_from_sentence(sentence: str, min_confidence: float = MIN_CONFIDENCE) -> TaskItem | None:
    lowered = sentence.lower()
    for phrase, category, base_priority in TASK_PATTERNS:
        if not _mentions(lowered, phrase):
            continue
        confidence = task_confidence(sentence)
        if confidence < min_confidence:
            continue
        text = _strip_prefix(sentence, TASK_PREFIXES)
        if text and text[-1] not in ".!?":
            text += "."
        return TaskItem(
            text=text,
            priority=adjust_priority(base_priority, sentence),
            time_reference=extract_time_reference(sentence),
            category=category,
            confidence=confidence,
        )
    return None


def extract_tasks(text: str, max_tasks: int = MAX_TASKS,
                  min_confidence: float = MIN_CONFIDENCE) -> list[TaskItem]:
    """Tasks from every sentence, deduplicated by text, highest priority first."""
    tasks = []
    seen = set()
    for sentence in extract_sentences(text):
        task = task_from_sentence(sentence, min_confidence)
        if task is None or task.text.lower() in seen:
            continue
        seen.add(task.text.lower())
        tasks.append(task)

    tasks.sort(key=lambda t: (TASK_PRIORITY_ORDER[t.priority], -t.confidence))
    return tasks[:max_tasks]


# ── Reminders ─────────────────────────────────────────────────────────

def reminder_urgency(sentence: str) -> str:
    lowered = sentence.lower()
    if _mentions_any(lowered, ["now", "immediately", "asap"]):
        return ReminderUrgency.IMMEDIATE
    if _mentions_any(lowered, ["today", "this morning", "this afternoon", "tonight"]):
        return ReminderUrgency.TODAY
    if _mentions_any(lowered, ["this week", "tomorrow", "monday", "tuesday",
                               "wednesday", "thursday", "friday"]):
        return ReminderUrgency.THIS_WEEK
    return ReminderUrgency.LATER


def reminder_confidence(sentence: str, has_indicator: bool, has_time: bool) -> float:
    confidence = 0.3
    if has_indicator:
        confidence += 0.3
    if has_time:
        confidence += 0.4
    if _mentions_any(sentence.lower(), STRONG_REMINDER_WORDS):
        confidence += 0.2
    return min(round(confidence, 2), 1.0)


def reminder_from_sentence(sentence: str, min_confidence: float = MIN_CONFIDENCE) -> ReminderItem | None:
    lowered = sentence.lower()
    has_indicator = _mentions_any(lowered, REMINDER_INDICATORS)
    time_ref = extract_time_reference(sentence)
    if not has_indicator and time_ref is None:
        return None

    confidence = reminder_confidence(sentence, has_indicator, time_ref is not None)
    if confidence < min_confidence:
        return None
    return ReminderItem(
        text=_strip_prefix(sentence, REMINDER_PREFIXES),
        time_reference=time_ref or "No specific time",
        urgency=reminder_urgency(sentence),
        confidence=confidence,
    )


def extract_reminders(text: str, max_reminders: int = MAX_REMINDERS,
                      min_confidence: float = MIN_CONFIDENCE) -> list[ReminderItem]:
    reminders = []
    seen = set()
    for sentence in extract_sentences(text):
        reminder = reminder_from_sentence(sentence, min_confidence)
        if reminder is None or reminder.text.lower() in seen:
            continue
        seen.add(reminder.text.lower())
        reminders.append(reminder)

    reminders.sort(key=lambda r: (REMINDER_URGENCY_ORDER[r.urgency], -r.confidence))
    return reminders[:max_reminders]


# ── Recording names ───────────────────────────────────────────────────

def generate_recording_name(text: str, content_type: str, tasks: list[TaskItem],
                            reminders: list[ReminderItem], now: datetime.datetime | None = None,
                            max_len: int = MAX_NAME_LENGTH) -> str:
    """
    Short descriptive name: a high-priority task, else an urgent reminder,
    else the top key phrases, else "<Type> Mon d".
    """
    for task in tasks:
        if task.priority == TaskPriority.HIGH:
            name = sanitize_name(task.text.rstrip(".!?"), max_len)
            if name:
                return name

    for reminder in reminders:
        if reminder.urgency in (ReminderUrgency.IMMEDIATE, ReminderUrgency.TODAY):
            name = sanitize_name(reminder.text.rstrip(".!?"), max_len)
            if name:
                return name

    phrases = extract_key_phrases(text, max_phrases=3)
    if len(phrases) >= 2:
        name = sanitize_name(" ".join(p.title() for p in phrases), max_len)
        if name:
            return name

    now = now or datetime.datetime.now()
    prefix = NAME_PREFIXES.get(content_type, "Note")
    return f"{prefix} {now.strftime('%b')} {now.day}"
