"""
Transcript fitness and summary quality checks.
"""

import logging
import re

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, QualityTier,
    MIN_WORD_COUNT, REPETITION_FLOOR, LYRICS_REPETITION_FLOOR, ERROR_TOKEN_RATIO,
    PLACEHOLDER_PATTERNS, ERROR_TOKENS, LYRICS_INDICATORS,
)
from audio_journal.core.models import FitnessReport, SummaryQuality, SummaryResult

logger = logging.getLogger(__name__)

_PLACEHOLDER_RES = [re.compile(p, re.IGNORECASE) for p in PLACEHOLDER_PATTERNS]
_LYRICS_SET = set(LYRICS_INDICATORS)
_WORD_STRIP = ".,!?;:\"'()"

# below this score a summary is unacceptable regardless of tier
_UNACCEPTABLE_SCORE = 0.25


def _thresholds(config) -> dict:
    defaults = {
        'min_word_count': MIN_WORD_COUNT,
        'repetition_floor': REPETITION_FLOOR,
        'lyrics_repetition_floor': LYRICS_REPETITION_FLOOR,
        'error_token_ratio': ERROR_TOKEN_RATIO,
    }
    if config is None:
        return defaults
    return {k: config.get(k, v) for k, v in defaults.items()}


def _normalize_words(text: str) -> list[str]:
    words = []
    for raw in text.lower().split():
        word = raw if raw.startswith('[') else raw.strip(_WORD_STRIP)
        if word:
            words.append(word)
    return words


def is_placeholder(text: str) -> bool:
    """True for status strings a backend returns instead of a transcript."""
    stripped = text.strip()
    return any(r.match(stripped) for r in _PLACEHOLDER_RES)


def error_token_ratio(words: list[str]) -> float:
    if not words:
        return 0.0
    return sum(1 for w in words if w in ERROR_TOKENS) / len(words)


def unique_ratio(words: list[str]) -> float:
    if not words:
        return 0.0
    return len(set(words)) / len(words)


def looks_like_lyrics(words: list[str]) -> bool:
    """Repeated short exclamations ("oh", "yeah", "la") typical of songs."""
    hits = sum(1 for w in words if w in _LYRICS_SET)
    return hits >= 3 and hits / len(words) >= 0.05


def validate_transcript(text: str, config=None) -> FitnessReport:
    """Decide whether a transcript is worth summarizing."""
    limits = _thresholds(config)
    text = text or ""
    words = _normalize_words(text)
    count = len(words)

    if not text.strip():
        return FitnessReport(False, 0, "Transcript is empty")

    if is_placeholder(text):
        return FitnessReport(False, count, "Transcript is a backend placeholder, not content")

    ratio = error_token_ratio(words)
    if ratio > limits['error_token_ratio']:
        return FitnessReport(False, count, f"Transcript is dominated by error output ({ratio:.0%})")

    if count < limits['min_word_count']:
        return FitnessReport(
            False, count,
            f"Transcript has {count} words, at least {limits['min_word_count']} are needed",
            show_verbatim=True,
        )

    uniq = unique_ratio(words)
    floor = limits['repetition_floor']
    if uniq < floor and looks_like_lyrics(words):
        floor = limits['lyrics_repetition_floor']
    if uniq < floor:
        return FitnessReport(False, count, f"Transcript is too repetitive (unique ratio {uniq:.2f})")

    return FitnessReport(True, count)


def ensure_fit(text: str, config=None) -> FitnessReport:
    """validate_transcript, raising INSUFFICIENT_CONTENT when unfit."""
    report = validate_transcript(text, config)
    if not report.is_fit:
        logger.info("Transcript rejected: %s", report.reason)
        raise JobError(ErrorCode.INSUFFICIENT_CONTENT, report.reason)
    return report


# ── Summary quality ───────────────────────────────────────────────────

def score_summary(summary: SummaryResult) -> SummaryQuality:
    issues = []
    text = (summary.text or "").strip()
    has_items = bool(summary.tasks or summary.reminders)

    if not text:
        issues.append("Summary is empty")
    elif len(text) < 50:
        issues.append("Summary is very short")
    if summary.confidence < 0.3:
        issues.append("Low confidence")
    if not has_items:
        issues.append("No tasks or reminders extracted")

    score = (0.4 * max(0.0, min(summary.confidence, 1.0))
             + 0.3 * min(1.0, len(text) / 200.0)
             + 0.3 * (1.0 if has_items else 0.0))
    score = round(score, 3)

    if not text or score < _UNACCEPTABLE_SCORE:
        tier = QualityTier.UNACCEPTABLE
    elif score >= 0.8:
        tier = QualityTier.HIGH
    elif score >= 0.6:
        tier = QualityTier.GOOD
    elif score >= 0.4:
        tier = QualityTier.FAIR
    else:
        tier = QualityTier.LOW

    if tier == QualityTier.UNACCEPTABLE:
        logger.warning("Summary for %s scored unacceptable (%.2f): %s",
                       summary.recording_id, score, "; ".join(issues))
    return SummaryQuality(score=score, tier=tier, issues=tuple(issues))
