"""
Content analysis heuristics.
Classifies transcripts (meeting / journal / technical / general), scores
sentence importance and picks key phrases. Used by the offline engine and
as the default sentence scorer for the fallback summary.
"""

import re
from collections import Counter

from audio_journal.core.constants import ContentType, MAX_SUMMARY_LENGTH, NO_CONTENT_SUMMARY

MEETING_KEYWORDS = [
    "meeting", "agenda", "action item", "follow up", "next steps",
    "discuss", "decision", "agree", "disagree", "vote", "consensus",
    "attendees", "participants", "minutes", "schedule", "calendar",
    "presentation", "slides", "demo", "review", "feedback",
    "team", "group", "everyone", "we should", "let's",
    "deadline", "timeline", "milestone", "project", "task assignment",
]
CONVERSATION_INDICATORS = [
    "said", "mentioned", "asked", "replied", "responded", "suggested",
    "she said", "he mentioned", "speaker 1", "speaker 2", "speaker 3",
]
SPEAKER_PATTERNS = [r"speaker \d+", r"\w+ said", r"\w+ mentioned", r"\w+ asked"]

JOURNAL_KEYWORDS = [
    "i feel", "i think", "i believe", "i remember", "i realized",
    "today", "yesterday", "this morning", "tonight", "this week",
    "my day", "my life", "my experience", "my thoughts", "my feelings",
    "grateful", "thankful", "blessed", "happy", "sad", "excited",
    "worried", "anxious", "peaceful", "content", "frustrated",
    "learned", "discovered", "noticed", "observed", "reflected",
]
PERSONAL_PRONOUNS = ["i ", "my ", "me ", "myself "]
EMOTIONAL_WORDS = [
    "love", "hate", "fear", "hope", "dream", "wish", "want", "need",
    "amazing", "wonderful", "terrible", "awful", "beautiful", "peaceful",
]

TECHNICAL_KEYWORDS = [
    "algorithm", "function", "method", "class", "object", "variable",
    "database", "server", "client", "api", "endpoint", "request", "response",
    "code", "programming", "development", "software", "hardware",
    "system", "architecture", "framework", "library", "module",
    "bug", "error", "exception", "debug", "test", "unit test",
    "deployment", "production", "staging", "environment",
    "performance", "optimization", "scalability", "security",
]
TECHNICAL_PATTERNS = [
    r"\w+\.\w+\(\)",
    r"\w+\[\d+\]",
    r"\d+\.\d+\.\d+",
    r"https?://",
    r"\w+@\w+\.\w+",
]

IMPORTANT_TERMS = [
    "important", "critical", "urgent", "priority", "key", "main", "primary",
    "need", "must", "should", "required", "necessary", "essential",
    "remember", "remind", "don't forget", "make sure", "ensure",
    "deadline", "due", "before", "after", "schedule",
    "call", "meet", "visit", "send", "email",
    "buy", "bring", "pick up", "drop off", "return",
    "decision", "conclusion", "result", "outcome", "summary", "key point",
]
TIME_INDICATORS = [
    "today", "tomorrow", "yesterday", "next week", "next month",
    "this morning", "this afternoon", "this evening", "tonight",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "june",
    "july", "august", "september", "october", "november", "december",
]

FILLER_PATTERN = re.compile(r"\b(?:um|uh|you know)\b[,]?\s*", re.IGNORECASE)

STOPWORDS = {
    "the", "and", "that", "this", "with", "have", "from", "they", "were", "what",
    "when", "there", "their", "about", "would", "could", "should", "which", "will",
    "just", "been", "into", "then", "than", "them", "these", "those", "some", "also",
    "really", "going", "think", "know", "like", "yeah", "okay", "because", "where",
    "your", "here", "very", "much", "more", "said", "need", "want", "make", "made",
}

_CLASSIFY_THRESHOLD = 0.3


def preprocess_text(text: str) -> str:
    """Collapse whitespace and remove filler words."""
    normalized = re.sub(r"\s+", " ", text.strip())
    return re.sub(r"\s+", " ", FILLER_PATTERN.sub("", normalized)).strip()


def extract_sentences(text: str) -> list[str]:
    """Split on sentence punctuation, dropping fragments of 10 characters or fewer."""
    parts = re.split(r"[.!?]+", text)
    return [p.strip() for p in parts if len(p.strip()) > 10]


def _contains_count(text: str, phrases: list[str]) -> int:
    return sum(1 for p in phrases if p in text)


def meeting_score(text: str) -> float:
    score = _contains_count(text, MEETING_KEYWORDS) * 1.0
    score += _contains_count(text, CONVERSATION_INDICATORS) * 1.5
    for pattern in SPEAKER_PATTERNS:
        matches = len(re.findall(pattern, text))
        if matches > 1:
            score += matches * 0.5
    return min(score / 10.0, 1.0)


def journal_score(text: str) -> float:
    score = _contains_count(text, JOURNAL_KEYWORDS) * 1.0
    padded = f" {text} "
    for pronoun in PERSONAL_PRONOUNS:
        score += padded.count(f" {pronoun}") * 0.3
    score += _contains_count(text, EMOTIONAL_WORDS) * 0.5
    return min(score / 15.0, 1.0)


def technical_score(text: str) -> float:
    score = _contains_count(text, TECHNICAL_KEYWORDS) * 1.0
    for pattern in TECHNICAL_PATTERNS:
        score += len(re.findall(pattern, text)) * 0.5
    words = text.split()
    if words:
        technical_words = sum(1 for w in words if any(k in w for k in TECHNICAL_KEYWORDS))
        score += technical_words / len(words) * 5.0
    return min(score / 10.0, 1.0)


def classify_content(text: str) -> str:
    """Return the ContentType whose normalised score is highest and above 0.3."""
    lowered = preprocess_text(text).lower()
    if not lowered:
        return ContentType.GENERAL

    scores = [
        (ContentType.MEETING, meeting_score(lowered)),
        (ContentType.PERSONAL_JOURNAL, journal_score(lowered)),
        (ContentType.TECHNICAL, technical_score(lowered)),
    ]
    best_type, best_score = max(scores, key=lambda s: s[1])
    return best_type if best_score > _CLASSIFY_THRESHOLD else ContentType.GENERAL


def is_repetitive(sentence: str) -> bool:
    words = sentence.lower().split()
    if not words:
        return False
    return len(set(words)) / len(words) < 0.6


def key_term_score(sentence: str) -> float:
    lowered = sentence.lower()
    return _contains_count(lowered, IMPORTANT_TERMS) * 1.0 + _contains_count(lowered, TIME_INDICATORS) * 1.5


def score_sentence(sentence: str, index: int, total: int) -> float:
    """
    Importance of one sentence at position index of total.
    Medium-length sentences, key terms, time references and the opening
    and closing sentences score higher; repetitive sentences are halved.
    """
    sentence = sentence.strip()
    if not sentence:
        return 0.0

    words = len(sentence.split())
    if 8 <= words <= 25:
        score = 2.0
    elif 5 <= words <= 7 or 26 <= words <= 35:
        score = 1.0
    elif 36 <= words <= 50:
        score = 0.5
    else:
        score = 0.1

    score += key_term_score(sentence)

    if index == 0 or index == total - 1:
        score += 1.5
    elif index < 3 or index >= total - 3:
        score += 1.0

    if is_repetitive(sentence):
        score *= 0.5
    return score


SUMMARY_HEADERS = {
    ContentType.MEETING: "## Meeting Summary",
    ContentType.PERSONAL_JOURNAL: "## Personal Reflection",
    ContentType.TECHNICAL: "## Technical Summary",
    ContentType.GENERAL: "## Summary",
}


def build_basic_summary(text: str, content_type: str | None = None, scorer=score_sentence,
                        max_sentences: int = 4, max_length: int = MAX_SUMMARY_LENGTH) -> str:
    """
    Extractive summary: the highest-scoring sentences as bullets, in their
    original order, under a content-type header. scorer(sentence, index, total)
    returns a float.
    """
    sentences = extract_sentences(preprocess_text(text or ""))
    if not sentences:
        return NO_CONTENT_SUMMARY

    content_type = content_type or classify_content(text)
    total = len(sentences)
    ranked = sorted(range(total), key=lambda i: scorer(sentences[i], i, total), reverse=True)
    chosen = sorted(ranked[:max_sentences])

    header = SUMMARY_HEADERS.get(content_type, SUMMARY_HEADERS[ContentType.GENERAL])
    lines = []
    length = len(header) + 2
    for i in chosen:
        bullet = f"• {sentences[i]}."
        if lines and length + len(bullet) + 1 > max_length:
            break
        lines.append(bullet)
        length += len(bullet) + 1
    return header + "\n\n" + "\n".join(lines)


def extract_key_phrases(text: str, max_phrases: int = 10) -> list[str]:
    """Most frequent content words, capitalised words first on ties."""
    tokens = re.findall(r"[A-Za-z][A-Za-z'-]{3,}", text)
    counts = Counter()
    capitalised = set()
    for i, token in enumerate(tokens):
        lowered = token.lower()
        if lowered in STOPWORDS:
            continue
        counts[lowered] += 1
        if token[0].isupper() and i > 0:
            capitalised.add(lowered)

    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0] not in capitalised, kv[0]))
    return [word for word, _ in ranked[:max_phrases]]
