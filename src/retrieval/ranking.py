"""Keyword relevance ranking for chunks and transcript segments.

Used where no vector similarity is available: the in-memory vector store
and the segment-based chat strategy.
"""

from __future__ import annotations

import re
import unicodedata
from typing import TypeVar

from src.ingestion.models import TranscriptSegment

T = TypeVar("T")

CHAT_STOPWORDS = frozenset({"porque", "quais", "sobre", "quantos", "qual", "como", "quando", "onde"})
SELLER_PATTERN = re.compile(r"vendedor|freelaw|representante|seller|sales", re.IGNORECASE)

_WORD_RE = re.compile(r"[^\W_]+")


def normalize_text(text: str) -> str:
    """Lowercase and strip accents (NFD decomposition)."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def keyword_score(text: str, query_words: list[str]) -> int:
    """Score *text* against normalized query words.

    +3 for each word found verbatim; words longer than four characters that
    miss get +1 when a stem (60% of the word, at least three characters)
    is found instead.
    """
    normalized = normalize_text(text)
    score = 0
    for word in query_words:
        if word in normalized:
            score += 3
        elif len(word) > 4:
            stem = word[: max(3, int(len(word) * 0.6))]
            if stem in normalized:
                score += 1
    return score


def query_words(query: str) -> list[str]:
    """Normalized query words longer than two characters."""
    return [w for w in _WORD_RE.findall(normalize_text(query)) if len(w) > 2]


def rank_by_keywords(
    items: list[T], texts: list[str], starts: list[float], query: str
) -> list[T]:
    """Order *items* by keyword score, boosting earlier positions slightly.

    Items that score zero are dropped. Ties break on start time.
    """
    words = query_words(query)
    if not words:
        return []
    total = len(items) or 1
    scored: list[tuple[float, float, T]] = []
    for position, (item, text, start) in enumerate(zip(items, texts, starts, strict=True)):
        score = keyword_score(text, words)
        if score <= 0:
            continue
        boost = (1 - position / total) * 0.2
        scored.append((score + boost, start, item))
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [item for _, _, item in scored]


def question_keywords(question: str) -> list[str]:
    """Lowercased question tokens longer than three characters, minus stopwords."""
    tokens = _WORD_RE.findall(question.lower())
    return [t for t in tokens if len(t) > 3 and t not in CHAT_STOPWORDS]


def score_segment(segment: TranscriptSegment, question: str, keywords: list[str]) -> int:
    """+5 for the whole question, +2 per keyword, -1 for seller turns."""
    text = segment.text.lower()
    score = 0
    normalized_question = question.lower().strip()
    if normalized_question and normalized_question in text:
        score += 5
    for keyword in keywords:
        if keyword in text:
            score += 2
    if segment.speaker and SELLER_PATTERN.search(segment.speaker):
        score -= 1
    return score


def pick_relevant_segments(
    question: str, segments: list[TranscriptSegment], max_segments: int = 8
) -> list[TranscriptSegment]:
    """Top positively-scored segments, or the first *max_segments* if none score.

    The ranked list is ordered by score, highest first; ties keep
    transcript order.
    """
    if not segments:
        return []
    keywords = question_keywords(question)
    scored = [(score_segment(s, question, keywords), i, s) for i, s in enumerate(segments)]
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    top = [s for score, _, s in scored if score > 0][:max_segments]
    if top:
        return top
    return segments[:max_segments]
