from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from http import HTTPStatus
from typing import Mapping, Optional

from sitescope.parsing.html_extractor import PageData

INDEXABLE = "Indexable"
NON_INDEXABLE = "Non-Indexable"

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_NON_VOWEL_RE = re.compile(r"[^aeiouAEIOU]")

# (upper bound in bytes, rating)
CARBON_RATINGS = (
    (50_000, "A+"),
    (100_000, "A"),
    (200_000, "B"),
    (300_000, "C"),
    (500_000, "D"),
    (1_000_000, "E"),
)

# (minimum Flesch score, rating)
READABILITY_RATINGS = (
    (90, "Very Easy"),
    (80, "Easy"),
    (70, "Fairly Easy"),
    (60, "Standard"),
    (50, "Fairly Difficult"),
    (30, "Difficult"),
)


@dataclass
class TextAnalysis:
    word_count: int = 0
    sentence_count: int = 0
    avg_words_per_sentence: float = 0.0
    flesch_reading_ease_score: float = 0.0


@dataclass
class PageMetrics:
    size_bytes: int
    transferred_bytes: int
    response_time_ms: int
    co2_mg: float
    carbon_rating: str
    word_count: int = 0
    sentence_count: int = 0
    avg_words_per_sentence: float = 0.0
    flesch_reading_ease_score: float = 0.0
    readability: str = "Very Difficult"
    text_ratio: float = 0.0
    last_modified: Optional[datetime] = None
    cookies: Optional[str] = None
    http_version: Optional[str] = None


def analyze_text(text: str) -> TextAnalysis:
    words = text.split()
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]

    analysis = TextAnalysis(word_count=len(words), sentence_count=len(sentences))
    if not words or not sentences:
        return analysis

    analysis.avg_words_per_sentence = len(words) / len(sentences)

    # one syllable per vowel, at least one per word
    syllables = sum(max(1, len(_NON_VOWEL_RE.sub("", word))) for word in words)
    avg_syllables_per_word = syllables / len(words)
    analysis.flesch_reading_ease_score = (
        206.835 - 1.015 * analysis.avg_words_per_sentence - 84.6 * avg_syllables_per_word
    )
    return analysis


def readability_rating(score: float) -> str:
    for minimum, rating in READABILITY_RATINGS:
        if score >= minimum:
            return rating
    return "Very Difficult"


def estimate_co2_mg(transferred_bytes: int) -> float:
    return transferred_bytes * 0.5


def carbon_rating(transferred_bytes: int) -> str:
    for upper_bound, rating in CARBON_RATINGS:
        if transferred_bytes < upper_bound:
            return rating
    return "F"


def status_text(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


def indexability(page: PageData, headers: Optional[Mapping[str, str]] = None) -> str:
    directives = [page.meta_robots or ""]
    if headers:
        directives.append(header_value(headers, "x-robots-tag") or "")
    if any("noindex" in value.lower() for value in directives):
        return NON_INDEXABLE
    return INDEXABLE


def compute_page_metrics(
    page: PageData,
    html: str,
    response_time_ms: int,
    headers: Optional[Mapping[str, str]] = None,
    http_version: Optional[str] = None,
) -> PageMetrics:
    size_bytes = len(html.encode("utf-8"))
    metrics = PageMetrics(
        size_bytes=size_bytes,
        transferred_bytes=size_bytes,
        response_time_ms=response_time_ms,
        co2_mg=estimate_co2_mg(size_bytes),
        carbon_rating=carbon_rating(size_bytes),
        http_version=http_version,
    )

    if page.text:
        analysis = analyze_text(page.text)
        metrics.word_count = analysis.word_count
        metrics.sentence_count = analysis.sentence_count
        metrics.avg_words_per_sentence = analysis.avg_words_per_sentence
        metrics.flesch_reading_ease_score = analysis.flesch_reading_ease_score
        metrics.text_ratio = len(page.text) / len(html) * 100 if html else 0.0
    metrics.readability = readability_rating(metrics.flesch_reading_ease_score)

    if headers:
        metrics.last_modified = _parse_http_date(header_value(headers, "last-modified"))
        metrics.cookies = header_value(headers, "set-cookie")

    return metrics


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
