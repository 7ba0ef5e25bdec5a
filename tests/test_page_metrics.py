import pytest

from sitescope.parsing.html_extractor import PageData, extract_page_data
from sitescope.parsing.page_metrics import (
    INDEXABLE,
    NON_INDEXABLE,
    analyze_text,
    carbon_rating,
    compute_page_metrics,
    readability_rating,
    status_text,
)


def test_analyze_text_counts_words_and_sentences():
    analysis = analyze_text("The cat sat. The dog ran! Did it?")

    assert analysis.word_count == 8
    assert analysis.sentence_count == 3
    assert analysis.avg_words_per_sentence == pytest.approx(8 / 3)
    assert analysis.flesch_reading_ease_score > 90


def test_analyze_text_empty():
    analysis = analyze_text("   ")

    assert analysis.word_count == 0
    assert analysis.flesch_reading_ease_score == 0


@pytest.mark.parametrize(
    "score,rating",
    [(95, "Very Easy"), (85, "Easy"), (72, "Fairly Easy"), (60, "Standard"), (55, "Fairly Difficult"), (30, "Difficult"), (10, "Very Difficult")],
)
def test_readability_rating_bands(score, rating):
    assert readability_rating(score) == rating


@pytest.mark.parametrize(
    "size,rating",
    [(10_000, "A+"), (50_000, "A"), (150_000, "B"), (250_000, "C"), (400_000, "D"), (900_000, "E"), (2_000_000, "F")],
)
def test_carbon_rating_bands(size, rating):
    assert carbon_rating(size) == rating


def test_status_text_known_and_unknown():
    assert status_text(200) == "OK"
    assert status_text(404) == "Not Found"
    assert status_text(799) == "Unknown"


def test_compute_page_metrics_uses_headers():
    html = "<html><head><meta name='robots' content='noindex'></head><body><p>Short text here.</p></body></html>"
    page = extract_page_data(html)
    metrics = compute_page_metrics(
        page,
        html,
        response_time_ms=120,
        headers={"Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT", "Set-Cookie": "a=b"},
        http_version="HTTP/1.1",
    )

    assert metrics.size_bytes == len(html.encode("utf-8"))
    assert metrics.co2_mg == metrics.size_bytes * 0.5
    assert metrics.carbon_rating == "A+"
    assert metrics.word_count == 3
    assert metrics.text_ratio > 0
    assert metrics.last_modified.year == 2015
    assert metrics.cookies == "a=b"
    assert metrics.http_version == "HTTP/1.1"


def test_indexability_checks_meta_and_header():
    from sitescope.parsing.page_metrics import indexability

    assert indexability(PageData(meta_robots="NOINDEX, follow")) == NON_INDEXABLE
    assert indexability(PageData(), {"X-Robots-Tag": "noindex"}) == NON_INDEXABLE
    assert indexability(PageData(meta_robots="index")) == INDEXABLE
