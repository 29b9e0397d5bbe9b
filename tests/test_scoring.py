from bs4 import BeautifulSoup

from models import Metrics
from scoring import build_signals, compute_score, count_links, extract_metrics, normalize_host


def _full_marks_body() -> str:
    headings = "".join(f"<h2>{word}</h2>" for word in ("FAQ", "Setup", "Usage", "Tips"))
    links = "".join(f'<a href="/p{i}">link</a>' for i in range(1, 9))
    sentence = " ".join(["word"] * 15) + "."
    paragraphs = "".join(f"<p>{sentence}</p>" for _ in range(20))
    return headings + links + paragraphs


def test_full_marks_item_scores_100():
    metrics = extract_metrics("Guide", _full_marks_body(), site_host="example.com")

    assert metrics.word_count == 313
    assert metrics.headings == 4
    assert metrics.internal_links == 8
    assert metrics.has_faq_keyword is True
    assert 12 <= metrics.avg_sentence_length <= 25
    assert compute_score(metrics) == 100


def test_empty_item_scores_zero():
    metrics = extract_metrics("", "")
    assert metrics == Metrics()
    assert compute_score(metrics) == 0


def test_adjust_hook_result_is_clamped():
    metrics = extract_metrics("Guide", _full_marks_body())
    assert compute_score(metrics, lambda score, m: score + 50) == 100
    assert compute_score(metrics, lambda score, m: -20) == 0
    assert compute_score(metrics, lambda score, m: score - 10) == 90


def test_tier_boundaries():
    assert compute_score(Metrics(word_count=80)) == 10
    assert compute_score(Metrics(word_count=150)) == 20
    assert compute_score(Metrics(h2_count=1, h3_count=1)) == 12
    assert compute_score(Metrics(internal_links=4)) == 12
    assert compute_score(Metrics(question_marks=1)) == 8
    assert compute_score(Metrics(question_marks=3)) == 15
    assert compute_score(Metrics(avg_sentence_length=9.0)) == 8
    assert compute_score(Metrics(avg_sentence_length=40.0)) == 0


def test_extraction_counts_links_headings_and_questions():
    body = (
        "<h2>What is it?</h2><h3>Why?</h3><h3>How?</h3>"
        '<a href="/about">about</a>'
        '<a href="https://Example.com/blog">blog</a>'
        '<a href="https://other.org/">other</a>'
        '<a href="#top">top</a>'
        '<a href="mailto:me@example.com">mail</a>'
        '<a href="tel:123">call</a>'
        '<a href="javascript:void(0)">js</a>'
        "<script>var q = 'ignored?';</script>"
    )
    metrics = extract_metrics("Title", body, site_host="https://example.com")

    assert metrics.h2_count == 1
    assert metrics.h3_count == 2
    assert metrics.internal_links == 2
    assert metrics.external_links == 1
    assert metrics.question_marks == 4
    assert metrics.has_faq_keyword is False


def test_links_without_site_host_count_absolute_as_external():
    soup = BeautifulSoup('<a href="/a">a</a><a href="https://example.com/b">b</a>', "html.parser")
    assert count_links(soup, "") == (1, 1)


def test_normalize_host_accepts_bare_host_and_url():
    assert normalize_host("Example.com") == "example.com"
    assert normalize_host("https://www.example.com/path") == "www.example.com"
    assert normalize_host("") == ""


def test_ai_flags_are_carried_into_metrics():
    metrics = extract_metrics("t", "<p>x</p>", has_ai_summary=True, has_ai_qa=True)
    assert metrics.has_ai_summary and metrics.has_ai_qa


def test_signals_checklist():
    weak = build_signals(Metrics(word_count=50))
    assert weak[0]["status"] == "red"
    assert [s["status"] for s in weak[1:]] == ["orange", "red", "orange", "orange"]

    strong = build_signals(
        Metrics(word_count=600, h2_count=2, internal_links=3, has_ai_qa=True, has_ai_summary=True),
        entities=[{"name": "X", "role": "main"}],
    )
    assert all(s["status"] == "green" for s in strong)

    no_entities = build_signals(Metrics(word_count=600), entities=[])
    assert no_entities[-1]["status"] == "red"
