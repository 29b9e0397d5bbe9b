"""AI visibility scoring: metric extraction from item markup and the score table.

extract_metrics() parses the item body with BeautifulSoup and counts the
structural signals AI search engines rely on. compute_score() turns them
into a deterministic 0-100 score. build_signals() renders the same
metrics as a short red/orange/green checklist.
"""

import re
from typing import Callable
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from models import Metrics

ScoreAdjuster = Callable[[int, Metrics], int]

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_FAQ_PATTERN = re.compile(r"faq|frequently asked questions", re.IGNORECASE)
_SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")

# (minimum, points), highest threshold first
WORD_COUNT_RULES = [(300, 30), (150, 20), (80, 10)]
HEADING_RULES = [(4, 20), (2, 12), (1, 6)]
INTERNAL_LINK_RULES = [(8, 20), (4, 12), (2, 6)]


def _tiered(value: int | float, rules: list[tuple[int, int]]) -> int:
    for minimum, points in rules:
        if value >= minimum:
            return points
    return 0


def strip_tags(markup: str) -> str:
    """Return visible text of `markup` with scripts and styles removed."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


def normalize_host(value: str) -> str:
    """Accept a bare host or a full URL and return the lowercase host."""
    value = str(value or "").strip().lower()
    if not value:
        return ""
    if "//" not in value:
        value = "//" + value
    return (urlparse(value).hostname or "").strip()


def count_links(soup: BeautifulSoup, site_host: str) -> tuple[int, int]:
    """Return (internal, external) link counts.

    Relative hrefs are internal; absolute hrefs are internal when their
    host matches `site_host`.
    """
    own_host = normalize_host(site_host)
    internal = 0
    external = 0
    for a in soup.find_all("a", href=True):
        href = (a["href"] or "").strip()
        if not href or href.lower().startswith(_SKIPPED_HREF_PREFIXES):
            continue
        try:
            parsed = urlparse(href)
        except ValueError:
            continue
        host = (parsed.hostname or "").lower()
        if not host:
            if parsed.scheme:
                continue
            internal += 1
        elif own_host and host == own_host:
            internal += 1
        else:
            external += 1
    return internal, external


def estimate_avg_sentence_length(text: str, word_count: int) -> float:
    text = text.strip()
    if not text:
        return 0.0
    sentences = [part for part in _SENTENCE_SPLIT.split(text) if part.strip()]
    return word_count / max(1, len(sentences))


def extract_metrics(
    title: str,
    content: str,
    site_host: str = "",
    has_ai_summary: bool = False,
    has_ai_qa: bool = False,
) -> Metrics:
    """Compute visibility metrics from an item's title and body markup."""
    title = str(title or "")
    content = str(content or "")

    text = strip_tags(f"{title} {content}")
    word_count = len(text.split()) if text else 0

    soup = BeautifulSoup(content, "html.parser")
    internal_links, external_links = count_links(soup, site_host)

    return Metrics(
        word_count=word_count,
        h2_count=len(soup.find_all("h2")),
        h3_count=len(soup.find_all("h3")),
        internal_links=internal_links,
        external_links=external_links,
        question_marks=content.count("?"),
        has_faq_keyword=bool(_FAQ_PATTERN.search(content)),
        avg_sentence_length=estimate_avg_sentence_length(text, word_count),
        has_ai_summary=bool(has_ai_summary),
        has_ai_qa=bool(has_ai_qa),
    )


def compute_score(metrics: Metrics, adjust: ScoreAdjuster | None = None) -> int:
    """
    Score metrics 0-100 with the additive rule table.
    `adjust(score, metrics)` may rewrite the capped sum; the result is clamped again.
    """
    score = 0
    score += _tiered(metrics.word_count, WORD_COUNT_RULES)
    score += _tiered(metrics.headings, HEADING_RULES)
    score += _tiered(metrics.internal_links, INTERNAL_LINK_RULES)

    if metrics.question_marks >= 3 or metrics.has_faq_keyword:
        score += 15
    elif metrics.question_marks >= 1:
        score += 8

    asl = metrics.avg_sentence_length
    if asl > 0:
        if 12 <= asl <= 25:
            score += 15
        elif 8 <= asl <= 30:
            score += 8

    score = min(100, score)
    if adjust is not None:
        score = int(adjust(score, metrics))
    return max(0, min(100, score))


def build_signals(metrics: Metrics, entities: list[dict] | None = None) -> list[dict]:
    """Checklist of {status, text} rows for the item's visibility panel."""
    signals: list[dict] = []

    if metrics.word_count < 200:
        signals.append({"status": "red", "text": "Content is too short for AI to understand well."})
    elif metrics.word_count < 500:
        signals.append({"status": "orange", "text": "Content is a bit short; consider adding more detail."})
    else:
        signals.append({"status": "green", "text": "Content length is good."})

    if metrics.h2_count > 0:
        signals.append({"status": "green", "text": "Good use of H2 headings."})
    else:
        signals.append({"status": "orange", "text": "Add at least one H2 heading to structure your content."})

    if metrics.internal_links < 1:
        signals.append({"status": "red", "text": "No internal links found. Add links to related content."})
    else:
        signals.append({"status": "green", "text": "Internal linking looks good."})

    if metrics.has_ai_qa:
        signals.append({"status": "green", "text": "Q&A content detected."})
    else:
        signals.append(
            {"status": "orange", "text": "No Q&A / FAQ content detected. AI prefers FAQ-style signals."}
        )

    if metrics.has_ai_summary:
        signals.append({"status": "green", "text": "AI summary exists."})
    else:
        signals.append({"status": "orange", "text": "No AI summary yet. AI summaries boost visibility."})

    if entities is not None:
        entity_count = len(entities)
        main_entities = sum(1 for e in entities if e.get("role") == "main")
        if entity_count == 0:
            signals.append(
                {
                    "status": "red",
                    "text": "No clear entities detected. Focus the content on a primary topic or entity.",
                }
            )
        elif entity_count <= 6 and main_entities >= 1:
            signals.append(
                {"status": "green", "text": "Entity focus looks good. AI can clearly identify the main topic."}
            )
        elif entity_count > 10:
            signals.append(
                {"status": "orange", "text": "Many entities detected. Consider tightening focus on 1-3 main topics."}
            )
        else:
            signals.append(
                {
                    "status": "orange",
                    "text": "Entities detected, but the main topic could be clearer. Emphasize your primary entity.",
                }
            )

    return signals
