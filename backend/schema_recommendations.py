"""Deterministic schema type recommendations, run on manual scans only."""

import logging
import re
from datetime import datetime, timezone

from enrichment_gate import SCHEMA, EnrichmentGate
from models import Metrics

logger = logging.getLogger(__name__)

RECOMMENDATIONS_META_KEY = "schema_recommendations"

_FAQ_MARKERS = re.compile(r"FAQPage|faq-block|schema\.org/FAQPage", re.IGNORECASE)
_HOWTO_MARKERS = re.compile(r"HowTo|schema\.org/HowTo", re.IGNORECASE)
_ARTICLE_MARKERS = re.compile(r"schema\.org/Article|NewsArticle|BlogPosting", re.IGNORECASE)
_QUESTION_HEADING = re.compile(r"<h2[^>]*>[^<]*\?", re.IGNORECASE)
_STEP_MARKERS = [
    re.compile(r"\bstep\s*1\b", re.IGNORECASE),
    re.compile(r"<ol\b[^>]*>", re.IGNORECASE),
    re.compile(r"\bhow to\b", re.IGNORECASE),
]


def detect_existing_schema(content: str) -> dict:
    return {
        "faq": bool(_FAQ_MARKERS.search(content)),
        "howto": bool(_HOWTO_MARKERS.search(content)),
        "article": bool(_ARTICLE_MARKERS.search(content)),
    }


def build_recommendations(content: str, metrics: Metrics) -> dict:
    existing = detect_existing_schema(content)
    recommended: list[dict] = []

    if not existing["article"]:
        recommended.append(
            {
                "type": "Article",
                "reason": "Most AI search engines benefit from clear Article metadata (headline, author, dates).",
            }
        )

    has_qa_signal = metrics.has_ai_qa or metrics.question_marks >= 2
    looks_like_faq = "faq" in content.lower() or bool(_QUESTION_HEADING.search(content))
    if not existing["faq"] and (has_qa_signal or looks_like_faq):
        recommended.append(
            {
                "type": "FAQPage",
                "reason": "FAQ schema helps AI extract Q&A pairs and improves answer-style visibility.",
            }
        )

    if not existing["howto"] and any(p.search(content) for p in _STEP_MARKERS):
        recommended.append(
            {
                "type": "HowTo",
                "reason": "HowTo schema makes step-by-step instructions explicit for AI and rich results.",
            }
        )

    return {"existing": existing, "recommended": recommended}


class SchemaRecommender:
    def __init__(self, store, gate: EnrichmentGate):
        self.store = store
        self.gate = gate

    def on_analyzed(self, item_id: int, metrics: Metrics, trigger: str) -> None:
        if not self.gate.allows(item_id, SCHEMA, trigger):
            return
        item = self.store.get_item(item_id)
        if item is None:
            return

        reco = build_recommendations(item.get("body", ""), metrics)
        self.store.set_meta(item_id, RECOMMENDATIONS_META_KEY, reco)
        self.store.set_meta(item_id, "schema_last_run", datetime.now(timezone.utc).isoformat())
        logger.info(
            "Schema recommendations for item %s: %s",
            item_id,
            ", ".join(r["type"] for r in reco["recommended"]) or "none",
        )
