"""AI-generated enrichments: summaries, Q&A blocks, entities and missing topics.

Summary, Q&A and topic sections are explicit user actions. Entity
extraction and missing-topic detection subscribe to the analyzer and only
run when the EnrichmentGate allows (manual scans). AI failures are stored
on the item as `<kind>_error` so the user can retry.
"""

import json
import logging
import re
from datetime import datetime, timezone

from ai_service import AITextService
from analyzer import QA_META_KEY, SCAN_ITEM_TYPES, SUMMARY_META_KEY, ItemAnalyzer
from enrichment_gate import ENTITIES, MISSING_TOPICS, EnrichmentGate
from errors import ExternalServiceError, NotFound
from models import Item, Metrics
from scoring import strip_tags

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 6000
MAX_ENTITY_LABELS = 25

ENTITY_TYPES = {
    "person", "organization", "product", "brand", "place",
    "topic", "event", "technology", "keyword", "other",
}
ENTITY_ROLES = {"main", "supporting", "mentioned"}
TOPIC_PRIORITIES = {"high", "medium", "low"}

SUMMARY_PROMPT = """You are an assistant that writes concise, neutral summaries of web pages, optimized for AI search engines such as ChatGPT, Perplexity, Gemini, and Claude.

Write a clear summary of the following page in 3-6 sentences. Focus on:
- Main topic
- Key points
- Who it is for
- Why it is useful

Do not use headings, bullet lists, or HTML. Just plain text.

Title: {title}

Content:
{content}"""

QA_PROMPT = """You are an assistant that creates FAQ-style Q&A blocks to help AI search engines understand a page.

Based on the page below, create 3-6 of the most important question-and-answer pairs a user might ask.

Format your response exactly like this (plain text):
Q: Question 1
A: Answer 1
Q: Question 2
A: Answer 2
...

Do not add any extra commentary.

Title: {title}

Content:
{content}"""

MISSING_TOPICS_PROMPT = """You are an AI visibility auditor for AI search engines (ChatGPT, Gemini, Claude, Perplexity).

Task: Identify missing topical coverage for the page below. Suggest key missing subtopics / concepts that would improve AI understanding and answer completeness.

Rules:
- Output ONLY valid JSON.
- JSON schema:
{{
  "missing_topics": [
    {{"topic": "...", "reason": "...", "priority": "high|medium|low"}}
  ],
  "suggested_questions": ["...", "...", "..."]
}}
- Provide 4 to 8 missing_topics.
- Reasons should be short (max 1 sentence).
- Priorities should reflect impact on AI visibility.

Title: {title}

Detected entities: {entities}

Content:
{content}"""

ENTITIES_PROMPT = """Extract the most important real-world entities from the content below.
Entities may be: person, organization, product, brand, place, topic, event, technology, keyword.

Return ONLY valid JSON in this exact format:

{{
  "entities": [
    {{ "name": "OpenAI", "type": "organization", "role": "main", "confidence": 96 }},
    {{ "name": "ChatGPT", "type": "product", "role": "supporting", "confidence": 92 }}
  ]
}}

Rules:
- "name" must be the human-readable entity name.
- "type" must be one of: "person", "organization", "product", "brand", "place", "topic", "event", "technology", "keyword", "other".
- "role" must be one of: "main", "supporting", "mentioned".
- "confidence" is an integer 0-100.

Content:
\"\"\"{content}\"\"\""""

TOPIC_SECTION_PROMPT = """Write a concise, AI-friendly content section for the topic below.

Rules:
- Start with a clear H2 heading
- Follow with 1-2 short paragraphs
- Be factual, neutral, and helpful
- Do NOT mention AI, ChatGPT, or models

Title: {title}

Missing topic to cover: {topic}"""

ENTITY_SYSTEM_MESSAGE = "You are a precise NLP engine that only outputs valid JSON for entities."


def extract_json(text: str) -> dict | None:
    """Parse the first JSON object in a model response, tolerating fences and trailing commas."""
    if not text:
        return None
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.replace("```json", "").replace("```", "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    json_str = cleaned[start : end + 1]
    json_str = (
        json_str
        .replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )
    repaired = re.sub(r",\s*([}\]])", r"\1", json_str)

    for candidate in (json_str, repaired):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        return parsed if isinstance(parsed, dict) else None
    return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_entities(raw: object) -> list[dict]:
    if not isinstance(raw, list):
        return []
    out: list[dict] = []
    for entity in raw:
        if not isinstance(entity, dict):
            continue
        name = str(entity.get("name") or "").strip()
        if not name:
            continue
        entity_type = str(entity.get("type") or "other").strip().lower()
        role = str(entity.get("role") or "mentioned").strip().lower()
        try:
            confidence = int(entity.get("confidence", 80))
        except (TypeError, ValueError):
            confidence = 80
        out.append(
            {
                "name": name[:190],
                "type": entity_type if entity_type in ENTITY_TYPES else "other",
                "role": role if role in ENTITY_ROLES else "mentioned",
                "confidence": max(0, min(100, confidence)),
            }
        )
    return out


def normalize_missing_topics(raw: dict) -> dict:
    topics = []
    for row in raw.get("missing_topics") or []:
        if not isinstance(row, dict):
            continue
        topic = str(row.get("topic") or "").strip()
        if not topic:
            continue
        priority = str(row.get("priority") or "medium").strip().lower()
        topics.append(
            {
                "topic": topic,
                "reason": str(row.get("reason") or "").strip(),
                "priority": priority if priority in TOPIC_PRIORITIES else "medium",
            }
        )
    questions = raw.get("suggested_questions")
    if not isinstance(questions, list):
        questions = []
    return {
        "missing_topics": topics,
        "suggested_questions": [str(q).strip() for q in questions if str(q or "").strip()],
    }


class Enrichments:
    def __init__(
        self,
        store,
        ai: AITextService,
        gate: EnrichmentGate | None = None,
        item_types: list[str] | None = None,
    ):
        self.store = store
        self.ai = ai
        self.gate = gate
        self.item_types = list(item_types or SCAN_ITEM_TYPES)

    # --- Helpers ---

    def _item(self, item_id: int) -> Item:
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFound(item_id)
        return item

    def _record_error(self, item_id: int, kind: str, error: ExternalServiceError) -> None:
        logger.warning("Enrichment %s failed for item %s: %s", kind, item_id, error)
        self.store.set_meta(item_id, f"{kind}_error", str(error))

    def _clear_error(self, item_id: int, kind: str) -> None:
        self.store.delete_meta(item_id, f"{kind}_error")

    def _generate(self, item_id: int, kind: str, prompt: str, **kwargs) -> str:
        try:
            text = self.ai.complete(prompt, **kwargs)
        except ExternalServiceError as e:
            self._record_error(item_id, kind, e)
            raise
        self._clear_error(item_id, kind)
        return text

    # --- Manual actions ---

    def generate_summary(self, item_id: int) -> str:
        item = self._item(item_id)
        prompt = SUMMARY_PROMPT.format(title=item["title"], content=strip_tags(item["body"]))
        summary = self._generate(item_id, "summary", prompt).strip()
        self.store.set_meta(item_id, SUMMARY_META_KEY, summary)
        return summary

    def generate_qa(self, item_id: int) -> str:
        item = self._item(item_id)
        prompt = QA_PROMPT.format(title=item["title"], content=strip_tags(item["body"]))
        qa_block = self._generate(item_id, "qa", prompt).strip()
        self.store.set_meta(item_id, QA_META_KEY, qa_block)
        return qa_block

    def generate_topic_section(self, item_id: int, topic: str) -> str:
        item = self._item(item_id)
        prompt = TOPIC_SECTION_PROMPT.format(title=item["title"], topic=topic.strip())
        return self._generate(item_id, "topic_section", prompt).strip()

    # --- Gated subscribers ---

    def on_analyzed_entities(self, item_id: int, metrics: Metrics, trigger: str) -> None:
        if self.gate is None or not self.gate.allows(item_id, ENTITIES, trigger):
            return
        if not self.ai.is_available():
            return
        item = self.store.get_item(item_id)
        if item is None or item.get("status") != "publish":
            return

        combined = f"{item['title']}\n\n{strip_tags(item['body'])}"[:MAX_PROMPT_CHARS]
        try:
            raw = self.ai.complete(
                ENTITIES_PROMPT.format(content=combined),
                max_tokens=600,
                temperature=0.1,
                system=ENTITY_SYSTEM_MESSAGE,
            )
        except ExternalServiceError as e:
            self._record_error(item_id, ENTITIES, e)
            return

        parsed = extract_json(raw)
        entities = normalize_entities(parsed.get("entities") if parsed else None)
        if not entities:
            logger.info("No entities extracted for item %s", item_id)
            return
        self.store.replace_item_entities(item_id, entities)
        self.store.set_meta(item_id, "entities_last_run", _now())
        self._clear_error(item_id, ENTITIES)

    def on_analyzed_missing_topics(self, item_id: int, metrics: Metrics, trigger: str) -> None:
        if self.gate is None or not self.gate.allows(item_id, MISSING_TOPICS, trigger):
            return
        if not self.ai.is_available():
            return
        item = self.store.get_item(item_id)
        if item is None:
            return

        labels = []
        for entity in self.store.get_item_entities(item_id):
            name = str(entity.get("name") or "")
            if name:
                entity_type = entity.get("type")
                labels.append(f"{name} ({entity_type})" if entity_type else name)
        entity_text = ", ".join(labels[:MAX_ENTITY_LABELS]) or "None detected"

        prompt = MISSING_TOPICS_PROMPT.format(
            title=item["title"],
            entities=entity_text,
            content=strip_tags(item["body"])[:MAX_PROMPT_CHARS],
        )
        try:
            raw = self.ai.complete(prompt)
        except ExternalServiceError as e:
            self._record_error(item_id, MISSING_TOPICS, e)
            return

        parsed = extract_json(raw)
        if parsed is None:
            self.store.set_meta(
                item_id, f"{MISSING_TOPICS}_error", "AI returned invalid JSON for missing topics."
            )
            return

        self.store.set_meta(item_id, MISSING_TOPICS, normalize_missing_topics(parsed))
        self.store.set_meta(item_id, f"{MISSING_TOPICS}_last_run", _now())
        self._clear_error(item_id, MISSING_TOPICS)


def register_enrichments(analyzer: ItemAnalyzer, enrichments: Enrichments, *subscribers) -> None:
    """Wire enrichments into the analyzer: entities first, then missing topics, then the rest."""
    analyzer.subscribe(enrichments.on_analyzed_entities)
    analyzer.subscribe(enrichments.on_analyzed_missing_topics)
    for subscriber in subscribers:
        analyzer.subscribe(subscriber)
