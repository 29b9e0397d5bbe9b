"""Internal link suggestions, run on manual scans only.

Candidates are other published items whose titles match the item's
entities, topped up with title keywords when entities give too few.
"""

import logging
from datetime import datetime, timezone

from bs4 import BeautifulSoup

from analyzer import SCAN_ITEM_TYPES
from enrichment_gate import INTERNAL_LINKS, EnrichmentGate
from models import Metrics
from scoring import strip_tags

logger = logging.getLogger(__name__)

SUGGESTIONS_META_KEY = "internal_link_suggestions"
MAX_TERMS = 6
PER_QUERY_LIMIT = 6
MIN_BEFORE_FALLBACK = 4
MAX_SUGGESTIONS = 8
MIN_KEYWORD_LENGTH = 5


class InternalLinkSuggester:
    def __init__(self, store, gate: EnrichmentGate, item_types: list[str] | None = None):
        self.store = store
        self.gate = gate
        self.item_types = list(item_types or SCAN_ITEM_TYPES)

    def on_analyzed(self, item_id: int, metrics: Metrics, trigger: str) -> None:
        if not self.gate.allows(item_id, INTERNAL_LINKS, trigger):
            return
        suggestions = self.build_suggestions(item_id)
        self.store.set_meta(item_id, SUGGESTIONS_META_KEY, suggestions)
        self.store.set_meta(item_id, "internal_links_last_run", datetime.now(timezone.utc).isoformat())
        logger.info("Stored %d internal link suggestion(s) for item %s", len(suggestions), item_id)

    def build_suggestions(self, item_id: int) -> list[dict]:
        item = self.store.get_item(item_id)
        if item is None:
            return []
        already_linked = self.linked_item_ids(item.get("body", ""))

        entity_names: list[str] = []
        for entity in self.store.get_item_entities(item_id):
            name = str(entity.get("name") or "").strip()
            if name:
                entity_names.append(name)
            if len(entity_names) >= MAX_TERMS:
                break

        suggestions: list[dict] = []
        if entity_names:
            suggestions = self._suggest_by_title_match(item_id, entity_names, "entity")
            suggestions = merge_unique(suggestions, [], already_linked, item_id)

        if len(suggestions) < MIN_BEFORE_FALLBACK:
            words = [w for w in strip_tags(item.get("title", "")).lower().split() if len(w) >= MIN_KEYWORD_LENGTH]
            words = list(dict.fromkeys(words))[:MAX_TERMS]
            if words:
                more = self._suggest_by_title_match(item_id, words, "keyword")
                suggestions = merge_unique(suggestions, more, already_linked, item_id)

        return suggestions

    def linked_item_ids(self, content: str) -> set[int]:
        linked: set[int] = set()
        if not content:
            return linked
        soup = BeautifulSoup(content, "html.parser")
        for a in soup.find_all("a", href=True):
            target = self.store.find_item_id_by_url(a["href"])
            if target:
                linked.add(target)
        return linked

    def _suggest_by_title_match(self, item_id: int, terms: list[str], mode: str) -> list[dict]:
        rows = self.store.search_published_titles(terms, self.item_types, item_id, PER_QUERY_LIMIT)
        if mode == "entity":
            reason = "Shares key entities: " + ", ".join(terms[:3])
        else:
            reason = "Similar topic keywords"
        return [
            {
                "target_id": row["id"],
                "url": row["url"],
                "title": row["title"],
                "anchor": row["title"],
                "reason": reason,
            }
            for row in rows
        ]


def merge_unique(
    first: list[dict],
    second: list[dict],
    already_linked: set[int],
    item_id: int,
    limit: int = MAX_SUGGESTIONS,
) -> list[dict]:
    seen: set[int] = set()
    out: list[dict] = []
    for suggestion in [*first, *second]:
        target = int(suggestion.get("target_id") or 0)
        if target <= 0 or target == item_id or target in seen or target in already_linked:
            continue
        seen.add(target)
        out.append(suggestion)
        if len(out) >= limit:
            break
    return out
