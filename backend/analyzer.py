"""Single-item analysis pipeline.

analyze(): fetch item -> extract metrics -> score -> persist -> history ->
notify post-analysis subscribers (the gated AI enrichments).
"""

import logging
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv

from enrichment_gate import EnrichmentGate
from errors import NotFound
from history import HistoryStore
from models import TRIGGER_AUTOMATIC, TRIGGER_MANUAL, Item, Metrics
from scoring import ScoreAdjuster, compute_score, extract_metrics

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

SITE_URL = os.getenv("SITE_URL", "").strip()
SCAN_ITEM_TYPES = [t.strip() for t in os.getenv("SCAN_ITEM_TYPES", "post,page").split(",") if t.strip()]

SCORE_META_KEY = "visibility_score"
DATA_META_KEY = "visibility_data"
LAST_RUN_META_KEY = "visibility_last_run"
SUMMARY_META_KEY = "ai_summary"
QA_META_KEY = "ai_qa_block"

SKIPPED_SAVE_STATUSES = {"auto-draft", "trash"}

# subscriber(item_id, metrics, trigger)
AnalysisSubscriber = Callable[[int, Metrics, str], None]


class ItemAnalyzer:
    def __init__(
        self,
        store,
        history: HistoryStore,
        gate: EnrichmentGate | None = None,
        site_host: str = SITE_URL,
        item_types: list[str] | None = None,
        score_adjust: ScoreAdjuster | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.history = history
        self.gate = gate
        self.site_host = site_host
        self.item_types = list(item_types or SCAN_ITEM_TYPES)
        self.score_adjust = score_adjust
        self.today = today
        self._subscribers: list[AnalysisSubscriber] = []

    def subscribe(self, subscriber: AnalysisSubscriber) -> None:
        """Register a post-analysis subscriber; subscribers run in registration order."""
        self._subscribers.append(subscriber)

    def analyze(self, item_id: int, trigger: str = TRIGGER_AUTOMATIC) -> Metrics:
        """Analyze one item and persist its score. Raises NotFound if the item is missing."""
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFound(item_id)
        item_id = int(item["id"])

        metrics = extract_metrics(
            item.get("title", ""),
            item.get("body", ""),
            site_host=self.site_host,
            has_ai_summary=bool(self.store.get_meta(item_id, SUMMARY_META_KEY)),
            has_ai_qa=bool(self.store.get_meta(item_id, QA_META_KEY)),
        )
        score = compute_score(metrics, self.score_adjust)

        data = metrics.to_dict()
        data["score"] = score
        self.store.set_meta(item_id, SCORE_META_KEY, score)
        self.store.set_meta(item_id, LAST_RUN_META_KEY, datetime.now(timezone.utc).isoformat())
        self.store.set_meta(item_id, DATA_META_KEY, data)

        self.history.append(item_id, self.today(), score)
        logger.info("Analyzed item %s (%s): score=%d", item_id, trigger, score)

        self._publish(item_id, metrics, trigger)
        return metrics

    def scan_manually(self, item_id: int) -> Metrics:
        """User-initiated scan: arm every enrichment flag, then analyze."""
        if self.store.get_item(item_id) is None:
            raise NotFound(item_id)
        if self.gate is not None:
            self.gate.arm_all(item_id)
        return self.analyze(item_id, trigger=TRIGGER_MANUAL)

    def analyze_on_save(self, item: Item) -> Metrics | None:
        """Save hook: analyze in-scope items that are not drafts-in-progress or trashed."""
        if item.get("type") not in self.item_types:
            return None
        if item.get("status") in SKIPPED_SAVE_STATUSES:
            return None
        return self.analyze(item["id"])

    def current_score(self, item_id: int) -> int | None:
        value = self.store.get_meta(item_id, SCORE_META_KEY)
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def stored_metrics(self, item_id: int) -> Metrics | None:
        data = self.store.get_meta(item_id, DATA_META_KEY)
        return Metrics.from_dict(data) if isinstance(data, dict) else None

    def _publish(self, item_id: int, metrics: Metrics, trigger: str) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(item_id, metrics, trigger)
            except Exception:
                logger.exception(
                    "Post-analysis subscriber %s failed for item %s",
                    getattr(subscriber, "__name__", subscriber),
                    item_id,
                )
