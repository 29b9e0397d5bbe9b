"""Per-item daily score history.

Stored in item metadata as a list of {date: YYYY-MM-DD, score: int},
sorted ascending, one entry per day, capped at MAX_ENTRIES.
"""

import json
import logging
from datetime import date as date_type
from datetime import timedelta

from models import HistoryEntry

logger = logging.getLogger(__name__)

HISTORY_META_KEY = "visibility_history"
MAX_ENTRIES = 60
DELTA_WINDOW_DAYS = 7


def _as_date(value) -> date_type | None:
    if isinstance(value, date_type):
        return value
    try:
        return date_type.fromisoformat(str(value or "").strip()[:10])
    except ValueError:
        return None


def normalize_history(raw) -> list[HistoryEntry]:
    """Coerce stored history (list or JSON string) into clean sorted entries."""
    if isinstance(raw, str) and raw.strip():
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = []
    if not isinstance(raw, list):
        return []

    by_date: dict[str, int] = {}
    for row in raw:
        if not isinstance(row, dict):
            continue
        day = _as_date(row.get("date"))
        try:
            score = int(row.get("score"))
        except (TypeError, ValueError):
            continue
        if day is None:
            continue
        by_date[day.isoformat()] = score

    return [{"date": d, "score": by_date[d]} for d in sorted(by_date)]


class HistoryStore:
    """Append-only, one-entry-per-day score timeline per item."""

    def __init__(self, store, max_entries: int = MAX_ENTRIES):
        self.store = store
        self.max_entries = max_entries

    def entries(self, item_id: int) -> list[HistoryEntry]:
        return normalize_history(self.store.get_meta(item_id, HISTORY_META_KEY, []))

    def append(self, item_id: int, day, score: int) -> list[HistoryEntry]:
        """Insert or overwrite the entry for `day` and persist the pruned timeline."""
        parsed = _as_date(day)
        if parsed is None or int(item_id) <= 0:
            logger.warning("Skipping history append for item %s with date %r", item_id, day)
            return self.entries(item_id)

        by_date = {e["date"]: e["score"] for e in self.entries(item_id)}
        by_date[parsed.isoformat()] = int(score)

        history = [{"date": d, "score": by_date[d]} for d in sorted(by_date)]
        if len(history) > self.max_entries:
            history = history[-self.max_entries:]

        self.store.set_meta(item_id, HISTORY_META_KEY, history)
        return history

    def delta(self, item_id: int) -> tuple[int | None, int | None]:
        """Return (change since previous entry, change since >= 7 days before the last entry)."""
        return compute_delta(self.entries(item_id))


def compute_delta(history: list[HistoryEntry]) -> tuple[int | None, int | None]:
    if not history:
        return None, None

    last = history[-1]
    since_last = last["score"] - history[-2]["score"] if len(history) >= 2 else None

    cutoff = _as_date(last["date"]) - timedelta(days=DELTA_WINDOW_DAYS)
    since_window = None
    for entry in reversed(history[:-1]):
        if _as_date(entry["date"]) <= cutoff:
            since_window = last["score"] - entry["score"]
            break

    return since_last, since_window
