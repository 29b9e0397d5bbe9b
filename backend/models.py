"""Data models and types used across the backend.

Database table definitions are in database.py.
Metrics and BatchState are immutable records; the rest are plain dicts.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import TypedDict

SCAN_IDLE = "idle"
SCAN_RUNNING = "running"
SCAN_COMPLETE = "complete"
SCAN_CANCELLED = "cancelled"
SCAN_STATUSES = (SCAN_IDLE, SCAN_RUNNING, SCAN_COMPLETE, SCAN_CANCELLED)

TRIGGER_MANUAL = "manual"
TRIGGER_AUTOMATIC = "automatic"


class Item(TypedDict):
    """A content unit owned by the content store."""

    id: int
    title: str
    body: str
    type: str
    status: str
    url: str


class HistoryEntry(TypedDict):
    """One daily score point for an item."""

    date: str
    score: int


class SiteSnapshot(TypedDict):
    """Site-wide aggregate recorded by the snapshot recorder."""

    snapshot_date: str
    avg_score: float | None
    scanned_count: int


@dataclass(frozen=True)
class Metrics:
    """Structural and content signals computed for one item."""

    word_count: int = 0
    h2_count: int = 0
    h3_count: int = 0
    internal_links: int = 0
    external_links: int = 0
    question_marks: int = 0
    has_faq_keyword: bool = False
    avg_sentence_length: float = 0.0
    has_ai_summary: bool = False
    has_ai_qa: bool = False

    @property
    def headings(self) -> int:
        return self.h2_count + self.h3_count

    @classmethod
    def from_dict(cls, data: dict | None) -> "Metrics":
        """Build metrics from a stored dict, ignoring unknown or malformed keys."""
        if not isinstance(data, dict):
            return cls()
        values: dict = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            raw = data[f.name]
            try:
                if f.type in (bool, "bool"):
                    values[f.name] = bool(raw)
                elif f.type in (float, "float"):
                    values[f.name] = float(raw)
                else:
                    values[f.name] = int(raw)
            except (TypeError, ValueError):
                continue
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BatchState:
    """Read-only view of the batch scan run."""

    queue: tuple[int, ...] = field(default_factory=tuple)
    progress: int = 0
    status: str = SCAN_IDLE
    last_run: int = 0

    @property
    def total(self) -> int:
        return len(self.queue)

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "total": self.total,
            "progress": self.progress,
            "last_run": self.last_run,
        }
