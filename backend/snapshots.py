"""Site-wide score snapshots and the weekly report.

SnapshotRecorder appends one aggregate row per run (same-day rows are
allowed). WeeklyReporter records a snapshot on a weekly timer and sends
it to the email and webhook sinks.
"""

import logging
import os
import time
from datetime import date
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv

import notifications
from analyzer import SCAN_ITEM_TYPES, SCORE_META_KEY
from models import SiteSnapshot
from task_scheduler import TaskScheduler
from transients import TransientStore

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

SITE_URL = os.getenv("SITE_URL", "").strip()
SITE_NAME = os.getenv("SITE_NAME", "").strip() or "My Site"
WEEKLY_EMAIL = os.getenv("WEEKLY_EMAIL", "0").strip().lower() in {"1", "true", "yes", "on"}
REPORT_EMAIL_TO = os.getenv("REPORT_EMAIL_TO", "").strip()
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "").strip()

WEEKLY_TASK = "weekly_report"
WEEKLY_LOCK_KEY = "weekly_report_lock"
WEEKLY_LOCK_TTL = 15 * 60
FIRST_RUN_DELAY = 60 * 60
WEEK_SECONDS = 7 * 24 * 60 * 60

OPT_WEBHOOK_RESULT = "webhook_last_result"


class SnapshotRecorder:
    def __init__(self, store, item_types: list[str] | None = None, today: Callable[[], date] = date.today):
        self.store = store
        self.item_types = list(item_types or SCAN_ITEM_TYPES)
        self.today = today

    def record(self, item_types: list[str] | None = None) -> SiteSnapshot:
        """Average the stored scores of published in-scope items and append a snapshot."""
        types = list(item_types or self.item_types)
        scores: list[float] = []
        for value in self.store.list_published_meta(SCORE_META_KEY, types):
            if isinstance(value, bool):
                continue
            try:
                scores.append(float(value))
            except (TypeError, ValueError):
                continue

        count = len(scores)
        snapshot: SiteSnapshot = {
            "snapshot_date": self.today().isoformat(),
            "avg_score": sum(scores) / count if count else None,
            "scanned_count": count,
        }
        self.store.insert_snapshot(snapshot)
        logger.info("Recorded snapshot: avg=%s count=%d", snapshot["avg_score"], count)
        return snapshot

    def recent(self, limit: int | None = None) -> list[SiteSnapshot]:
        """Newest first; `limit` of None or <= 0 means unlimited."""
        return self.store.list_snapshots(limit)


def trend_between(current: SiteSnapshot, previous: SiteSnapshot | None) -> tuple[str, str]:
    """Return (arrow, label) comparing two snapshots."""
    if previous is None or current.get("avg_score") is None or previous.get("avg_score") is None:
        return "", "No previous data"
    if current["avg_score"] > previous["avg_score"]:
        return "↑", "Visibility improved since last week."
    if current["avg_score"] < previous["avg_score"]:
        return "↓", "Visibility decreased since last week."
    return "→", "Visibility is stable compared to last week."


class WeeklyReporter:
    def __init__(
        self,
        store,
        recorder: SnapshotRecorder,
        transients: TransientStore,
        scheduler: TaskScheduler | None = None,
        weekly_email: bool = WEEKLY_EMAIL,
        email_to: str = REPORT_EMAIL_TO,
        webhook_url: str = WEBHOOK_URL,
        site_url: str = SITE_URL,
        site_name: str = SITE_NAME,
    ):
        self.store = store
        self.recorder = recorder
        self.transients = transients
        self.scheduler = scheduler
        self.weekly_email = weekly_email
        self.email_to = email_to
        self.webhook_url = webhook_url
        self.site_url = site_url
        self.site_name = site_name

    def ensure_scheduled(self) -> None:
        if self.scheduler is not None and not self.scheduler.is_scheduled(WEEKLY_TASK):
            self.scheduler.schedule_once(WEEKLY_TASK, FIRST_RUN_DELAY, self._run_scheduled)

    def _run_scheduled(self) -> None:
        try:
            self.run()
        finally:
            if self.scheduler is not None and not self.scheduler.is_scheduled(WEEKLY_TASK):
                self.scheduler.schedule_once(WEEKLY_TASK, WEEK_SECONDS, self._run_scheduled)

    def run(self) -> SiteSnapshot | None:
        """Record a snapshot and deliver it. Returns None when a run happened within the lock window."""
        if not self.transients.add(WEEKLY_LOCK_KEY, 1, WEEKLY_LOCK_TTL):
            logger.info("Weekly report skipped: already ran recently")
            return None

        snapshot = self.recorder.record()
        if self.weekly_email:
            self.send_email(snapshot)
        if self.webhook_url:
            self.send_webhook(snapshot)
        return snapshot

    def send_email(self, snapshot: SiteSnapshot) -> bool:
        recent = self.recorder.recent(2)
        previous = recent[1] if len(recent) >= 2 else None
        arrow, label = trend_between(snapshot, previous)
        body = notifications.build_weekly_email_body(snapshot, arrow, label, self.site_url)
        return notifications.send_weekly_email(
            recipient_email=self.email_to,
            site_name=self.site_name,
            body=body,
        )

    def send_webhook(self, snapshot: SiteSnapshot) -> dict:
        payload = {
            "event": "weekly_report",
            "site_url": self.site_url,
            "site_name": self.site_name,
            "snapshot_date": snapshot["snapshot_date"],
            "avg_score": snapshot["avg_score"],
            "scanned_count": int(snapshot["scanned_count"]),
            "version": APP_VERSION,
            "timestamp": int(time.time()),
        }
        code, error = notifications.send_webhook(self.webhook_url, payload)
        result = {
            "last_sent": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "last_code": code,
            "last_error": error,
        }
        self.store.set_option(OPT_WEBHOOK_RESULT, result)
        return result
