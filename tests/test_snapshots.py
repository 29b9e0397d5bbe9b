from datetime import date

import pytest

import notifications
import snapshots
from analyzer import SCORE_META_KEY
from snapshots import (
    FIRST_RUN_DELAY,
    OPT_WEBHOOK_RESULT,
    WEEK_SECONDS,
    WEEKLY_TASK,
    SnapshotRecorder,
    WeeklyReporter,
    trend_between,
)


@pytest.fixture
def recorder(store):
    return SnapshotRecorder(store, item_types=["post", "page"], today=lambda: date(2024, 6, 3))


def test_zero_items_records_null_average(recorder, store):
    snapshot = recorder.record()

    assert snapshot == {"snapshot_date": "2024-06-03", "avg_score": None, "scanned_count": 0}
    assert store.list_snapshots() == [snapshot]


def test_average_covers_published_in_scope_numeric_scores(recorder, store, make_item):
    make_item(1)
    make_item(2, type="page")
    make_item(3, status="draft")
    make_item(4, type="product")
    make_item(5)
    store.set_meta(1, SCORE_META_KEY, 40)
    store.set_meta(2, SCORE_META_KEY, 60)
    store.set_meta(3, SCORE_META_KEY, 100)
    store.set_meta(4, SCORE_META_KEY, 100)
    store.set_meta(5, SCORE_META_KEY, "n/a")

    snapshot = recorder.record()

    assert snapshot["avg_score"] == 50
    assert snapshot["scanned_count"] == 2


def test_recent_is_newest_first(store, recorder):
    for day in ("2024-05-20", "2024-06-03", "2024-05-27"):
        store.insert_snapshot({"snapshot_date": day, "avg_score": 10.0, "scanned_count": 1})

    assert [s["snapshot_date"] for s in recorder.recent()] == ["2024-06-03", "2024-05-27", "2024-05-20"]
    assert len(recorder.recent(2)) == 2
    assert len(recorder.recent(0)) == 3


def test_same_day_snapshots_are_all_kept(recorder):
    recorder.record()
    recorder.record()
    assert len(recorder.recent()) == 2


def test_trend_labels():
    now = {"snapshot_date": "d", "avg_score": 60.0, "scanned_count": 1}
    assert trend_between(now, None) == ("", "No previous data")
    assert trend_between(now, {**now, "avg_score": 50.0})[0] == "↑"
    assert trend_between(now, {**now, "avg_score": 70.0})[0] == "↓"
    assert trend_between(now, {**now})[0] == "→"
    assert trend_between({**now, "avg_score": None}, now) == ("", "No previous data")


def test_email_body_formats_average():
    body = notifications.build_weekly_email_body(
        {"snapshot_date": "2024-06-03", "avg_score": 52.345, "scanned_count": 4}, "↑", "Improved."
    )
    assert "AI Visibility Score: 52.3 ↑" in body
    assert "Scanned items: 4" in body

    empty = notifications.build_weekly_email_body(
        {"snapshot_date": "2024-06-03", "avg_score": None, "scanned_count": 0}, "", "No previous data"
    )
    assert "AI Visibility Score: N/A\n" in empty


def test_weekly_run_is_locked_for_fifteen_minutes(store, recorder, transients, clock):
    reporter = WeeklyReporter(store, recorder, transients, weekly_email=False, webhook_url="")

    assert reporter.run() is not None
    assert reporter.run() is None

    clock.advance(15 * 60 + 1)
    assert reporter.run() is not None
    assert len(recorder.recent()) == 2


def test_weekly_run_delivers_email_and_webhook(store, recorder, transients, monkeypatch):
    sent = {}
    monkeypatch.setattr(notifications, "send_weekly_email", lambda **kw: sent.setdefault("email", kw) and True)
    monkeypatch.setattr(notifications, "send_webhook", lambda url, payload: sent.setdefault("hook", payload) and (200, ""))
    reporter = WeeklyReporter(
        store,
        recorder,
        transients,
        weekly_email=True,
        email_to="owner@example.com",
        webhook_url="https://hooks.example.com/x",
        site_name="Example",
    )

    reporter.run()

    assert sent["email"]["recipient_email"] == "owner@example.com"
    assert "No previous data" in sent["email"]["body"]
    assert sent["hook"]["event"] == "weekly_report"
    assert sent["hook"]["version"] == snapshots.APP_VERSION
    result = store.get_option(OPT_WEBHOOK_RESULT)
    assert result["last_code"] == 200 and result["last_error"] == ""


def test_webhook_transport_failure_is_recorded(store, recorder, transients, monkeypatch):
    monkeypatch.setattr(notifications, "send_webhook", lambda url, payload: (0, "connection refused"))
    reporter = WeeklyReporter(store, recorder, transients, webhook_url="https://hooks.example.com/x")

    reporter.send_webhook(recorder.record())

    assert store.get_option(OPT_WEBHOOK_RESULT)["last_code"] == 0
    assert store.get_option(OPT_WEBHOOK_RESULT)["last_error"] == "connection refused"


def test_weekly_schedule_rearms_itself(store, recorder, transients, scheduler):
    reporter = WeeklyReporter(store, recorder, transients, scheduler, weekly_email=False, webhook_url="")

    reporter.ensure_scheduled()
    reporter.ensure_scheduled()
    assert scheduler.delays(WEEKLY_TASK) == [FIRST_RUN_DELAY]

    scheduler.run_next(WEEKLY_TASK)
    assert scheduler.delays(WEEKLY_TASK) == [WEEK_SECONDS]
    assert len(recorder.recent()) == 1
