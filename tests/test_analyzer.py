from datetime import date

import pytest

from analyzer import DATA_META_KEY, LAST_RUN_META_KEY, SCORE_META_KEY, SUMMARY_META_KEY, ItemAnalyzer
from enrichment_gate import SCHEMA
from errors import NotFound
from models import TRIGGER_AUTOMATIC, TRIGGER_MANUAL


@pytest.fixture
def dated_analyzer(store, history, gate):
    return ItemAnalyzer(store, history, gate=gate, today=lambda: date(2024, 5, 1))


def test_missing_item_raises_not_found(analyzer):
    with pytest.raises(NotFound) as exc:
        analyzer.analyze(404)
    assert exc.value.item_id == 404


def test_analyze_persists_score_metrics_and_history(dated_analyzer, store, history, make_item):
    make_item(1, title="Hello", body="<h2>Intro</h2><p>What is this? A short page.</p>")

    metrics = dated_analyzer.analyze(1)

    score = store.get_meta(1, SCORE_META_KEY)
    data = store.get_meta(1, DATA_META_KEY)
    assert isinstance(score, int)
    assert data["score"] == score
    assert data["h2_count"] == 1 == metrics.h2_count
    assert store.get_meta(1, LAST_RUN_META_KEY)
    assert history.entries(1) == [{"date": "2024-05-01", "score": score}]
    assert dated_analyzer.current_score(1) == score
    assert dated_analyzer.stored_metrics(1) == metrics


def test_stored_summary_feeds_metrics(analyzer, store, make_item):
    make_item(1, title="Hello", body="<p>x</p>")
    assert analyzer.analyze(1).has_ai_summary is False

    store.set_meta(1, SUMMARY_META_KEY, "A summary.")
    assert analyzer.analyze(1).has_ai_summary is True


def test_subscribers_run_in_order_and_survive_failures(analyzer, make_item):
    make_item(1, title="Hello")
    calls = []

    def first(item_id, metrics, trigger):
        calls.append(("first", trigger))
        raise RuntimeError("boom")

    def second(item_id, metrics, trigger):
        calls.append(("second", trigger))

    analyzer.subscribe(first)
    analyzer.subscribe(second)
    analyzer.analyze(1)

    assert calls == [("first", TRIGGER_AUTOMATIC), ("second", TRIGGER_AUTOMATIC)]


def test_manual_scan_arms_flags_and_passes_manual_trigger(analyzer, gate, make_item):
    make_item(1, title="Hello")
    seen = []
    analyzer.subscribe(lambda item_id, m, trigger: seen.append(gate.allows(item_id, SCHEMA, trigger)))

    analyzer.scan_manually(1)
    analyzer.analyze(1, trigger=TRIGGER_MANUAL)

    assert seen == [True, False]


def test_manual_scan_of_missing_item(analyzer, gate):
    with pytest.raises(NotFound):
        analyzer.scan_manually(99)
    assert not gate.is_armed(99, SCHEMA)


@pytest.mark.parametrize(
    "type_, status, analyzed",
    [
        ("post", "publish", True),
        ("page", "draft", True),
        ("post", "auto-draft", False),
        ("post", "trash", False),
        ("product", "publish", False),
    ],
)
def test_save_hook_scope(analyzer, store, make_item, type_, status, analyzed):
    item = make_item(1, title="Hello", type=type_, status=status)
    result = analyzer.analyze_on_save(item)
    assert (result is not None) is analyzed
    assert (store.get_meta(1, SCORE_META_KEY) is not None) is analyzed
