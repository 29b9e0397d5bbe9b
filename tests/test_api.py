import pytest
from fastapi.testclient import TestClient

from batch_scan import TICK_TASK
from conftest import FakeAI, FakeClock, FakeScheduler
from main import build_services, create_app

ITEM = {
    "title": "Content Marketing guide",
    "body": "<h2>What is content marketing?</h2><p>It is a way to plan content. Step 1: research.</p>",
    "type": "post",
    "status": "publish",
    "url": "https://example.com/guide",
}


@pytest.fixture
def ai():
    return FakeAI()


@pytest.fixture
def services(tmp_path, ai):
    return build_services(tmp_path / "api.db", ai=ai, scheduler=FakeScheduler(FakeClock()))


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_put_item_runs_save_analysis(client):
    response = client.put("/items/1", json=ITEM)

    assert response.status_code == 200
    body = response.json()
    assert body["item_id"] == 1
    assert isinstance(body["score"], int)
    assert body["metrics"]["h2_count"] == 1
    assert len(body["history"]) == 1
    assert body["delta_since_last"] is None
    assert body["signals"]


def test_unknown_item_is_404(client):
    assert client.get("/items/404/visibility").status_code == 404
    assert client.post("/items/404/scan").status_code == 404
    assert client.post("/items/404/summary").status_code == 404


def test_manual_scan_fills_enrichments(client, ai):
    client.put("/items/1", json=ITEM)
    assert ai.calls == []

    scan = client.post("/items/1/scan")
    assert scan.status_code == 200
    assert scan.json()["metrics"]["word_count"] > 0

    visibility = client.get("/items/1/visibility").json()
    assert len(visibility["missing_topics"]["missing_topics"]) == 4
    assert "HowTo" in [r["type"] for r in visibility["schema_recommendations"]["recommended"]]
    assert visibility["errors"] == {}
    assert len(ai.calls) == 2


def test_ai_failure_maps_to_502_and_is_shown_on_item(client, ai):
    client.put("/items/1", json=ITEM)
    ai.fail = True

    response = client.post("/items/1/summary")

    assert response.status_code == 502
    assert "503" in response.json()["detail"]
    assert "503" in client.get("/items/1/visibility").json()["errors"]["summary"]


def test_summary_then_rescan_counts_summary(client):
    client.put("/items/1", json=ITEM)
    summary = client.post("/items/1/summary").json()
    assert summary["text"]

    client.post("/items/1/scan")
    assert client.get("/items/1/visibility").json()["metrics"]["has_ai_summary"] is True


def test_topic_section_requires_topic(client):
    client.put("/items/1", json=ITEM)
    assert client.post("/items/1/topics/section", json={"topic": "  "}).status_code == 422
    assert client.post("/items/1/topics/section", json={"topic": "Pricing"}).status_code == 200


def test_batch_scan_endpoints(client, services):
    for item_id in range(1, 5):
        client.put(f"/items/{item_id}", json={**ITEM, "url": f"https://example.com/{item_id}"})

    started = client.post("/scan/start", json={"item_types": "post, post"}).json()
    assert started == {"status": "running", "total": 4, "progress": 0, "last_run": started["last_run"], "completed_notice": False}
    assert services.scheduler.is_scheduled(TICK_TASK)

    assert client.post("/scan/tick").json()["progress"] == 3
    assert client.post("/scan/tick").json()["status"] == "complete"

    state = client.get("/scan/state").json()
    assert state["completed_notice"] is True
    assert client.get("/scan/state").json()["completed_notice"] is False


def test_cancel_endpoint(client, services):
    client.put("/items/1", json=ITEM)
    client.post("/scan/start", json={})

    state = client.post("/scan/cancel").json()

    assert state["status"] == "cancelled"
    assert not services.scheduler.is_scheduled(TICK_TASK)


def test_snapshot_endpoints(client):
    client.put("/items/1", json=ITEM)

    recorded = client.post("/snapshots").json()
    assert recorded["scanned_count"] == 1

    listed = client.get("/snapshots", params={"limit": 5}).json()
    assert listed == [recorded]

    weekly = client.post("/reports/weekly")
    assert weekly.status_code == 200
    assert client.post("/reports/weekly").json() is None


def test_app_lifespan_arms_and_clears_scheduler(services):
    app = create_app(services)

    with TestClient(app) as live:
        assert live.get("/health").status_code == 200
        assert services.scheduler.is_scheduled("weekly_report")

    assert services.scheduler.pending == []
