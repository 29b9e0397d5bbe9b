import os
import tempfile
from pathlib import Path

# main.py builds a module-level app on import; keep its database out of the source tree.
os.environ.setdefault("DB_PATH", str(Path(tempfile.mkdtemp()) / "visibility-test.db"))
os.environ.setdefault("AI_FIXTURE_MODE", "1")

import pytest

from ai_service import fixture_for_prompt
from analyzer import ItemAnalyzer
from database import ContentStore, init_db
from enrichment_gate import EnrichmentGate
from errors import HttpError
from history import HistoryStore
from task_scheduler import TaskScheduler
from transients import MemoryTransientStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeScheduler(TaskScheduler):
    """Records scheduled callbacks; tests fire them explicitly with run_next()."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.pending: list[tuple[float, str, object]] = []

    def schedule_once(self, name, delay_seconds, callback):
        self.pending.append((self.clock() + delay_seconds, name, callback))

    def next_scheduled(self, name):
        dues = [due for due, n, _ in self.pending if n == name]
        return min(dues) if dues else None

    def cancel_all(self, name):
        before = len(self.pending)
        self.pending = [p for p in self.pending if p[1] != name]
        return before - len(self.pending)

    def shutdown(self):
        self.pending = []

    def delays(self, name):
        return [due - self.clock() for due, n, _ in self.pending if n == name]

    def run_next(self, name) -> bool:
        matching = sorted((p for p in self.pending if p[1] == name), key=lambda p: p[0])
        if not matching:
            return False
        entry = matching[0]
        self.pending.remove(entry)
        entry[2]()
        return True


class FakeAI:
    """Stand-in for AITextService: canned fixture responses, optional failure."""

    def __init__(self, fail: bool = False, response: str | None = None):
        self.fail = fail
        self.response = response
        self.calls: list[str] = []

    def is_available(self) -> bool:
        return True

    def complete(self, prompt, max_tokens=None, temperature=None, system=None):
        self.calls.append(prompt)
        if self.fail:
            raise HttpError("Error calling Claude API: 503 Service Unavailable")
        if self.response is not None:
            return self.response
        return fixture_for_prompt(prompt)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "visibility.db"
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return ContentStore(db_path)


@pytest.fixture
def make_item(store):
    def _make(item_id, title="", body="", type="post", status="publish", url=""):
        item = {"id": item_id, "title": title, "body": body, "type": type, "status": status, "url": url}
        store.upsert_item(item)
        return item

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transients(clock):
    return MemoryTransientStore(clock=clock)


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def gate(transients):
    return EnrichmentGate(transients, ttl_seconds=60)


@pytest.fixture
def history(store):
    return HistoryStore(store)


@pytest.fixture
def analyzer(store, history, gate):
    return ItemAnalyzer(store, history, gate=gate, site_host="example.com", item_types=["post", "page"])


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def failing_ai():
    return FakeAI(fail=True)
