"""Throttled, resume-safe batch scanner.

- Queue, progress, status and last run are stored as options, so any
  process sharing the database sees the same scan.
- Work runs in fixed-size slices, one slice per tick, each tick arming
  the next one after a delay.
- Overlapping ticks are prevented by a transient lock (set-if-absent).
"""

import logging
import os
import time
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv

from analyzer import SCAN_ITEM_TYPES, ItemAnalyzer
from errors import InvalidState, LockContention
from models import SCAN_CANCELLED, SCAN_COMPLETE, SCAN_IDLE, SCAN_RUNNING, SCAN_STATUSES, BatchState
from task_scheduler import TaskScheduler
from transients import TransientStore

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

TICK_TASK = "batch_scan_tick"

OPT_QUEUE = "batch_queue"
OPT_PROGRESS = "batch_progress"
OPT_STATUS = "batch_status"
OPT_LAST_RUN = "batch_last_run"

LOCK_KEY = "batch_scan_lock"
COMPLETE_NOTICE_KEY = "batch_complete_notice"
COMPLETE_NOTICE_TTL = 60

BATCH_SCAN_SIZE = int(os.getenv("BATCH_SCAN_SIZE", "3"))
BATCH_SCAN_FIRST_DELAY = float(os.getenv("BATCH_SCAN_FIRST_DELAY", "5"))
BATCH_SCAN_NEXT_DELAY = float(os.getenv("BATCH_SCAN_NEXT_DELAY", "10"))
BATCH_SCAN_LOCK_TTL = float(os.getenv("BATCH_SCAN_LOCK_TTL", "30"))


class BatchScanScheduler:
    """State machine over BatchState: idle -> running -> complete | cancelled."""

    def __init__(
        self,
        store,
        analyzer: ItemAnalyzer,
        transients: TransientStore,
        scheduler: TaskScheduler,
        batch_size: int = BATCH_SCAN_SIZE,
        first_delay: float = BATCH_SCAN_FIRST_DELAY,
        next_delay: float = BATCH_SCAN_NEXT_DELAY,
        lock_ttl: float = BATCH_SCAN_LOCK_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.analyzer = analyzer
        self.transients = transients
        self.scheduler = scheduler
        self.batch_size = max(1, int(batch_size))
        self.first_delay = first_delay
        self.next_delay = next_delay
        self.lock_ttl = lock_ttl
        self.clock = clock
        self._on_complete: list[Callable[[BatchState], None]] = []

    def on_complete(self, callback: Callable[[BatchState], None]) -> None:
        """Register a callback fired once when a scan run completes."""
        self._on_complete.append(callback)

    # --- Public operations ---

    def start(self, item_types: list[str] | None = None) -> BatchState:
        """Snapshot the published ids of `item_types` as the queue and start scanning."""
        types = [t for t in (item_types or SCAN_ITEM_TYPES) if t]
        ids = self.store.list_published_ids(types)

        self.store.set_options(
            {
                OPT_QUEUE: ids,
                OPT_PROGRESS: 0,
                OPT_STATUS: SCAN_RUNNING,
                OPT_LAST_RUN: int(self.clock()),
            }
        )
        logger.info("Batch scan started: %d item(s) of type(s) %s", len(ids), ", ".join(types))

        if not self.scheduler.is_scheduled(TICK_TASK):
            self.scheduler.schedule_once(TICK_TASK, self.first_delay, self.tick)
        return self.get_state()

    def tick(self) -> bool:
        """Process the next slice. Returns False when skipped because another tick holds the lock."""
        try:
            self._acquire_lock()
        except LockContention as e:
            logger.debug("Batch scan tick skipped: %s", e)
            return False

        try:
            try:
                self._run_slice()
            except Exception:
                logger.exception("Batch scan tick failed; retrying on next tick")
                self._schedule_next()
            return True
        finally:
            self.transients.delete(LOCK_KEY)

    def cancel(self) -> BatchState:
        """Stop the scan and clear every pending tick. No-op when nothing is running."""
        state = self.get_state()
        try:
            if state.status != SCAN_RUNNING:
                raise InvalidState(f"nothing to cancel, status is {state.status}")
            self.store.set_option(OPT_STATUS, SCAN_CANCELLED)
            logger.info("Batch scan cancelled at %d/%d", state.progress, state.total)
        except InvalidState as e:
            logger.debug("Batch scan cancel ignored: %s", e)

        while self.scheduler.is_scheduled(TICK_TASK):
            if not self.scheduler.cancel_all(TICK_TASK):
                break
        return self.get_state()

    def get_state(self) -> BatchState:
        queue = self.store.get_option(OPT_QUEUE, [])
        if not isinstance(queue, list):
            queue = []
        status = str(self.store.get_option(OPT_STATUS, SCAN_IDLE))
        if status not in SCAN_STATUSES:
            status = SCAN_IDLE
        try:
            progress = int(self.store.get_option(OPT_PROGRESS, 0))
        except (TypeError, ValueError):
            progress = 0
        try:
            last_run = int(self.store.get_option(OPT_LAST_RUN, 0))
        except (TypeError, ValueError):
            last_run = 0
        return BatchState(
            queue=tuple(_as_ids(queue)),
            progress=progress,
            status=status,
            last_run=last_run,
        )

    def pop_completion_notice(self) -> bool:
        """True once after a scan completes (within the notice TTL)."""
        return bool(self.transients.pop(COMPLETE_NOTICE_KEY))

    # --- Internals ---

    def _acquire_lock(self) -> None:
        if not self.transients.add(LOCK_KEY, 1, self.lock_ttl):
            raise LockContention("another tick holds the batch scan lock")

    def _run_slice(self) -> None:
        state = self.get_state()
        if state.status != SCAN_RUNNING:
            return

        if not state.queue or state.progress >= state.total:
            self._complete()
            return

        chunk = state.queue[state.progress : state.progress + self.batch_size]
        for item_id in chunk:
            if item_id <= 0:
                continue
            try:
                self.analyzer.analyze(item_id)
            except Exception:
                logger.exception("Batch scan: analysis failed for item %s", item_id)
            self.transients.touch(LOCK_KEY, self.lock_ttl)

        # cancel() or start() may have run while the slice was being analyzed
        current = self.get_state()
        if (
            current.status != SCAN_RUNNING
            or current.queue != state.queue
            or current.progress != state.progress
        ):
            logger.info("Batch scan slice discarded: run changed to %s while in flight", current.status)
            return

        progress = state.progress + len(chunk)
        self.store.set_options({OPT_PROGRESS: progress, OPT_LAST_RUN: int(self.clock())})
        logger.info("Batch scan progress %d/%d", progress, state.total)

        if progress >= state.total:
            self._complete()
            return

        self._schedule_next()

    def _schedule_next(self) -> None:
        if not self.scheduler.is_scheduled(TICK_TASK):
            self.scheduler.schedule_once(TICK_TASK, self.next_delay, self.tick)

    def _complete(self) -> None:
        self.store.set_option(OPT_STATUS, SCAN_COMPLETE)
        self.transients.set(COMPLETE_NOTICE_KEY, 1, COMPLETE_NOTICE_TTL)
        state = self.get_state()
        logger.info("Batch scan complete: %d item(s)", state.total)
        for callback in list(self._on_complete):
            try:
                callback(state)
            except Exception:
                logger.exception("Batch scan completion callback failed")


def _as_ids(values: list) -> list[int]:
    ids: list[int] = []
    for value in values:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            ids.append(0)
    return ids
