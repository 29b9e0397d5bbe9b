"""One-shot delayed task scheduling.

The batch scanner and weekly report only need two primitives from the
host: run a callback once, no earlier than a delay from now, and cancel
pending runs of a named task. ThreadTimerScheduler provides them with
threading.Timer, one daemon timer per pending run.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)


class TaskScheduler(ABC):
    """Host scheduling primitives, keyed by task name."""

    @abstractmethod
    def schedule_once(self, name: str, delay_seconds: float, callback: Callable[[], None]) -> None:
        """Run `callback` once, no earlier than `delay_seconds` from now."""

    @abstractmethod
    def next_scheduled(self, name: str) -> float | None:
        """Return the earliest due timestamp of a pending run of `name`, if any."""

    @abstractmethod
    def cancel_all(self, name: str) -> int:
        """Cancel every pending run of `name`. Returns how many were cancelled."""

    def is_scheduled(self, name: str) -> bool:
        return self.next_scheduled(name) is not None

    def shutdown(self) -> None:
        """Drop every pending run. Called when the app stops."""


class ThreadTimerScheduler(TaskScheduler):
    """TaskScheduler backed by threading.Timer."""

    def __init__(self):
        self._pending: dict[str, list[tuple[float, threading.Timer]]] = {}
        self._lock = threading.Lock()

    def schedule_once(self, name: str, delay_seconds: float, callback: Callable[[], None]) -> None:
        due = time.time() + max(0.0, float(delay_seconds))
        timer: threading.Timer | None = None

        def _run() -> None:
            with self._lock:
                entries = self._pending.get(name, [])
                self._pending[name] = [e for e in entries if e[1] is not timer]
            try:
                callback()
            except Exception:
                logger.exception("Scheduled task %s failed", name)

        timer = threading.Timer(max(0.0, float(delay_seconds)), _run)
        timer.daemon = True
        with self._lock:
            self._pending.setdefault(name, []).append((due, timer))
        timer.start()
        logger.debug("Scheduled %s in %.1fs", name, delay_seconds)

    def next_scheduled(self, name: str) -> float | None:
        with self._lock:
            entries = self._pending.get(name) or []
            return min(due for due, _ in entries) if entries else None

    def cancel_all(self, name: str) -> int:
        with self._lock:
            entries = self._pending.pop(name, [])
        for _, timer in entries:
            timer.cancel()
        if entries:
            logger.debug("Cancelled %d pending run(s) of %s", len(entries), name)
        return len(entries)

    def shutdown(self) -> None:
        with self._lock:
            names = list(self._pending)
        for name in names:
            self.cancel_all(name)
