"""Key/value store with expiry, used for locks, one-shot flags and the AI cache.

Two backends share the same interface:
- MemoryTransientStore: in-process dict guarded by a threading.Lock.
- SqliteTransientStore: the `transients` table, shared across processes.

`add` is set-if-absent and is the primitive the batch scan lock relies on.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

from database import get_connection

logger = logging.getLogger(__name__)

# Evict expired entries every N writes
_EVICTION_INTERVAL = 100


class TransientStore(ABC):
    """Interface for expiring key/value storage. TTLs are in seconds."""

    @abstractmethod
    def get(self, key: str, default=None):
        """Return the value for `key`, or `default` when missing or expired."""

    @abstractmethod
    def set(self, key: str, value, ttl_seconds: float) -> None:
        """Store `value` under `key`, replacing any existing entry."""

    @abstractmethod
    def add(self, key: str, value, ttl_seconds: float) -> bool:
        """Store `value` only if `key` is absent or expired. Returns True if stored."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete `key`. Returns True if a live entry existed."""

    @abstractmethod
    def touch(self, key: str, ttl_seconds: float) -> bool:
        """Push the expiry of a live entry to now + ttl. Returns False if missing."""

    def pop(self, key: str, default=None):
        """Get-and-delete."""
        value = self.get(key, default)
        self.delete(key)
        return value


class MemoryTransientStore(TransientStore):
    """In-process transient store with TTL.

    Values are stored as (value, expires_at) tuples. Thread-safe via
    threading.Lock; expired entries are dropped lazily on access and in a
    periodic sweep every _EVICTION_INTERVAL writes.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._store: dict = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()
        self._writes = 0
        self._clock = clock

    def _live(self, key: str):
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() >= entry[1]:
            del self._store[key]
            return None
        return entry

    def _maybe_evict(self) -> None:
        # Caller must hold self._lock.
        self._writes += 1
        if self._writes % _EVICTION_INTERVAL:
            return
        now = self._clock()
        expired = [k for k, (_, exp) in self._store.items() if now >= exp]
        for k in expired:
            del self._store[k]
        if expired:
            logger.debug("Evicted %d expired transients", len(expired))

    def get(self, key: str, default=None):
        with self._lock:
            entry = self._live(key)
            return default if entry is None else entry[0]

    def set(self, key: str, value, ttl_seconds: float) -> None:
        with self._lock:
            self._maybe_evict()
            self._store[key] = (value, self._clock() + ttl_seconds)

    def add(self, key: str, value, ttl_seconds: float) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._maybe_evict()
            self._store[key] = (value, self._clock() + ttl_seconds)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live(key) is not None
            self._store.pop(key, None)
            return existed

    def touch(self, key: str, ttl_seconds: float) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._store[key] = (entry[0], self._clock() + ttl_seconds)
            return True


class SqliteTransientStore(TransientStore):
    """Transient store persisted in the `transients` table."""

    def __init__(self, db_path=None, clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self._clock = clock

    def get(self, key: str, default=None):
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM transients WHERE key = ? AND expires_at > ?",
                (key, self._clock()),
            ).fetchone()
            if row is None:
                return default
            try:
                return json.loads(row["value"])
            except (TypeError, ValueError):
                return default
        finally:
            conn.close()

    def set(self, key: str, value, ttl_seconds: float) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO transients (key, value, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at",
                (key, json.dumps(value), self._clock() + ttl_seconds),
            )
            conn.commit()
        finally:
            conn.close()

    def add(self, key: str, value, ttl_seconds: float) -> bool:
        now = self._clock()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("DELETE FROM transients WHERE key = ? AND expires_at <= ?", (key, now))
            cursor = conn.execute(
                "INSERT OR IGNORE INTO transients (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), now + ttl_seconds),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def delete(self, key: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM transients WHERE key = ? AND expires_at > ?",
                (key, self._clock()),
            )
            conn.execute("DELETE FROM transients WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def touch(self, key: str, ttl_seconds: float) -> bool:
        now = self._clock()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE transients SET expires_at = ? WHERE key = ? AND expires_at > ?",
                (now + ttl_seconds, key, now),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()
