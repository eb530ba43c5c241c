"""Keyed atomic counters for round-robin cursors."""

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List


class KeyedLock:
    """Fixed pool of locks addressed by key hash."""

    def __init__(self, shards: int = 64):
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(shards)]

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        lock = self.for_key(key)
        with lock:
            yield


class CounterStore(ABC):
    """Narrow read / compare-and-set / increment interface."""

    MISSING = -1

    @abstractmethod
    def get(self, key: str, default: int = 0) -> int:
        pass

    @abstractmethod
    def compare_and_set(self, key: str, expected: int, new: int) -> bool:
        """Set ``key`` to ``new`` only if it currently holds ``expected``.

        A missing key is treated as holding -1.
        """

    @abstractmethod
    def increment(self, key: str, delta: int = 1) -> int:
        """Add ``delta`` and return the new value."""


class InMemoryCounterStore(CounterStore):
    """Process-local counters guarded by sharded locks."""

    def __init__(self, shards: int = 64):
        self._values: Dict[str, int] = {}
        self._locks = KeyedLock(shards)

    def get(self, key: str, default: int = 0) -> int:
        return self._values.get(key, default)

    def compare_and_set(self, key: str, expected: int, new: int) -> bool:
        with self._locks.hold(key):
            if self._values.get(key, self.MISSING) != expected:
                return False
            self._values[key] = new
            return True

    def increment(self, key: str, delta: int = 1) -> int:
        with self._locks.hold(key):
            value = self._values.get(key, 0) + delta
            self._values[key] = value
            return value


class SqliteCounterStore(CounterStore):
    """Counters kept in a SQLite table, updated with single statements."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str, default: int = 0) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM counters WHERE key = ?", (key,)).fetchone()
        return row[0] if row else default

    def compare_and_set(self, key: str, expected: int, new: int) -> bool:
        with self._get_connection() as conn:
            if expected == self.MISSING:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO counters (key, value) VALUES (?, ?)",
                    (key, new)
                )
            else:
                cursor = conn.execute(
                    "UPDATE counters SET value = ? WHERE key = ? AND value = ?",
                    (new, key, expected)
                )
            return cursor.rowcount == 1

    def increment(self, key: str, delta: int = 1) -> int:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                INSERT INTO counters (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = value + excluded.value
                RETURNING value
                """,
                (key, delta)
            ).fetchall()
        return rows[0][0]
