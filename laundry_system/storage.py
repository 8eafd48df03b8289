"""SQLite-backed persistence for the laundry job lifecycle."""

from __future__ import annotations

import pickle
import sqlite3
import threading
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from .domain import LaundryJob, Machine, StaffNotice, TransactionRecord
from .repository import DuplicateRecordError, RecordNotFoundError

T = TypeVar("T")

TABLES = ("machines", "laundry_jobs", "transactions", "staff_notices")


class SQLiteRepository(Generic[T]):
    """Keeps one pickled record per row, keyed by its id.

    Repositories built by :class:`LaundryDatabase` share the connection and its
    lock; the sweep thread writes alongside the request handlers.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        table: str,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table {table!r}")
        self._connection = connection
        self._table = table
        self._lock = lock or threading.RLock()
        self._run(
            f"CREATE TABLE IF NOT EXISTS {table} "
            "(id TEXT PRIMARY KEY, payload BLOB NOT NULL)"
        )

    def _run(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock, self._connection:
            return self._connection.execute(sql, params)

    def _rows(self, sql: str, params: Sequence[Any] = ()) -> List[T]:
        with self._lock:
            rows = self._connection.execute(sql, params).fetchall()
        return [pickle.loads(row[0]) for row in rows]

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        with self._lock:
            row = self._connection.execute(
                f"SELECT 1 FROM {self._table} WHERE id = ?", (item_id,)
            ).fetchone()
        return row is not None

    def add(self, item_id: str, item: T) -> None:
        try:
            self._run(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)",
                (item_id, pickle.dumps(item)),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists") from exc

    def upsert(self, item_id: str, item: T) -> None:
        self._run(
            f"INSERT INTO {self._table} (id, payload) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
            (item_id, pickle.dumps(item)),
        )

    def get(self, item_id: str) -> T:
        found = self._rows(f"SELECT payload FROM {self._table} WHERE id = ?", (item_id,))
        if not found:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return found[0]

    def remove(self, item_id: str) -> None:
        cursor = self._run(f"DELETE FROM {self._table} WHERE id = ?", (item_id,))
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")

    def list(self) -> List[T]:
        return self._rows(f"SELECT payload FROM {self._table} ORDER BY rowid")

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]


class LaundryDatabase:
    """Opens one SQLite file and exposes a repository per record kind."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(path, check_same_thread=False)
        self.machines: SQLiteRepository[Machine] = self._repository("machines")
        self.jobs: SQLiteRepository[LaundryJob] = self._repository("laundry_jobs")
        self.transactions: SQLiteRepository[TransactionRecord] = self._repository(
            "transactions"
        )
        self.staff_notices: SQLiteRepository[StaffNotice] = self._repository(
            "staff_notices"
        )

    def _repository(self, table: str) -> SQLiteRepository[Any]:
        return SQLiteRepository(self._connection, table, self._lock)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    def __enter__(self) -> "LaundryDatabase":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["SQLiteRepository", "LaundryDatabase", "TABLES"]
