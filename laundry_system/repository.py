"""Thread-safe in-memory repositories used by the service layer."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Generic, List, TypeVar

from .exceptions import ConflictError, NotFoundError

T = TypeVar("T")


class DuplicateRecordError(ConflictError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(NotFoundError):
    """Raised when a requested record is missing."""


class InMemoryRepository(Generic[T]):
    """Insertion-ordered store keyed by record id.

    The sweep thread and request handlers share one instance, so the mapping is
    only touched while holding ``_lock``.
    """

    def __init__(self) -> None:
        self._records: Dict[str, T] = {}
        self._lock = threading.RLock()

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._records

    def add(self, item_id: str, item: T) -> None:
        with self._lock:
            if item_id in self._records:
                raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
            self._records[item_id] = item

    def upsert(self, item_id: str, item: T) -> None:
        with self._lock:
            self._records[item_id] = item

    def get(self, item_id: str) -> T:
        with self._lock:
            item = self._records.get(item_id)
        if item is None:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return item

    def remove(self, item_id: str) -> None:
        with self._lock:
            if self._records.pop(item_id, None) is None:
                raise RecordNotFoundError(f"Record with id {item_id!r} not found")

    def list(self) -> List[T]:
        with self._lock:
            return list(self._records.values())

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]


__all__ = [
    "InMemoryRepository",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
