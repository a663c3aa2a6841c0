from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Literal
from uuid import uuid4


RecordType = Literal["group", "session"]


@dataclass
class StoredRecord:
    id: str
    type: RecordType
    created_at: datetime
    updated_at: datetime
    data: dict


class InMemoryRepository:
    """Record store for groups and sessions.

    Records are plain dicts; callers get copies, so nothing outside the
    store can change a stored record without going through ``update``.
    """

    def __init__(self) -> None:
        self._items: dict[str, StoredRecord] = {}
        self._lock = Lock()

    def _utcnow(self) -> datetime:
        return datetime.now(timezone.utc)

    def _copy(self, item: StoredRecord) -> StoredRecord:
        return StoredRecord(
            id=item.id,
            type=item.type,
            created_at=item.created_at,
            updated_at=item.updated_at,
            data=deepcopy(item.data),
        )

    def new_id(self) -> str:
        return str(uuid4())

    def create(self, record_type: RecordType, data: dict, record_id: str | None = None) -> StoredRecord:
        with self._lock:
            now = self._utcnow()
            item = StoredRecord(
                id=record_id or self.new_id(),
                type=record_type,
                created_at=now,
                updated_at=now,
                data=deepcopy(data),
            )
            self._items[item.id] = item
            return self._copy(item)

    def get(self, record_type: RecordType, item_id: str) -> StoredRecord | None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.type != record_type:
                return None
            return self._copy(item)

    def update(self, record_type: RecordType, item_id: str, data: dict) -> StoredRecord | None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.type != record_type:
                return None
            item.data = deepcopy(data)
            item.updated_at = self._utcnow()
            return self._copy(item)

    def delete(self, record_type: RecordType, item_id: str) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.type != record_type:
                return False
            del self._items[item_id]
            return True

    def list_records(self, record_type: RecordType) -> list[StoredRecord]:
        with self._lock:
            items = [item for item in self._items.values() if item.type == record_type]
            return [self._copy(item) for item in sorted(items, key=lambda x: x.created_at)]
