"""In-memory repositories.

Per-process only, and lost on restart. Intended for local runs and tests.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from marketplace.adapters.repository.base import AbstractRepository, Record


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository(AbstractRepository):
    """Thread-safe dict-backed collection of records."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._records: dict[str, Record] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryRepository(name={self.name!r}, size={len(self._records)})"

    async def create(self, owner_id: str, data: dict[str, Any], *, parent_id: str | None = None) -> Record:
        now = _utcnow()
        record = Record(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            data=dict(data),
            created_at=now,
            updated_at=now,
            parent_id=parent_id,
        )
        with self._lock:
            self._records[record.id] = record
        return replace(record, data=dict(record.data))

    async def get(self, record_id: str) -> Record | None:
        with self._lock:
            record = self._records.get(record_id)
            return replace(record, data=dict(record.data)) if record else None

    async def update(self, record_id: str, changes: dict[str, Any]) -> Record | None:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return None
            record.data.update(changes)
            record.updated_at = _utcnow()
            return replace(record, data=dict(record.data))

    async def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    async def list(self, *, owner_id: str | None = None, parent_id: str | None = None) -> list[Record]:
        with self._lock:
            records = [
                replace(record, data=dict(record.data))
                for record in self._records.values()
                if (owner_id is None or record.owner_id == owner_id)
                and (parent_id is None or record.parent_id == parent_id)
            ]
        return sorted(records, key=lambda r: r.created_at)


@dataclass(frozen=True)
class Repositories:
    """The collections the marketplace routes work with."""

    extensions: AbstractRepository
    versions: AbstractRepository
    reviews: AbstractRepository
    installations: AbstractRepository

    @classmethod
    def in_memory(cls) -> "Repositories":
        return cls(
            extensions=InMemoryRepository("extensions"),
            versions=InMemoryRepository("versions"),
            reviews=InMemoryRepository("reviews"),
            installations=InMemoryRepository("installations"),
        )
