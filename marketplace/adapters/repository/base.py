"""Repository interfaces for owned marketplace records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class Record:
    """A stored resource together with the principal that owns it.

    Attributes:
        id: Record identifier.
        owner_id: Principal id recorded as the owner.
        data: Resource fields.
        parent_id: Identifier of the owning parent record, if any
            (e.g., the extension a review belongs to).
        created_at: Creation time (UTC).
        updated_at: Last modification time (UTC).
    """

    id: str
    owner_id: str
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    parent_id: str | None = None


class AbstractRepository(ABC):
    """Interface for one collection of owned records."""

    @abstractmethod
    async def create(self, owner_id: str, data: dict[str, Any], *, parent_id: str | None = None) -> Record:
        raise NotImplementedError

    @abstractmethod
    async def get(self, record_id: str) -> Record | None:
        raise NotImplementedError

    @abstractmethod
    async def update(self, record_id: str, changes: dict[str, Any]) -> Record | None:
        """Merge changes into a record; returns None when it does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Delete a record; returns whether it existed."""
        raise NotImplementedError

    @abstractmethod
    async def list(self, *, owner_id: str | None = None, parent_id: str | None = None) -> list[Record]:
        raise NotImplementedError
