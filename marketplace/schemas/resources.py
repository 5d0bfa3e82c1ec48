"""Pydantic schemas for marketplace resources."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from marketplace.adapters.repository.base import Record


class ExtensionStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    DEPRECATED = "deprecated"
    SUSPENDED = "suspended"


class InstallationStatus(str, Enum):
    PENDING = "pending"
    INSTALLED = "installed"
    FAILED = "failed"
    UNINSTALLED = "uninstalled"


class ExtensionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Display name of the extension.")
    description: str | None = Field(default=None, max_length=2000)
    category: str | None = Field(default=None, max_length=50)


class ExtensionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=2000)
    category: str | None = Field(default=None, max_length=50)
    status: ExtensionStatus | None = None


class VersionCreate(BaseModel):
    version: str = Field(..., min_length=1, max_length=50, description="Semantic version string.")
    changelog: str | None = Field(default=None, max_length=5000)
    manifest: Dict[str, Any] = Field(..., description="Extension manifest published with this version.")
    is_prerelease: bool = False


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class InstallationCreate(BaseModel):
    version: str | None = Field(default=None, description="Version to install; latest when omitted.")


class InstallationUpdate(BaseModel):
    status: InstallationStatus


class RecordResponse(BaseModel):
    """Generic representation of an owned record."""

    id: str
    owner_id: str
    parent_id: str | None = None
    created_at: datetime
    updated_at: datetime
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Record) -> "RecordResponse":
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            parent_id=record.parent_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
            data=record.data,
        )
