"""Pydantic schemas for authentication and rate limit administration."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class PrincipalResponse(BaseModel):
    id: str = Field(..., description="Principal identifier.")
    role: str = Field(..., description="Principal role: user, developer or admin.")


class StoreStatsResponse(BaseModel):
    window_seconds: int
    policies: List[str] = Field(default_factory=list, description="Policies backed by this store.")
    total_keys: int = Field(..., description="Entries held, including expired ones not yet swept.")
    active_keys: int = Field(..., description="Entries whose window is still open.")


class RateLimitStatusResponse(BaseModel):
    policy: str
    key: str
    count: int
    limit: int
    remaining: int
    reset_at: int = Field(..., description="UNIX epoch seconds when the window resets.")
    limited: bool = Field(..., description="Whether the next request for this key would be rejected.")
