"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ActionResult(BaseModel):
    ok: bool
    task_id: int
    lifecycle_state: str | None = None


class SyncResponse(BaseModel):
    ok: bool
    created: int = 0
    updated: int = 0
    skipped: int = 0
    error: str | None = None


class ProcessResponse(BaseModel):
    processed: int
