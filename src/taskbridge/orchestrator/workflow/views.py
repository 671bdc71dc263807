"""Read-only views of stored records.

ORM rows stay inside the session that loaded them; callers (CLI, HTTP API)
get these detached pydantic snapshots instead.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from taskbridge.orchestrator.providers.base import ProviderKind
from taskbridge.orchestrator.store.models import (
    ActionKind,
    LifecycleState,
    Outcome,
    ProgressEntry,
    Repository,
    WorkItem,
)


class ProgressEntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action_kind: ActionKind
    outcome: Outcome
    description: str
    error: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def of(cls, entry: ProgressEntry) -> ProgressEntryView:
        return cls.model_validate(entry)


class RepositoryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    clone_url: str
    provider: ProviderKind
    default_branch: str
    is_active: bool
    description: str | None = None
    project_key: str | None = None
    last_used_at: datetime | None = None

    @classmethod
    def of(cls, repository: Repository) -> RepositoryView:
        return cls.model_validate(repository)


class WorkItemView(BaseModel):
    id: int
    external_key: str
    title: str
    description: str = ""
    status: str = ""
    priority: str = ""
    assignee: str = ""
    lifecycle_state: LifecycleState
    requires_approval: bool = False
    branch_name: str | None = None
    notes: str | None = None
    repository: RepositoryView | None = None
    last_synced_at: datetime | None = None
    progress: list[ProgressEntryView] = Field(default_factory=list)

    @classmethod
    def of(cls, item: WorkItem, *, with_progress: bool = True) -> WorkItemView:
        return cls(
            id=item.id,
            external_key=item.external_key,
            title=item.title,
            description=item.description or "",
            status=item.status or "",
            priority=item.priority or "",
            assignee=item.assignee or "",
            lifecycle_state=item.lifecycle_state,
            requires_approval=item.requires_approval,
            branch_name=item.branch_name,
            notes=item.notes,
            repository=RepositoryView.of(item.repository) if item.repository else None,
            last_synced_at=item.last_synced_at,
            progress=[ProgressEntryView.of(e) for e in item.progress] if with_progress else [],
        )

    @property
    def awaiting_entries(self) -> list[ProgressEntryView]:
        return [e for e in self.progress if e.outcome == Outcome.AWAITING_APPROVAL]
