"""SQLAlchemy models for the local store.

Three tables:
- work_items: one row per tracker issue key, owning its progress ledger
- progress_entries: append-only ledger rows (cascade-deleted with the item)
- repositories: the provider catalog, referenced by work items by id
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from taskbridge.orchestrator.providers.base import ProviderKind, RepositoryInfo


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Base(DeclarativeBase):
    pass


class LifecycleState(str, enum.Enum):
    """Local lifecycle state of a work item (distinct from the tracker status)."""

    NEW = "new"
    IN_PROGRESS = "in-progress"
    AWAITING_APPROVAL = "awaiting-approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ActionKind(str, enum.Enum):
    SYNC = "sync"
    REPOSITORY_CREATION = "repository-creation"
    REPOSITORY_ASSIGNMENT = "repository-assignment"
    BRANCH_CREATION = "branch-creation"
    CODE_GENERATION = "code-generation"
    TESTING = "testing"
    PULL_REQUEST = "pull-request"
    DEPLOYMENT = "deployment"
    HUMAN_REVIEW = "human-review"


class Outcome(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_APPROVAL = "awaiting-approval"
    APPROVED = "approved"
    REJECTED = "rejected"


# Entries with these outcomes may still be finalized exactly once.
OPEN_OUTCOMES = frozenset({Outcome.PENDING, Outcome.IN_PROGRESS, Outcome.AWAITING_APPROVAL})


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    # Persist the string values ("in-progress"), not the member names.
    return Enum(
        cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class Repository(Base):
    """A repository known to the configured provider."""

    __tablename__ = "repositories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), index=True)
    clone_url: Mapped[str] = mapped_column(String(500), unique=True)
    provider: Mapped[ProviderKind] = mapped_column(_enum(ProviderKind, "provider_kind"), index=True)
    default_branch: Mapped[str] = mapped_column(String(100), default="main")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    project_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_info(self) -> RepositoryInfo:
        return RepositoryInfo(
            id=self.id,
            name=self.name,
            clone_url=self.clone_url,
            provider=self.provider,
            default_branch=self.default_branch or "main",
            is_active=self.is_active,
            description=self.description or "",
            project_key=self.project_key,
        )

    def __repr__(self) -> str:
        return f"Repository(id={self.id!r}, name={self.name!r}, provider={self.provider.value!r})"


class WorkItem(Base):
    """A tracker issue mirrored locally, plus the lifecycle fields owned by taskbridge."""

    __tablename__ = "work_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_key: Mapped[str] = mapped_column(String(50), unique=True)

    # Mirrored from the tracker; informational only.
    title: Mapped[str] = mapped_column(String(500), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(50), default="")
    priority: Mapped[str] = mapped_column(String(20), default="")
    assignee: Mapped[str] = mapped_column(String(100), default="")
    reporter: Mapped[str] = mapped_column(String(100), default="")
    created_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Lifecycle fields.
    lifecycle_state: Mapped[LifecycleState] = mapped_column(
        _enum(LifecycleState, "lifecycle_state"), default=LifecycleState.NEW, index=True
    )
    repository_id: Mapped[int | None] = mapped_column(
        ForeignKey("repositories.id", ondelete="SET NULL"), nullable=True
    )
    branch_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    repository: Mapped[Repository | None] = relationship()
    progress: Mapped[list[ProgressEntry]] = relationship(
        back_populates="work_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: [ProgressEntry.created_at, ProgressEntry.id],
    )

    def __repr__(self) -> str:
        return (
            f"WorkItem(id={self.id!r}, key={self.external_key!r}, "
            f"state={self.lifecycle_state.value!r})"
        )


class ProgressEntry(Base):
    """One ledger row. Immutable once its outcome is terminal."""

    __tablename__ = "progress_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_item_id: Mapped[int] = mapped_column(
        ForeignKey("work_items.id", ondelete="CASCADE"), index=True
    )
    action_kind: Mapped[ActionKind] = mapped_column(_enum(ActionKind, "action_kind"), index=True)
    outcome: Mapped[Outcome] = mapped_column(_enum(Outcome, "outcome"), index=True)
    description: Mapped[str] = mapped_column(String(1000), default="")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    work_item: Mapped[WorkItem] = relationship(back_populates="progress")

    __table_args__ = (Index("ix_progress_entries_item_created", "work_item_id", "created_at"),)

    @property
    def is_open(self) -> bool:
        return self.outcome in OPEN_OUTCOMES

    def __repr__(self) -> str:
        return (
            f"ProgressEntry(id={self.id!r}, kind={self.action_kind.value!r}, "
            f"outcome={self.outcome.value!r})"
        )
