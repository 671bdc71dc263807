"""Local SQL store: ORM models and transaction handling."""

from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import (
    ActionKind,
    Base,
    LifecycleState,
    Outcome,
    ProgressEntry,
    Repository,
    WorkItem,
)

__all__ = [
    "ActionKind",
    "Base",
    "Database",
    "LifecycleState",
    "Outcome",
    "ProgressEntry",
    "Repository",
    "WorkItem",
]
