"""Issue tracker contract."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ExternalWorkItem:
    """A work item as reported by the tracker."""

    key: str
    title: str
    description: str = ""
    status: str = ""
    priority: str = ""
    assignee: str = ""
    reporter: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    due_date: datetime | None = None


class TaskSource(Protocol):
    """Where work items come from and where progress is reported back."""

    def fetch_open_items(self, query: str) -> list[ExternalWorkItem]:
        """Return the items selected by `query`.

        Raises:
            TaskBridgeError: On transport or API failure.
        """
        ...

    def post_comment(self, key: str, text: str) -> bool:
        """Add a comment to an item. Returns False instead of raising."""
        ...

    def transition_issue(self, key: str, status: str) -> bool:
        """Move an item to the named status. Returns False instead of raising."""
        ...
