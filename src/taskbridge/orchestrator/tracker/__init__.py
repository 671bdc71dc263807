"""Issue tracker clients."""

from taskbridge.orchestrator.tracker.base import ExternalWorkItem, TaskSource
from taskbridge.orchestrator.tracker.jira import JiraClient

__all__ = ["ExternalWorkItem", "JiraClient", "TaskSource"]
