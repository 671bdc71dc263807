"""Work item lifecycle: ledger, matching, branching, approval and the orchestrator."""

from taskbridge.orchestrator.workflow.engine import TaskLifecycleOrchestrator
from taskbridge.orchestrator.workflow.sync import SyncResult

__all__ = ["SyncResult", "TaskLifecycleOrchestrator"]
