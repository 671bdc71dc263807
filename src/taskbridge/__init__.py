"""taskbridge.

Bridges an external issue tracker and a source-control provider:
- work items are synced from the tracker into a local SQL store
- each item is driven through an explicit lifecycle (repository assignment,
  branch provisioning, human approval, completion)
- every step is written to an append-only progress ledger
"""

__version__ = "0.1.0"

from taskbridge.orchestrator.config import TaskBridgeSettings

__all__ = ["__version__", "TaskBridgeSettings"]
