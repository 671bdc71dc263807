from __future__ import annotations

from enum import Enum

from taskbridge.orchestrator.errors import TaskBridgeError
from taskbridge.orchestrator.store.models import LifecycleState, WorkItem


class Trigger(str, Enum):
    SYNC_IMPORT = "sync-import"
    REPOSITORY_MATCHED = "repository-matched"
    NO_REPOSITORY_MATCH = "no-repository-match"
    REPOSITORY_ASSIGNED = "repository-assigned"
    BRANCH_CREATED = "branch-created"
    BRANCH_FAILED = "branch-failed"
    HUMAN_APPROVED = "human-approved"
    HUMAN_REJECTED = "human-rejected"
    ENTRY_REJECTED = "entry-rejected"
    WORK_COMPLETED = "work-completed"


_S = LifecycleState
_T = Trigger

# Every state change goes through this table.
ALLOWED_TRANSITIONS: dict[tuple[LifecycleState, Trigger], LifecycleState] = {
    (_S.NEW, _T.SYNC_IMPORT): _S.NEW,
    (_S.NEW, _T.REPOSITORY_MATCHED): _S.IN_PROGRESS,
    (_S.NEW, _T.NO_REPOSITORY_MATCH): _S.AWAITING_APPROVAL,
    (_S.IN_PROGRESS, _T.BRANCH_CREATED): _S.IN_PROGRESS,
    (_S.IN_PROGRESS, _T.BRANCH_FAILED): _S.AWAITING_APPROVAL,
    (_S.AWAITING_APPROVAL, _T.HUMAN_APPROVED): _S.APPROVED,
    (_S.AWAITING_APPROVAL, _T.HUMAN_REJECTED): _S.REJECTED,
    (_S.NEW, _T.ENTRY_REJECTED): _S.BLOCKED,
    (_S.IN_PROGRESS, _T.ENTRY_REJECTED): _S.BLOCKED,
    (_S.AWAITING_APPROVAL, _T.ENTRY_REJECTED): _S.BLOCKED,
    (_S.APPROVED, _T.ENTRY_REJECTED): _S.BLOCKED,
    # Resuming after a human approval.
    (_S.APPROVED, _T.REPOSITORY_MATCHED): _S.IN_PROGRESS,
    (_S.APPROVED, _T.NO_REPOSITORY_MATCH): _S.AWAITING_APPROVAL,
    (_S.APPROVED, _T.BRANCH_CREATED): _S.IN_PROGRESS,
    (_S.APPROVED, _T.BRANCH_FAILED): _S.AWAITING_APPROVAL,
    # Manual repository assignment.
    (_S.NEW, _T.REPOSITORY_ASSIGNED): _S.IN_PROGRESS,
    (_S.AWAITING_APPROVAL, _T.REPOSITORY_ASSIGNED): _S.IN_PROGRESS,
    (_S.APPROVED, _T.REPOSITORY_ASSIGNED): _S.IN_PROGRESS,
    (_S.IN_PROGRESS, _T.WORK_COMPLETED): _S.COMPLETED,
}

TERMINAL_STATES = frozenset({_S.COMPLETED, _S.REJECTED, _S.BLOCKED})


class IllegalTransitionError(TaskBridgeError, ValueError):
    pass


def next_state(current: LifecycleState, trigger: Trigger) -> LifecycleState:
    try:
        return ALLOWED_TRANSITIONS[(current, trigger)]
    except KeyError:
        raise IllegalTransitionError(
            f"Illegal transition: {current.value} --{trigger.value}-->"
        ) from None


def can_apply(current: LifecycleState, trigger: Trigger) -> bool:
    return (current, trigger) in ALLOWED_TRANSITIONS


def apply(item: WorkItem, trigger: Trigger) -> LifecycleState:
    """Move `item` through the table, mutating its lifecycle_state.

    Raises:
        IllegalTransitionError: If the (state, trigger) pair is not in the table.
    """

    item.lifecycle_state = next_state(item.lifecycle_state, trigger)
    return item.lifecycle_state
