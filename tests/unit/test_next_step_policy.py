from __future__ import annotations

from taskbridge.orchestrator.store.models import ActionKind, Outcome, ProgressEntry
from taskbridge.orchestrator.workflow.policy import (
    AssignRepository,
    AwaitApproval,
    CreateBranch,
    Done,
    decide_next_step,
)


def _entry(kind: ActionKind, outcome: Outcome, details: dict | None = None) -> ProgressEntry:
    return ProgressEntry(id=7, action_kind=kind, outcome=outcome, description="", details=details)


def test_no_history_or_sync_means_assign() -> None:
    assert decide_next_step(None) == AssignRepository()
    assert decide_next_step(_entry(ActionKind.SYNC, Outcome.COMPLETED)) == AssignRepository()


def test_awaiting_entry_blocks_automation() -> None:
    step = decide_next_step(_entry(ActionKind.BRANCH_CREATION, Outcome.AWAITING_APPROVAL))
    assert step == AwaitApproval(entry_id=7)


def test_assignment_then_branch_then_done() -> None:
    assert (
        decide_next_step(_entry(ActionKind.REPOSITORY_ASSIGNMENT, Outcome.COMPLETED))
        == CreateBranch()
    )
    assert (
        decide_next_step(_entry(ActionKind.REPOSITORY_ASSIGNMENT, Outcome.FAILED))
        == AssignRepository()
    )
    assert isinstance(decide_next_step(_entry(ActionKind.BRANCH_CREATION, Outcome.COMPLETED)), Done)
    assert decide_next_step(_entry(ActionKind.BRANCH_CREATION, Outcome.FAILED)) == CreateBranch()


def test_approval_resumes_the_approved_step() -> None:
    approved_branch = _entry(
        ActionKind.HUMAN_REVIEW,
        Outcome.APPROVED,
        details={"progress_id": 3, "action_kind": "branch-creation"},
    )
    approved_assignment = _entry(
        ActionKind.HUMAN_REVIEW,
        Outcome.APPROVED,
        details={"progress_id": 2, "action_kind": "repository-assignment"},
    )
    approved_unknown = _entry(ActionKind.HUMAN_REVIEW, Outcome.APPROVED, details={"action_kind": "?"})

    assert decide_next_step(approved_branch) == CreateBranch()
    assert decide_next_step(approved_assignment) == Done(
        reason="awaiting manual repository assignment"
    )
    assert isinstance(decide_next_step(approved_unknown), Done)


def test_rejection_and_completion_are_done() -> None:
    assert isinstance(decide_next_step(_entry(ActionKind.HUMAN_REVIEW, Outcome.REJECTED)), Done)
    assert isinstance(decide_next_step(_entry(ActionKind.HUMAN_REVIEW, Outcome.COMPLETED)), Done)
    assert isinstance(decide_next_step(_entry(ActionKind.TESTING, Outcome.COMPLETED)), Done)
