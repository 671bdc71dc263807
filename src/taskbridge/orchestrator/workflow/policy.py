from __future__ import annotations

from dataclasses import dataclass

from taskbridge.orchestrator.store.models import ActionKind, Outcome, ProgressEntry


@dataclass(frozen=True, slots=True)
class AwaitApproval:
    """An approval is open; nothing may advance automatically."""

    entry_id: int


@dataclass(frozen=True, slots=True)
class AssignRepository:
    pass


@dataclass(frozen=True, slots=True)
class CreateBranch:
    pass


@dataclass(frozen=True, slots=True)
class Done:
    reason: str = ""


NextStep = AwaitApproval | AssignRepository | CreateBranch | Done

# Approving a no-match park hands the choice of repository to a human; the
# matcher would only fail again on the same catalog.
_STEP_FOR_KIND: dict[ActionKind, NextStep] = {
    ActionKind.REPOSITORY_ASSIGNMENT: Done(reason="awaiting manual repository assignment"),
    ActionKind.BRANCH_CREATION: CreateBranch(),
}


def decide_next_step(latest: ProgressEntry | None) -> NextStep:
    """Policy: most recent ledger entry -> next step.

    Only the latest entry is consulted, so the ledger is the resumption cursor.
    This must stay pure; it performs no I/O.
    """

    if latest is None or latest.action_kind == ActionKind.SYNC:
        return AssignRepository()

    if latest.outcome == Outcome.AWAITING_APPROVAL:
        return AwaitApproval(entry_id=latest.id)

    if latest.outcome == Outcome.REJECTED:
        return Done(reason="rejected")

    if latest.action_kind == ActionKind.HUMAN_REVIEW:
        if latest.outcome != Outcome.APPROVED:
            return Done(reason=f"human review {latest.outcome.value}")
        subject = (latest.details or {}).get("action_kind")
        try:
            return _STEP_FOR_KIND.get(ActionKind(subject), Done(reason="approved"))
        except ValueError:
            return Done(reason="approved")

    if latest.action_kind == ActionKind.REPOSITORY_ASSIGNMENT:
        if latest.outcome == Outcome.COMPLETED:
            return CreateBranch()
        return AssignRepository()

    if latest.action_kind == ActionKind.BRANCH_CREATION:
        if latest.outcome == Outcome.COMPLETED:
            return Done(reason="branch created")
        return CreateBranch()

    return Done(reason=f"no automatic step after {latest.action_kind.value}")
