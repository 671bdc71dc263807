"""Human sign-off for work items.

A work item is *parked* when automation cannot continue on its own: no
repository matched, or the provider refused or failed a branch creation. The
entry that parked it is the one a human approves or rejects.

Two kinds of entry can be decided:

- an open `awaiting-approval` entry is resolved in place (approved/rejected);
- a `failed` entry is terminal, so the decision is recorded as an appended
  `human-review` entry whose `details` point back at it.

Either way a `human-review` entry is appended so the ledger reads as a
complete audit trail, and its `details["action_kind"]` tells the policy which
step to resume.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from taskbridge.orchestrator.errors import NotFoundError, ValidationError
from taskbridge.orchestrator.store.models import (
    ActionKind,
    LifecycleState,
    Outcome,
    ProgressEntry,
    Repository,
    WorkItem,
)
from taskbridge.orchestrator.workflow import state_machine
from taskbridge.orchestrator.workflow.ledger import ProgressLedger
from taskbridge.orchestrator.workflow.state_machine import Trigger

logger = logging.getLogger(__name__)

_DECIDABLE = frozenset({Outcome.AWAITING_APPROVAL, Outcome.FAILED})


def _review_details(entry: ProgressEntry) -> dict[str, object]:
    return {"progress_id": entry.id, "action_kind": entry.action_kind.value}


class ApprovalGate:
    """Applies approval-related transitions and their ledger side effects.

    Every method works inside the caller's session and either completes all of
    its writes or raises before making any.
    """

    def __init__(self, ledger: ProgressLedger) -> None:
        self._ledger = ledger

    def park_unmatched(self, session: Session, item: WorkItem, reason: str) -> ProgressEntry:
        """No repository fits: wait for a human to assign one."""

        state_machine.next_state(item.lifecycle_state, Trigger.NO_REPOSITORY_MATCH)
        entry = self._ledger.append(
            session,
            item.id,
            ActionKind.REPOSITORY_ASSIGNMENT,
            Outcome.AWAITING_APPROVAL,
            reason,
        )
        item.requires_approval = True
        state_machine.apply(item, Trigger.NO_REPOSITORY_MATCH)
        logger.info(
            "Work item parked for approval",
            extra={"key": item.external_key, "entry_id": entry.id},
        )
        return entry

    def park_missing_repository(self, session: Session, item: WorkItem) -> ProgressEntry:
        """The assigned repository was deleted before the branch was created."""

        state_machine.next_state(item.lifecycle_state, Trigger.BRANCH_FAILED)
        entry = self._ledger.append(
            session,
            item.id,
            ActionKind.REPOSITORY_ASSIGNMENT,
            Outcome.AWAITING_APPROVAL,
            "Assigned repository no longer exists. Human intervention required.",
        )
        item.requires_approval = True
        state_machine.apply(item, Trigger.BRANCH_FAILED)
        logger.warning(
            "Work item lost its repository",
            extra={"key": item.external_key, "entry_id": entry.id},
        )
        return entry

    def parking_entry(self, session: Session, item: WorkItem) -> ProgressEntry | None:
        """The entry a task-level approve/reject acts on, if any.

        Prefers the latest open awaiting-approval entry; otherwise a failed
        latest entry of a parked item.
        """

        awaiting = self._ledger.latest_awaiting(session, item.id)
        if awaiting is not None:
            return awaiting
        if item.lifecycle_state != LifecycleState.AWAITING_APPROVAL:
            return None
        latest = self._ledger.latest(session, item.id)
        if latest is not None and latest.outcome == Outcome.FAILED:
            return latest
        return None

    def approve(self, session: Session, item: WorkItem, entry_id: int) -> ProgressEntry:
        """Approve a parked entry; the item moves to `approved`.

        Returns:
            The appended `human-review/approved` entry.

        Raises:
            NotFoundError: The entry does not belong to the item.
            ValidationError: The entry is not awaiting a decision.
            IllegalTransitionError: The item is not awaiting approval.
        """

        entry = self._entry_of(session, item, entry_id)
        state_machine.next_state(item.lifecycle_state, Trigger.HUMAN_APPROVED)
        if entry.outcome not in _DECIDABLE:
            raise ValidationError(
                f"Progress entry {entry_id} is {entry.outcome.value}; nothing to approve"
            )

        if entry.outcome == Outcome.AWAITING_APPROVAL:
            self._ledger.finalize(session, entry.id, Outcome.APPROVED)
        review = self._ledger.append(
            session,
            item.id,
            ActionKind.HUMAN_REVIEW,
            Outcome.APPROVED,
            f"Approved: {entry.description}",
            details=_review_details(entry),
        )
        item.requires_approval = False
        state_machine.apply(item, Trigger.HUMAN_APPROVED)
        logger.info("Progress approved", extra={"key": item.external_key, "entry_id": entry.id})
        return review

    def reject(
        self, session: Session, item: WorkItem, entry_id: int, reason: str
    ) -> LifecycleState:
        """Reject an entry.

        Rejecting the entry that parked an `awaiting-approval` item rejects the
        work item itself. Rejecting any other entry blocks the item.

        Returns:
            The item's new lifecycle state.
        """

        entry = self._entry_of(session, item, entry_id)
        parking = self.parking_entry(session, item)
        if (
            item.lifecycle_state == LifecycleState.AWAITING_APPROVAL
            and parking is not None
            and parking.id == entry.id
        ):
            trigger = Trigger.HUMAN_REJECTED
        else:
            trigger = Trigger.ENTRY_REJECTED
        state_machine.next_state(item.lifecycle_state, trigger)

        if entry.is_open:
            self._ledger.finalize(session, entry.id, Outcome.REJECTED, error=reason)
        if trigger == Trigger.HUMAN_REJECTED or not entry.is_open:
            self._ledger.append(
                session,
                item.id,
                ActionKind.HUMAN_REVIEW,
                Outcome.REJECTED,
                f"Rejected: {entry.description}",
                error=reason,
                details=_review_details(entry),
            )

        item.notes = reason
        item.requires_approval = False
        new_state = state_machine.apply(item, trigger)
        logger.info(
            "Progress rejected",
            extra={"key": item.external_key, "entry_id": entry.id, "state": new_state.value},
        )
        return new_state

    def assign_repository(
        self, session: Session, item: WorkItem, repository: Repository
    ) -> ProgressEntry:
        """Manually assign a repository, resolving any open approval in favour."""

        state_machine.next_state(item.lifecycle_state, Trigger.REPOSITORY_ASSIGNED)
        if not repository.is_active:
            raise ValidationError(f"Repository {repository.name} is inactive")

        awaiting = self._ledger.latest_awaiting(session, item.id)
        if awaiting is not None:
            self._ledger.finalize(session, awaiting.id, Outcome.APPROVED)
            self._ledger.append(
                session,
                item.id,
                ActionKind.HUMAN_REVIEW,
                Outcome.APPROVED,
                f"Resolved by manual assignment of {repository.name}",
                details=_review_details(awaiting),
            )

        item.repository_id = repository.id
        item.requires_approval = False
        entry = self._ledger.append(
            session,
            item.id,
            ActionKind.REPOSITORY_ASSIGNMENT,
            Outcome.COMPLETED,
            f"Manually assigned repository: {repository.name}",
            details={"repository_id": repository.id, "manual": True},
        )
        state_machine.apply(item, Trigger.REPOSITORY_ASSIGNED)
        return entry

    @staticmethod
    def _entry_of(session: Session, item: WorkItem, entry_id: int) -> ProgressEntry:
        entry = session.get(ProgressEntry, entry_id)
        if entry is None or entry.work_item_id != item.id:
            raise NotFoundError(f"Progress entry {entry_id} not found for task {item.id}")
        return entry
