"""Append-only progress ledger.

The ledger for a work item, ordered by creation, is the authoritative history.
It doubles as the resumption cursor (see :mod:`.policy`).

Rules:
- entries are only ever inserted
- an open entry (pending / in-progress) may be finalized once to a terminal outcome
- an awaiting-approval entry may be resolved once, to approved or rejected
- terminal entries never change
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskbridge.orchestrator.errors import NotFoundError, TaskBridgeError
from taskbridge.orchestrator.store.models import (
    OPEN_OUTCOMES,
    ActionKind,
    Outcome,
    ProgressEntry,
    utcnow,
)

logger = logging.getLogger(__name__)

_RUNNING = frozenset({Outcome.PENDING, Outcome.IN_PROGRESS})
_DECISIONS = frozenset({Outcome.APPROVED, Outcome.REJECTED})


class ImmutableEntryError(TaskBridgeError):
    """Raised when a change would violate the append-only rule."""


def is_terminal(outcome: Outcome) -> bool:
    return outcome not in OPEN_OUTCOMES


class ProgressLedger:
    """Reads and appends ledger entries within a caller-supplied session."""

    def append(
        self,
        session: Session,
        work_item_id: int,
        action_kind: ActionKind,
        outcome: Outcome,
        description: str,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ProgressEntry:
        now = utcnow()
        entry = ProgressEntry(
            work_item_id=work_item_id,
            action_kind=action_kind,
            outcome=outcome,
            description=description[:1000],
            error=error,
            details=details,
            created_at=now,
            completed_at=now if is_terminal(outcome) else None,
        )
        session.add(entry)
        session.flush()
        logger.debug(
            "Ledger entry appended",
            extra={
                "work_item_id": work_item_id,
                "entry_id": entry.id,
                "action_kind": action_kind.value,
                "outcome": outcome.value,
            },
        )
        return entry

    def finalize(
        self,
        session: Session,
        entry_id: int,
        outcome: Outcome,
        description: str | None = None,
        error: str | None = None,
    ) -> ProgressEntry:
        """Move an open entry to its terminal outcome and stamp completion time.

        Raises:
            NotFoundError: If the entry does not exist.
            ImmutableEntryError: If the entry is already terminal, or the
                requested outcome is not a legal resolution of it.
        """

        entry = session.get(ProgressEntry, entry_id)
        if entry is None:
            raise NotFoundError(f"Progress entry {entry_id} not found")

        if entry.outcome in _RUNNING:
            allowed = outcome not in _RUNNING
        elif entry.outcome == Outcome.AWAITING_APPROVAL:
            allowed = outcome in _DECISIONS
        else:
            allowed = False
        if not allowed:
            raise ImmutableEntryError(
                f"Entry {entry_id} cannot move from {entry.outcome.value} to {outcome.value}"
            )

        entry.outcome = outcome
        entry.completed_at = utcnow() if is_terminal(outcome) else None
        if description is not None:
            entry.description = description[:1000]
        if error is not None:
            entry.error = error
        session.flush()
        return entry

    def history_for(self, session: Session, work_item_id: int) -> list[ProgressEntry]:
        stmt = (
            select(ProgressEntry)
            .where(ProgressEntry.work_item_id == work_item_id)
            .order_by(ProgressEntry.created_at, ProgressEntry.id)
        )
        return list(session.scalars(stmt))

    def latest(self, session: Session, work_item_id: int) -> ProgressEntry | None:
        stmt = (
            select(ProgressEntry)
            .where(ProgressEntry.work_item_id == work_item_id)
            .order_by(ProgressEntry.created_at.desc(), ProgressEntry.id.desc())
            .limit(1)
        )
        return session.scalars(stmt).first()

    def latest_awaiting(self, session: Session, work_item_id: int) -> ProgressEntry | None:
        stmt = (
            select(ProgressEntry)
            .where(
                ProgressEntry.work_item_id == work_item_id,
                ProgressEntry.outcome == Outcome.AWAITING_APPROVAL,
            )
            .order_by(ProgressEntry.created_at.desc(), ProgressEntry.id.desc())
            .limit(1)
        )
        return session.scalars(stmt).first()
