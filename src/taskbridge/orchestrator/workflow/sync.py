"""Reconciles tracker items with local work items."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from taskbridge.orchestrator.errors import TaskBridgeError
from taskbridge.orchestrator.store.models import (
    ActionKind,
    LifecycleState,
    Outcome,
    WorkItem,
    utcnow,
)
from taskbridge.orchestrator.tracker.base import ExternalWorkItem
from taskbridge.orchestrator.workflow import state_machine
from taskbridge.orchestrator.workflow.ledger import ProgressLedger
from taskbridge.orchestrator.workflow.state_machine import Trigger

logger = logging.getLogger(__name__)


class SyncError(TaskBridgeError):
    """The batch could not be persisted."""


@dataclass(frozen=True, slots=True)
class SyncResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    ok: bool = True
    error: str | None = None


def _merge_batch(items: Iterable[ExternalWorkItem]) -> tuple[dict[str, ExternalWorkItem], int]:
    """Collapse duplicate keys (later wins) and drop items without a key."""

    merged: dict[str, ExternalWorkItem] = {}
    skipped = 0
    for item in items:
        key = (item.key or "").strip()
        if not key:
            logger.warning("Skipping tracker item without a key", extra={"title": item.title})
            skipped += 1
            continue
        merged[key] = item
    return merged, skipped


def _mirror(target: WorkItem, source: ExternalWorkItem) -> None:
    # Only tracker-owned fields; lifecycle fields belong to the engine.
    target.title = source.title or ""
    target.description = source.description or ""
    target.status = source.status or ""
    target.priority = source.priority or ""
    target.assignee = source.assignee or ""
    target.updated_date = source.updated_at
    target.due_date = source.due_date
    target.last_synced_at = utcnow()


class TaskSyncCoordinator:
    """Creates new work items and refreshes the mirrored fields of known ones.

    Never deletes, and never touches lifecycle state, repository, branch or
    ledger of an existing item.
    """

    def __init__(self, ledger: ProgressLedger) -> None:
        self._ledger = ledger

    def sync(self, session: Session, external_items: Iterable[ExternalWorkItem]) -> SyncResult:
        """Merge `external_items` into the store inside the caller's transaction.

        Raises:
            SyncError: If the store rejects the batch. The caller's transaction
                should be rolled back.
        """

        batch, skipped = _merge_batch(external_items)
        created = updated = 0
        try:
            for key, source in batch.items():
                existing = session.scalars(
                    select(WorkItem).where(WorkItem.external_key == key)
                ).first()
                if existing is not None:
                    _mirror(existing, source)
                    updated += 1
                    continue

                if self._create(session, key, source):
                    created += 1
                else:
                    updated += 1
            session.flush()
        except SQLAlchemyError as e:
            logger.error("Sync failed to persist", extra={"error": str(e)})
            raise SyncError(f"Failed to persist synced items: {e}") from e

        logger.info(
            "Sync merged",
            extra={"created": created, "updated": updated, "skipped": skipped},
        )
        return SyncResult(created=created, updated=updated, skipped=skipped)

    def _create(self, session: Session, key: str, source: ExternalWorkItem) -> bool:
        """Insert a new item; on a key collision fall back to updating the winner.

        Returns:
            True if a row was inserted, False if another writer got there first.
        """

        item = WorkItem(
            external_key=key,
            reporter=source.reporter or "",
            created_date=source.created_at,
            lifecycle_state=LifecycleState.NEW,
            requires_approval=False,
        )
        _mirror(item, source)
        try:
            with session.begin_nested():
                session.add(item)
                session.flush()
                state_machine.apply(item, Trigger.SYNC_IMPORT)
                self._ledger.append(
                    session,
                    item.id,
                    ActionKind.SYNC,
                    Outcome.COMPLETED,
                    "Task imported from tracker",
                    details={"status": item.status},
                )
        except IntegrityError:
            logger.info("Work item created concurrently; updating instead", extra={"key": key})
            winner = session.scalars(select(WorkItem).where(WorkItem.external_key == key)).one()
            _mirror(winner, source)
            return False
        return True
