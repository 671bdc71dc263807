"""Unit tests for reconciling tracker items with local work items."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from conftest import external_item
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import (
    ActionKind,
    LifecycleState,
    Outcome,
    ProgressEntry,
    WorkItem,
)
from taskbridge.orchestrator.workflow.ledger import ProgressLedger
from taskbridge.orchestrator.workflow.sync import SyncError, TaskSyncCoordinator


def _count(database: Database, model: type) -> int:
    with database.read() as session:
        return session.scalar(select(func.count()).select_from(model))


def test_new_items_are_created_with_a_sync_entry(database: Database) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())

    with database.transaction() as session:
        result = coordinator.sync(
            session,
            [
                external_item("DEV-1", "Fix login bug", status="To Do", priority="High"),
                external_item("DEV-2", "Add export"),
            ],
        )

    assert (result.created, result.updated, result.ok) == (2, 0, True)
    with database.read() as session:
        item = session.scalars(select(WorkItem).where(WorkItem.external_key == "DEV-1")).one()
        assert item.lifecycle_state == LifecycleState.NEW
        assert item.priority == "High"
        assert [(e.action_kind, e.outcome) for e in item.progress] == [
            (ActionKind.SYNC, Outcome.COMPLETED)
        ]


def test_resync_updates_mirrored_fields_only(database: Database) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())
    with database.transaction() as session:
        coordinator.sync(session, [external_item("DEV-1", "Fix login bug", status="To Do")])

    with database.transaction() as session:
        item = session.scalars(select(WorkItem)).one()
        item.lifecycle_state = LifecycleState.IN_PROGRESS
        item.branch_name = "feature/dev-1-fix-login-bug"

    with database.transaction() as session:
        result = coordinator.sync(
            session, [external_item("DEV-1", "Fix login bug (urgent)", status="In Progress")]
        )

    assert (result.created, result.updated) == (0, 1)
    with database.read() as session:
        item = session.scalars(select(WorkItem)).one()
        assert item.title == "Fix login bug (urgent)"
        assert item.status == "In Progress"
        assert item.lifecycle_state == LifecycleState.IN_PROGRESS
        assert item.branch_name == "feature/dev-1-fix-login-bug"
    assert _count(database, ProgressEntry) == 1


def test_sync_is_idempotent(database: Database) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())
    batch = [external_item("DEV-1", "Fix login bug"), external_item("DEV-2", "Add export")]

    for _ in range(3):
        with database.transaction() as session:
            coordinator.sync(session, batch)

    assert _count(database, WorkItem) == 2
    assert _count(database, ProgressEntry) == 2


def test_duplicate_keys_in_one_batch_are_merged(database: Database) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())

    with database.transaction() as session:
        result = coordinator.sync(
            session,
            [external_item("DEV-1", "first title"), external_item("DEV-1", "second title")],
        )

    assert result.created == 1
    with database.read() as session:
        assert session.scalars(select(WorkItem.title)).all() == ["second title"]


def test_items_without_a_key_are_skipped(database: Database) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())

    with database.transaction() as session:
        result = coordinator.sync(session, [external_item("  ", "no key"), external_item("DEV-1", "ok")])

    assert (result.created, result.skipped) == (1, 1)


def test_sync_never_deletes(database: Database) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())
    with database.transaction() as session:
        coordinator.sync(session, [external_item("DEV-1", "a"), external_item("DEV-2", "b")])

    with database.transaction() as session:
        coordinator.sync(session, [])

    assert _count(database, WorkItem) == 2


def test_persistence_failure_raises_sync_error() -> None:
    session = Mock()
    session.scalars.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    coordinator = TaskSyncCoordinator(ProgressLedger())

    with pytest.raises(SyncError):
        coordinator.sync(session, [external_item("DEV-1", "a")])


def test_key_created_by_another_writer_is_updated(
    database: Database, monkeypatch: pytest.MonkeyPatch
) -> None:
    coordinator = TaskSyncCoordinator(ProgressLedger())
    with database.transaction() as session:
        coordinator.sync(session, [external_item("DEV-1", "Fix login bug", status="To Do")])

    with database.transaction() as session:
        # The row exists, but this writer's lookup ran before it was committed.
        real_scalars = session.scalars
        lookups = iter([select(WorkItem).where(WorkItem.id == -1)])

        def stale_first_lookup(statement, *args, **kwargs):  # type: ignore[no-untyped-def]
            return real_scalars(next(lookups, statement), *args, **kwargs)

        monkeypatch.setattr(session, "scalars", stale_first_lookup)
        result = coordinator.sync(
            session, [external_item("DEV-1", "Fix login bug (auth)", status="In Progress")]
        )
        monkeypatch.undo()
        session.add(WorkItem(external_key="DEV-2", title="Committed alongside"))

    assert (result.created, result.updated, result.ok) == (0, 1, True)
    assert _count(database, WorkItem) == 2
    assert _count(database, ProgressEntry) == 1
    with database.read() as session:
        item = session.scalars(select(WorkItem).where(WorkItem.external_key == "DEV-1")).one()
        assert item.title == "Fix login bug (auth)"
        assert item.status == "In Progress"
