"""Unit tests for the append-only progress ledger."""

from __future__ import annotations

import pytest

from taskbridge.orchestrator.errors import NotFoundError
from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import ActionKind, Outcome, WorkItem
from taskbridge.orchestrator.workflow.ledger import ImmutableEntryError, ProgressLedger


def _item(database: Database, key: str = "DEV-1") -> int:
    with database.transaction() as session:
        item = WorkItem(external_key=key, title="Fix login bug")
        session.add(item)
        session.flush()
        return item.id


def test_append_stamps_completion_only_for_terminal_outcomes(database: Database) -> None:
    ledger = ProgressLedger()
    item_id = _item(database)

    with database.transaction() as session:
        done = ledger.append(session, item_id, ActionKind.SYNC, Outcome.COMPLETED, "imported")
        running = ledger.append(
            session, item_id, ActionKind.BRANCH_CREATION, Outcome.IN_PROGRESS, "creating"
        )

        assert done.completed_at is not None
        assert running.completed_at is None


def test_history_is_in_insertion_order(database: Database) -> None:
    ledger = ProgressLedger()
    item_id = _item(database)

    with database.transaction() as session:
        for kind in (ActionKind.SYNC, ActionKind.REPOSITORY_ASSIGNMENT, ActionKind.BRANCH_CREATION):
            ledger.append(session, item_id, kind, Outcome.COMPLETED, kind.value)

    with database.read() as session:
        history = ledger.history_for(session, item_id)
        assert [e.action_kind for e in history] == [
            ActionKind.SYNC,
            ActionKind.REPOSITORY_ASSIGNMENT,
            ActionKind.BRANCH_CREATION,
        ]
        latest = ledger.latest(session, item_id)
        assert latest is not None
        assert latest.id == history[-1].id


def test_finalize_open_entry_once(database: Database) -> None:
    ledger = ProgressLedger()
    item_id = _item(database)

    with database.transaction() as session:
        entry = ledger.append(
            session, item_id, ActionKind.BRANCH_CREATION, Outcome.IN_PROGRESS, "creating"
        )
        ledger.finalize(session, entry.id, Outcome.COMPLETED, description="created")
        assert entry.outcome == Outcome.COMPLETED
        assert entry.completed_at is not None

        with pytest.raises(ImmutableEntryError):
            ledger.finalize(session, entry.id, Outcome.FAILED)


def test_awaiting_entry_resolves_only_to_a_decision(database: Database) -> None:
    ledger = ProgressLedger()
    item_id = _item(database)

    with database.transaction() as session:
        entry = ledger.append(
            session,
            item_id,
            ActionKind.REPOSITORY_ASSIGNMENT,
            Outcome.AWAITING_APPROVAL,
            "no match",
        )
        with pytest.raises(ImmutableEntryError):
            ledger.finalize(session, entry.id, Outcome.COMPLETED)

        ledger.finalize(session, entry.id, Outcome.APPROVED)
        assert entry.outcome == Outcome.APPROVED

        awaiting = ledger.latest_awaiting(session, item_id)
        assert awaiting is None


def test_terminal_entries_are_immutable(database: Database) -> None:
    ledger = ProgressLedger()
    item_id = _item(database)

    with database.transaction() as session:
        entry = ledger.append(
            session, item_id, ActionKind.BRANCH_CREATION, Outcome.FAILED, "boom", error="500"
        )
        with pytest.raises(ImmutableEntryError):
            ledger.finalize(session, entry.id, Outcome.APPROVED)


def test_finalize_unknown_entry(database: Database) -> None:
    with database.transaction() as session:
        with pytest.raises(NotFoundError):
            ProgressLedger().finalize(session, 999, Outcome.COMPLETED)


def test_deleting_item_cascades_to_ledger(database: Database) -> None:
    ledger = ProgressLedger()
    item_id = _item(database)
    with database.transaction() as session:
        ledger.append(session, item_id, ActionKind.SYNC, Outcome.COMPLETED, "imported")

    with database.transaction() as session:
        session.delete(session.get(WorkItem, item_id))

    with database.read() as session:
        assert ledger.history_for(session, item_id) == []
