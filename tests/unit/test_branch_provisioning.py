"""Unit tests for branch naming and the two-phase branch provisioner."""

from __future__ import annotations

import pytest
from conftest import FakeProvider, FakeTaskSource, add_repository

from taskbridge.orchestrator.errors import TransientError, ValidationError
from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import (
    ActionKind,
    LifecycleState,
    Outcome,
    Repository,
    WorkItem,
)
from taskbridge.orchestrator.workflow.branching import (
    BranchProvisioner,
    branch_name_for,
    validate_branch_name,
)
from taskbridge.orchestrator.workflow.ledger import ProgressLedger
from taskbridge.orchestrator.workflow.state_machine import IllegalTransitionError


@pytest.mark.parametrize(
    ("key", "title", "expected"),
    [
        ("DEV-1", "Fix login bug", "feature/dev-1-fix-login-bug"),
        ("OPS-12", "Update v2.0 config_loader/parser", "feature/ops-12-update-v2-0-config-loader-pars"),
        ("DEV-2", "Ünïcödé & symbols!!", "feature/dev-2-ncd--symbols"),
        ("DEV-3", "!!!", "feature/dev-3-task"),
        ("DEV-4", "", "feature/dev-4-task"),
        ("DEV-5", "a very long title that ends with a dash-", "feature/dev-5-a-very-long-title-that-ends-wi"),
    ],
)
def test_branch_name_for(key: str, title: str, expected: str) -> None:
    assert branch_name_for(key, title) == expected


def test_branch_name_is_deterministic() -> None:
    assert branch_name_for("DEV-1", "Fix login bug") == branch_name_for("DEV-1", "Fix login bug")


def test_slug_never_ends_with_a_dash() -> None:
    # Truncation lands right after a separator.
    name = branch_name_for("DEV-6", "abcdefghijklmnopqrstuvwxyzabc def")
    assert name == "feature/dev-6-abcdefghijklmnopqrstuvwxyzabc"


@pytest.mark.parametrize(
    "name", ["", "   ", "has space", "double..dot", "-leading", "/leading", "trailing/", "x.lock"]
)
def test_invalid_explicit_names(name: str) -> None:
    with pytest.raises(ValidationError):
        validate_branch_name(name)


def test_valid_explicit_name_is_stripped() -> None:
    assert validate_branch_name("  hotfix/dev-1  ") == "hotfix/dev-1"


def _in_progress_item(database: Database, repo_id: int, *, branch: str | None = None) -> int:
    with database.transaction() as session:
        item = WorkItem(
            external_key="DEV-1",
            title="Fix login bug",
            lifecycle_state=LifecycleState.IN_PROGRESS,
            repository_id=repo_id,
            branch_name=branch,
        )
        session.add(item)
        session.flush()
        return item.id


def _repo_info(database: Database, repo_id: int):  # noqa: ANN202
    with database.read() as session:
        return session.get(Repository, repo_id).to_info()


def _history(database: Database, item_id: int) -> list[tuple[ActionKind, Outcome]]:
    with database.read() as session:
        return [(e.action_kind, e.outcome) for e in ProgressLedger().history_for(session, item_id)]


def test_provision_success_records_branch_and_comments(database: Database) -> None:
    repo_id = add_repository(database, "auth-service", "login", default_branch="develop")
    item_id = _in_progress_item(database, repo_id)
    provider = FakeProvider()
    source = FakeTaskSource()
    provisioner = BranchProvisioner(provider=provider, ledger=ProgressLedger(), task_source=source)

    assert provisioner.provision(database, item_id, _repo_info(database, repo_id)) is True

    assert provider.created == [("auth-service", "feature/dev-1-fix-login-bug", "develop")]
    assert _history(database, item_id) == [(ActionKind.BRANCH_CREATION, Outcome.COMPLETED)]
    assert source.comments and source.comments[0][0] == "DEV-1"
    with database.read() as session:
        item = session.get(WorkItem, item_id)
        assert item.branch_name == "feature/dev-1-fix-login-bug"
        assert item.lifecycle_state == LifecycleState.IN_PROGRESS
        assert session.get(Repository, repo_id).last_used_at is not None


def test_provider_refusal_parks_for_approval(database: Database) -> None:
    repo_id = add_repository(database, "auth-service")
    item_id = _in_progress_item(database, repo_id)
    provider = FakeProvider()
    provider.branch_result = False
    provisioner = BranchProvisioner(provider=provider, ledger=ProgressLedger())

    assert provisioner.provision(database, item_id, _repo_info(database, repo_id)) is False

    assert _history(database, item_id) == [(ActionKind.BRANCH_CREATION, Outcome.AWAITING_APPROVAL)]
    with database.read() as session:
        item = session.get(WorkItem, item_id)
        assert item.lifecycle_state == LifecycleState.AWAITING_APPROVAL
        assert item.requires_approval is True
        assert item.branch_name is None


def test_provider_error_is_recorded_as_failed(database: Database) -> None:
    repo_id = add_repository(database, "auth-service")
    item_id = _in_progress_item(database, repo_id)
    provider = FakeProvider()
    provider.branch_result = TransientError("Create branch timed out")
    provisioner = BranchProvisioner(provider=provider, ledger=ProgressLedger())

    assert provisioner.provision(database, item_id, _repo_info(database, repo_id)) is False

    with database.read() as session:
        latest = ProgressLedger().latest(session, item_id)
        assert latest.outcome == Outcome.FAILED
        assert "timed out" in (latest.error or "")
        assert session.get(WorkItem, item_id).lifecycle_state == LifecycleState.AWAITING_APPROVAL


def test_existing_branch_with_same_name_skips_provider(database: Database) -> None:
    repo_id = add_repository(database, "auth-service")
    item_id = _in_progress_item(database, repo_id, branch="feature/dev-1-fix-login-bug")
    provider = FakeProvider()
    provisioner = BranchProvisioner(provider=provider, ledger=ProgressLedger())

    assert provisioner.provision(database, item_id, _repo_info(database, repo_id)) is True
    assert provider.created == []
    assert _history(database, item_id) == []


def test_renaming_an_existing_branch_is_refused(database: Database) -> None:
    repo_id = add_repository(database, "auth-service")
    item_id = _in_progress_item(database, repo_id, branch="feature/dev-1-fix-login-bug")
    provider = FakeProvider()
    provisioner = BranchProvisioner(provider=provider, ledger=ProgressLedger())

    ok = provisioner.provision(database, item_id, _repo_info(database, repo_id), "feature/other")

    assert ok is False
    assert provider.created == []
    assert _history(database, item_id) == [(ActionKind.BRANCH_CREATION, Outcome.FAILED)]
    with database.read() as session:
        assert session.get(WorkItem, item_id).branch_name == "feature/dev-1-fix-login-bug"


def test_abandoned_attempt_is_closed_before_retry(database: Database) -> None:
    repo_id = add_repository(database, "auth-service")
    item_id = _in_progress_item(database, repo_id)
    ledger = ProgressLedger()
    with database.transaction() as session:
        ledger.append(session, item_id, ActionKind.BRANCH_CREATION, Outcome.IN_PROGRESS, "crashed")

    provisioner = BranchProvisioner(provider=FakeProvider(), ledger=ledger)
    assert provisioner.provision(database, item_id, _repo_info(database, repo_id)) is True

    assert _history(database, item_id) == [
        (ActionKind.BRANCH_CREATION, Outcome.FAILED),
        (ActionKind.BRANCH_CREATION, Outcome.COMPLETED),
    ]


def test_provisioning_from_a_new_item_is_illegal(database: Database) -> None:
    repo_id = add_repository(database, "auth-service")
    with database.transaction() as session:
        item = WorkItem(external_key="DEV-9", title="x", lifecycle_state=LifecycleState.NEW)
        session.add(item)
        session.flush()
        item_id = item.id

    provisioner = BranchProvisioner(provider=FakeProvider(), ledger=ProgressLedger())
    with pytest.raises(IllegalTransitionError):
        provisioner.provision(database, item_id, _repo_info(database, repo_id))
    assert _history(database, item_id) == []
