"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from taskbridge.orchestrator.errors import TaskBridgeError
from taskbridge.orchestrator.providers.base import (
    ProviderKind,
    RepositoryInfo,
    RepositoryProvider,
)
from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import Repository
from taskbridge.orchestrator.tracker.base import ExternalWorkItem
from taskbridge.orchestrator.workflow.engine import TaskLifecycleOrchestrator
from taskbridge.orchestrator.workflow.matching import RepositoryMatcher


class FakeTaskSource:
    """In-memory tracker."""

    def __init__(self, items: list[ExternalWorkItem] | None = None) -> None:
        self.items = list(items or [])
        self.queries: list[str] = []
        self.comments: list[tuple[str, str]] = []
        self.transitions: list[tuple[str, str]] = []
        self.fetch_error: TaskBridgeError | None = None

    def fetch_open_items(self, query: str) -> list[ExternalWorkItem]:
        self.queries.append(query)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.items)

    def post_comment(self, key: str, text: str) -> bool:
        self.comments.append((key, text))
        return True

    def transition_issue(self, key: str, status: str) -> bool:
        self.transitions.append((key, status))
        return True


class FakeProvider(RepositoryProvider):
    """In-memory repository host.

    `branch_result` is returned from create_branch, or raised if it is an exception.
    """

    kind = ProviderKind.BITBUCKET

    def __init__(self, repositories: list[RepositoryInfo] | None = None) -> None:
        self.repositories = list(repositories or [])
        self.branch_result: bool | TaskBridgeError = True
        self.created: list[tuple[str, str, str | None]] = []
        self.closed = False

    def list_active(self) -> list[RepositoryInfo]:
        return list(self.repositories)

    def create_branch(
        self, repository: RepositoryInfo, branch_name: str, base_branch: str | None = None
    ) -> bool:
        self.created.append((repository.name, branch_name, base_branch))
        if isinstance(self.branch_result, TaskBridgeError):
            raise self.branch_result
        return self.branch_result

    def default_branch(self, repository: RepositoryInfo) -> str:
        return repository.default_branch

    def close(self) -> None:
        self.closed = True


def external_item(key: str, title: str, description: str = "", **kwargs: object) -> ExternalWorkItem:
    return ExternalWorkItem(key=key, title=title, description=description, **kwargs)  # type: ignore[arg-type]


def catalog_info(name: str, description: str = "", *, is_active: bool = True) -> RepositoryInfo:
    return RepositoryInfo(
        name=name,
        clone_url=f"https://bitbucket.org/acme/{name}.git",
        provider=ProviderKind.BITBUCKET,
        description=description,
        is_active=is_active,
    )


def add_repository(
    database: Database,
    name: str,
    description: str = "",
    *,
    is_active: bool = True,
    default_branch: str = "main",
) -> int:
    with database.transaction() as session:
        repo = Repository(
            name=name,
            clone_url=f"https://bitbucket.org/acme/{name}.git",
            provider=ProviderKind.BITBUCKET,
            default_branch=default_branch,
            is_active=is_active,
            description=description,
        )
        session.add(repo)
        session.flush()
        return repo.id


@pytest.fixture
def database(tmp_path: Path) -> Iterator[Database]:
    """Provide a file-backed SQLite store with the schema created."""
    db = Database(f"sqlite:///{tmp_path / 'taskbridge.db'}")
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def task_source() -> FakeTaskSource:
    return FakeTaskSource()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def orchestrator(
    database: Database, task_source: FakeTaskSource, provider: FakeProvider
) -> TaskLifecycleOrchestrator:
    """Orchestrator wired to fakes; catalog refresh is a no-op unless the test adds repos."""
    return TaskLifecycleOrchestrator(
        database,
        task_source=task_source,
        provider=provider,
        matcher=RepositoryMatcher(min_keyword_matches=1),
        jql="project = DEV",
        max_concurrent_tasks=2,
    )
