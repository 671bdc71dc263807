"""The task lifecycle orchestrator.

This is the single entry point used by the CLI and the HTTP API. It composes
the sync coordinator, matcher, branch provisioner and approval gate, and owns
the concurrency model:

- one per-item lock serialises every mutating call for the same work item
- batch processing fans out over a bounded thread pool
- each worker uses its own sessions; each state change is one transaction

Public methods never raise taskbridge or database errors: they log them,
record them in the ledger where there is an item to record against, and
return a boolean or result object.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskbridge.orchestrator.config import DEFAULT_JQL, TaskBridgeSettings
from taskbridge.orchestrator.errors import (
    ConfigurationError,
    NotFoundError,
    TaskBridgeError,
    ValidationError,
)
from taskbridge.orchestrator.providers.base import (
    RepositoryInfo,
    RepositoryProvider,
    build_provider,
)
from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import (
    ActionKind,
    LifecycleState,
    Outcome,
    Repository,
    WorkItem,
)
from taskbridge.orchestrator.tracker.base import TaskSource
from taskbridge.orchestrator.tracker.jira import JiraClient
from taskbridge.orchestrator.workflow import state_machine
from taskbridge.orchestrator.workflow.approval import ApprovalGate
from taskbridge.orchestrator.workflow.branching import BranchProvisioner
from taskbridge.orchestrator.workflow.ledger import ProgressLedger
from taskbridge.orchestrator.workflow.matching import RepositoryMatcher
from taskbridge.orchestrator.workflow.policy import (
    AssignRepository,
    AwaitApproval,
    CreateBranch,
    Done,
    decide_next_step,
)
from taskbridge.orchestrator.workflow.state_machine import TERMINAL_STATES, Trigger
from taskbridge.orchestrator.workflow.sync import SyncError, SyncResult, TaskSyncCoordinator
from taskbridge.orchestrator.workflow.views import RepositoryView, WorkItemView

logger = logging.getLogger(__name__)

# A full pass takes three reads of the ledger: assign repository, create the
# branch, then see Done. One more is spare.
_MAX_STEPS_PER_PASS = 4

_PENDING_STATES = (LifecycleState.IN_PROGRESS, LifecycleState.APPROVED)

_HANDLED = (TaskBridgeError, SQLAlchemyError)


class TaskLifecycleOrchestrator:
    """Drives work items from import to completion.

    Args:
        database: The local store.
        task_source: Tracker client. Optional; sync and tracker updates are
            unavailable without it.
        provider: Repository provider. Optional; catalog refresh and branch
            creation are unavailable without it.
        matcher: Repository matching policy.
        jql: Query passed to ``task_source.fetch_open_items``.
        max_concurrent_tasks: Upper bound on items processed in parallel.
        auto_create_branches: Create the branch right after a repository is assigned.
        auto_update_tracker: Comment on the tracker issue after branch creation.
        tracker_done_status: Tracker status to move an issue to on completion.
    """

    def __init__(
        self,
        database: Database,
        *,
        task_source: TaskSource | None = None,
        provider: RepositoryProvider | None = None,
        matcher: RepositoryMatcher | None = None,
        jql: str = DEFAULT_JQL,
        max_concurrent_tasks: int = 3,
        auto_create_branches: bool = True,
        auto_update_tracker: bool = True,
        tracker_done_status: str = "",
    ) -> None:
        if max_concurrent_tasks < 1:
            raise ValueError("max_concurrent_tasks must be >= 1")

        self._db = database
        self._task_source = task_source
        self._provider = provider
        self._matcher = matcher or RepositoryMatcher()
        self._jql = jql
        self._max_workers = max_concurrent_tasks
        if database.single_connection and max_concurrent_tasks > 1:
            logger.warning(
                "In-memory database; processing tasks one at a time",
                extra={"max_concurrent_tasks": max_concurrent_tasks},
            )
            self._max_workers = 1
        self._auto_create_branches = auto_create_branches
        self._tracker_done_status = tracker_done_status.strip()

        self._ledger = ProgressLedger()
        self._gate = ApprovalGate(self._ledger)
        self._coordinator = TaskSyncCoordinator(self._ledger)
        self._provisioner = (
            BranchProvisioner(
                provider=provider,
                ledger=self._ledger,
                task_source=task_source,
                comment_on_success=auto_update_tracker,
            )
            if provider is not None
            else None
        )

        self._locks: dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: TaskBridgeSettings,
        *,
        database: Database | None = None,
        task_source: TaskSource | None = None,
        provider: RepositoryProvider | None = None,
    ) -> TaskLifecycleOrchestrator:
        """Wire the orchestrator from settings.

        Collaborators whose credentials are missing are left out rather than
        failing, so read-only commands work on a bare configuration.
        """

        if database is None:
            database = Database(settings.database_url)
            database.create_schema()

        if task_source is None:
            try:
                task_source = JiraClient.from_settings(settings)
            except ConfigurationError as e:
                logger.debug("Tracker not configured", extra={"reason": str(e)})

        if provider is None:
            try:
                provider = build_provider(settings)
            except ConfigurationError as e:
                logger.debug("Repository provider not configured", extra={"reason": str(e)})

        return cls(
            database,
            task_source=task_source,
            provider=provider,
            matcher=RepositoryMatcher(min_keyword_matches=settings.match_min_keywords),
            jql=settings.jira_jql,
            max_concurrent_tasks=settings.max_concurrent_tasks,
            auto_create_branches=settings.auto_create_branches,
            auto_update_tracker=settings.auto_update_tracker,
            tracker_done_status=settings.tracker_done_status,
        )

    @property
    def database(self) -> Database:
        return self._db

    def close(self) -> None:
        if self._provider is not None:
            self._provider.close()
        close_source = getattr(self._task_source, "close", None)
        if callable(close_source):
            close_source()

    # ------------------------------------------------------------------
    # Sync and catalog

    def sync(self) -> SyncResult:
        """Pull open items from the tracker, merge them, then process new ones."""

        if self._task_source is None:
            logger.error("Sync requested without a tracker configured")
            return SyncResult(ok=False, error="No task source configured")

        try:
            external_items = self._task_source.fetch_open_items(self._jql)
        except TaskBridgeError as e:
            logger.error("Failed to fetch tracker items", extra={"error": str(e)})
            return SyncResult(ok=False, error=str(e))

        if self._provider is not None:
            self.refresh_repositories()

        try:
            with self._db.transaction() as session:
                result = self._coordinator.sync(session, external_items)
        except SyncError as e:
            return SyncResult(ok=False, error=str(e))
        except SQLAlchemyError as e:
            logger.error("Sync commit failed", extra={"error": str(e)})
            return SyncResult(ok=False, error=f"Failed to commit synced items: {e}")

        processed = self.process_new_tasks()
        logger.info(
            "Sync completed",
            extra={"created": result.created, "updated": result.updated, "processed": processed},
        )
        return result

    def refresh_repositories(self) -> int:
        """Upsert the provider's repositories; unlisted ones are marked inactive.

        Returns:
            Number of repositories the provider listed, or 0 on failure.
        """

        if self._provider is None:
            logger.error("Catalog refresh requested without a repository provider")
            return 0

        try:
            listed = self._provider.list_active()
            with self._db.transaction() as session:
                self._upsert_catalog(session, listed)
        except _HANDLED as e:
            logger.error("Repository refresh failed", extra={"error": str(e)})
            return 0

        logger.info("Repository catalog refreshed", extra={"count": len(listed)})
        return len(listed)

    def _upsert_catalog(self, session: Session, listed: Iterable[RepositoryInfo]) -> None:
        kind = self._provider.kind if self._provider is not None else None
        known = {
            r.clone_url: r
            for r in session.scalars(select(Repository).where(Repository.provider == kind))
        }
        seen: set[str] = set()
        for info in listed:
            if not info.clone_url or info.clone_url in seen:
                continue
            seen.add(info.clone_url)
            row = known.get(info.clone_url)
            if row is None:
                row = Repository(clone_url=info.clone_url, provider=info.provider)
                session.add(row)
            row.name = info.name
            row.default_branch = info.default_branch or "main"
            row.is_active = info.is_active
            row.description = info.description
            row.project_key = info.project_key

        for clone_url, row in known.items():
            if clone_url not in seen and row.is_active:
                row.is_active = False
                logger.info("Repository no longer listed", extra={"repository": row.name})

    # ------------------------------------------------------------------
    # Processing

    def process_new_tasks(self) -> int:
        return self._process_all(self._ids_in_states((LifecycleState.NEW,)))

    def process_pending_tasks(self) -> int:
        return self._process_all(self._ids_in_states(_PENDING_STATES))

    def _ids_in_states(self, states: Iterable[LifecycleState]) -> list[int]:
        try:
            with self._db.read() as session:
                stmt = (
                    select(WorkItem.id)
                    .where(WorkItem.lifecycle_state.in_(list(states)))
                    .order_by(WorkItem.id)
                )
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            logger.error("Failed to list work items", extra={"error": str(e)})
            return []

    def _process_all(self, task_ids: list[int]) -> int:
        if not task_ids:
            return 0
        workers = min(self._max_workers, len(task_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="taskbridge") as pool:
            results = list(pool.map(self.process_task, task_ids))
        advanced = sum(1 for ok in results if ok)
        logger.info("Processed work items", extra={"total": len(task_ids), "advanced": advanced})
        return advanced

    def process_task(self, task_id: int) -> bool:
        """Advance one work item as far as automation allows.

        Returns:
            False if a step failed (the failure is recorded in the ledger).
        """

        with self._lock_for(task_id):
            kind = ActionKind.REPOSITORY_ASSIGNMENT
            try:
                for _ in range(_MAX_STEPS_PER_PASS):
                    step, repository = self._next_step(task_id)
                    if isinstance(step, (AwaitApproval, Done)):
                        return True
                    if isinstance(step, CreateBranch):
                        if repository is None:
                            self._park_missing_repository(task_id)
                            return True
                        if not self._auto_create_branches:
                            return True
                        kind = ActionKind.BRANCH_CREATION
                        self._require_provisioner().provision(self._db, task_id, repository)
                        continue
                    kind = ActionKind.REPOSITORY_ASSIGNMENT
                    if not self._match_repository(task_id):
                        return True
                return True
            except NotFoundError as e:
                logger.error("Work item not found", extra={"task_id": task_id, "error": str(e)})
                return False
            except _HANDLED as e:
                logger.error(
                    "Work item step failed",
                    extra={"task_id": task_id, "action_kind": kind.value, "error": str(e)},
                )
                self._record_failure(task_id, kind, e)
                return False

    def _next_step(
        self, task_id: int
    ) -> tuple[AwaitApproval | AssignRepository | CreateBranch | Done, RepositoryInfo | None]:
        with self._db.read() as session:
            item = session.get(WorkItem, task_id)
            if item is None:
                raise NotFoundError(f"Task {task_id} not found")
            if item.lifecycle_state in TERMINAL_STATES:
                return Done(reason=item.lifecycle_state.value), None
            if item.lifecycle_state == LifecycleState.AWAITING_APPROVAL:
                return Done(reason="awaiting approval"), None
            step = decide_next_step(self._ledger.latest(session, task_id))
            repository = item.repository.to_info() if item.repository is not None else None
            return step, repository

    def _match_repository(self, task_id: int) -> bool:
        """Assign the best catalog repository, or park the item.

        Returns:
            True if a repository was assigned.
        """

        with self._db.read() as session:
            catalog = [r.to_info() for r in session.scalars(select(Repository).order_by(Repository.id))]

        with self._db.transaction() as session:
            item = session.get(WorkItem, task_id)
            if item is None:
                raise NotFoundError(f"Task {task_id} not found")

            repository = self._matcher.find_suitable(item, catalog)
            if repository is None:
                self._gate.park_unmatched(
                    session,
                    item,
                    "No suitable repository found. Human intervention required.",
                )
                return False

            state_machine.next_state(item.lifecycle_state, Trigger.REPOSITORY_MATCHED)
            item.repository_id = repository.id
            self._ledger.append(
                session,
                item.id,
                ActionKind.REPOSITORY_ASSIGNMENT,
                Outcome.COMPLETED,
                f"Assigned repository: {repository.name}",
                details={"repository_id": repository.id},
            )
            state_machine.apply(item, Trigger.REPOSITORY_MATCHED)
            logger.info(
                "Repository assigned",
                extra={"key": item.external_key, "repository": repository.name},
            )
            return True

    def _park_missing_repository(self, task_id: int) -> None:
        with self._db.transaction() as session:
            self._gate.park_missing_repository(session, self._get_item(session, task_id))

    def _record_failure(self, task_id: int, kind: ActionKind, error: Exception) -> None:
        try:
            with self._db.transaction() as session:
                if session.get(WorkItem, task_id) is None:
                    return
                self._ledger.append(
                    session,
                    task_id,
                    kind,
                    Outcome.FAILED,
                    f"{kind.value} failed",
                    error=str(error),
                )
        except SQLAlchemyError as e:
            logger.error(
                "Could not record failure", extra={"task_id": task_id, "error": str(e)}
            )

    def _require_provisioner(self) -> BranchProvisioner:
        if self._provisioner is None:
            raise ConfigurationError("No repository provider configured")
        return self._provisioner

    def _lock_for(self, task_id: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = self._locks[task_id] = threading.RLock()
            return lock

    # ------------------------------------------------------------------
    # Human decisions

    def approve_task_progress(self, task_id: int, progress_id: int) -> bool:
        """Approve a parked progress entry and resume processing."""

        with self._lock_for(task_id):
            try:
                with self._db.transaction() as session:
                    item = self._get_item(session, task_id)
                    self._gate.approve(session, item, progress_id)
            except _HANDLED as e:
                logger.error(
                    "Approval failed",
                    extra={"task_id": task_id, "progress_id": progress_id, "error": str(e)},
                )
                return False

            self.process_task(task_id)
            return True

    def reject_task_progress(self, task_id: int, progress_id: int, reason: str) -> bool:
        with self._lock_for(task_id):
            try:
                with self._db.transaction() as session:
                    item = self._get_item(session, task_id)
                    self._gate.reject(session, item, progress_id, reason)
            except _HANDLED as e:
                logger.error(
                    "Rejection failed",
                    extra={"task_id": task_id, "progress_id": progress_id, "error": str(e)},
                )
                return False
            return True

    def approve_task(self, task_id: int) -> bool:
        """Approve whatever the task is currently waiting on."""

        with self._lock_for(task_id):
            entry_id = self._parking_entry_id(task_id)
            if entry_id is None:
                return False
            return self.approve_task_progress(task_id, entry_id)

    def reject_task(self, task_id: int, reason: str) -> bool:
        with self._lock_for(task_id):
            entry_id = self._parking_entry_id(task_id)
            if entry_id is None:
                return False
            return self.reject_task_progress(task_id, entry_id, reason)

    def _parking_entry_id(self, task_id: int) -> int | None:
        try:
            with self._db.read() as session:
                item = self._get_item(session, task_id)
                entry = self._gate.parking_entry(session, item)
        except _HANDLED as e:
            logger.error("Task lookup failed", extra={"task_id": task_id, "error": str(e)})
            return None
        if entry is None:
            logger.warning("Task is not waiting for approval", extra={"task_id": task_id})
            return None
        return entry.id

    def assign_repository(self, task_id: int, repository_id: int) -> bool:
        """Manually assign a repository and resume processing."""

        with self._lock_for(task_id):
            try:
                with self._db.transaction() as session:
                    item = self._get_item(session, task_id)
                    repository = session.get(Repository, repository_id)
                    if repository is None:
                        raise NotFoundError(f"Repository {repository_id} not found")
                    self._gate.assign_repository(session, item, repository)
            except _HANDLED as e:
                logger.error(
                    "Repository assignment failed",
                    extra={"task_id": task_id, "repository_id": repository_id, "error": str(e)},
                )
                return False

            self.process_task(task_id)
            return True

    def create_branch(self, task_id: int, branch_name: str | None = None) -> bool:
        """Provision the branch now, optionally with an explicit name."""

        with self._lock_for(task_id):
            try:
                with self._db.read() as session:
                    item = self._get_item(session, task_id)
                    if item.repository is None:
                        raise ValidationError(f"Task {task_id} has no repository assigned")
                    repository = item.repository.to_info()
                return self._require_provisioner().provision(
                    self._db, task_id, repository, branch_name
                )
            except _HANDLED as e:
                logger.error(
                    "Branch creation failed", extra={"task_id": task_id, "error": str(e)}
                )
                if not isinstance(e, (NotFoundError, ConfigurationError)):
                    self._record_failure(task_id, ActionKind.BRANCH_CREATION, e)
                return False

    def complete_task(self, task_id: int) -> bool:
        """Mark an in-progress task completed and optionally move the tracker issue."""

        with self._lock_for(task_id):
            try:
                with self._db.transaction() as session:
                    item = self._get_item(session, task_id)
                    state_machine.next_state(item.lifecycle_state, Trigger.WORK_COMPLETED)
                    self._ledger.append(
                        session,
                        item.id,
                        ActionKind.HUMAN_REVIEW,
                        Outcome.COMPLETED,
                        "Task marked complete",
                    )
                    state_machine.apply(item, Trigger.WORK_COMPLETED)
                    key = item.external_key
            except _HANDLED as e:
                logger.error("Completion failed", extra={"task_id": task_id, "error": str(e)})
                return False

        if self._tracker_done_status and self._task_source is not None:
            if not self._task_source.transition_issue(key, self._tracker_done_status):
                logger.warning(
                    "Tracker transition failed",
                    extra={"key": key, "status": self._tracker_done_status},
                )
        return True

    # ------------------------------------------------------------------
    # Queries

    def get_task(self, task_id: int) -> WorkItemView | None:
        try:
            with self._db.read() as session:
                item = session.get(WorkItem, task_id)
                return WorkItemView.of(item) if item is not None else None
        except SQLAlchemyError as e:
            logger.error("Task lookup failed", extra={"task_id": task_id, "error": str(e)})
            return None

    def get_task_by_key(self, key: str) -> WorkItemView | None:
        try:
            with self._db.read() as session:
                item = session.scalars(
                    select(WorkItem).where(WorkItem.external_key == key)
                ).first()
                return WorkItemView.of(item) if item is not None else None
        except SQLAlchemyError as e:
            logger.error("Task lookup failed", extra={"key": key, "error": str(e)})
            return None

    def get_tasks(self, state: LifecycleState | None = None) -> list[WorkItemView]:
        """All tasks, newest first, optionally filtered by lifecycle state."""

        stmt = select(WorkItem).order_by(WorkItem.id.desc())
        if state is not None:
            stmt = stmt.where(WorkItem.lifecycle_state == state)
        try:
            with self._db.read() as session:
                return [WorkItemView.of(item, with_progress=False) for item in session.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error("Task listing failed", extra={"error": str(e)})
            return []

    def get_tasks_awaiting_approval(self) -> list[WorkItemView]:
        return self.get_tasks(LifecycleState.AWAITING_APPROVAL)

    def list_repositories(self, *, active_only: bool = False) -> list[RepositoryView]:
        stmt = select(Repository).order_by(Repository.name)
        if active_only:
            stmt = stmt.where(Repository.is_active.is_(True))
        try:
            with self._db.read() as session:
                return [RepositoryView.of(r) for r in session.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error("Repository listing failed", extra={"error": str(e)})
            return []

    def task_statistics(self) -> dict[str, int]:
        """Count of work items per lifecycle state (every state present)."""

        counts = {state.value: 0 for state in LifecycleState}
        try:
            with self._db.read() as session:
                stmt = select(WorkItem.lifecycle_state, func.count(WorkItem.id)).group_by(
                    WorkItem.lifecycle_state
                )
                for state, count in session.execute(stmt):
                    counts[state.value] = count
        except SQLAlchemyError as e:
            logger.error("Statistics query failed", extra={"error": str(e)})
        return counts

    @staticmethod
    def _get_item(session: Session, task_id: int) -> WorkItem:
        item = session.get(WorkItem, task_id)
        if item is None:
            raise NotFoundError(f"Task {task_id} not found")
        return item
