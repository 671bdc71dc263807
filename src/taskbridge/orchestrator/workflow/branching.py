"""Branch naming and provisioning.

Provisioning is two-phase so no database transaction is held open across the
provider's network call:

1. record a `branch-creation/in-progress` entry and commit
2. call the provider (bounded by the provider's request timeout)
3. finalize that same entry and apply the lifecycle transition in one commit

If the process dies between 1 and 3 the in-progress entry is left behind; the
next run closes it as failed and retries.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskbridge.orchestrator.errors import NotFoundError, TaskBridgeError, ValidationError
from taskbridge.orchestrator.providers.base import RepositoryInfo, RepositoryProvider
from taskbridge.orchestrator.store.database import Database
from taskbridge.orchestrator.store.models import (
    ActionKind,
    Outcome,
    ProgressEntry,
    Repository,
    WorkItem,
    utcnow,
)
from taskbridge.orchestrator.tracker.base import TaskSource
from taskbridge.orchestrator.workflow import state_machine
from taskbridge.orchestrator.workflow.ledger import ProgressLedger
from taskbridge.orchestrator.workflow.state_machine import Trigger

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "feature/"
MAX_SLUG_LENGTH = 30
EMPTY_SLUG = "task"

_SEPARATORS = re.compile(r"[\s_./\\]")
_DISALLOWED = re.compile(r"[^a-z0-9-]")
_INVALID_REF_CHARS = re.compile(r"[\s~^:?*\[\\]|\.\.|@\{")


def slugify_title(title: str) -> str:
    slug = _SEPARATORS.sub("-", title.lower())
    slug = _DISALLOWED.sub("", slug)
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return slug or EMPTY_SLUG


def branch_name_for(external_key: str, title: str) -> str:
    """Deterministic branch name for a work item, e.g. `feature/dev-1-fix-login-bug`."""

    return f"{BRANCH_PREFIX}{external_key.lower()}-{slugify_title(title)}"


def validate_branch_name(name: str) -> str:
    """Return `name` stripped, or raise ValidationError if git would refuse it."""

    candidate = name.strip()
    problems: list[str] = []
    if not candidate:
        problems.append("empty")
    if _INVALID_REF_CHARS.search(candidate):
        problems.append("contains whitespace or a forbidden character sequence")
    if candidate.startswith(("-", "/")) or candidate.endswith(("/", ".", ".lock")):
        problems.append("bad leading or trailing character")
    if "//" in candidate:
        problems.append("empty path component")
    if problems:
        raise ValidationError(f"Invalid branch name {name!r}: {', '.join(problems)}")
    return candidate


class BranchProvisioner:
    """Creates the working branch for a work item through the repository provider."""

    def __init__(
        self,
        *,
        provider: RepositoryProvider,
        ledger: ProgressLedger,
        task_source: TaskSource | None = None,
        comment_on_success: bool = True,
    ) -> None:
        self._provider = provider
        self._ledger = ledger
        self._task_source = task_source
        self._comment_on_success = comment_on_success

    def provision(
        self,
        db: Database,
        work_item_id: int,
        repository: RepositoryInfo,
        explicit_name: str | None = None,
    ) -> bool:
        """Create the branch and record the outcome.

        Returns:
            True when the branch exists afterwards, False when the attempt was
            recorded as failed or parked for approval.

        Raises:
            NotFoundError: If the work item does not exist.
            IllegalTransitionError: If the item's state does not allow provisioning.
        """

        started = self._start(db, work_item_id, repository, explicit_name)
        if started is None:
            return True
        if isinstance(started, TaskBridgeError):
            return False
        entry_id, external_key, branch_name = started

        base = repository.default_branch or None
        error: TaskBridgeError | None = None
        created = False
        try:
            created = self._provider.create_branch(repository, branch_name, base)
        except TaskBridgeError as e:
            error = e
            logger.warning(
                "Branch creation raised",
                extra={"key": external_key, "branch": branch_name, "error": str(e)},
            )

        self._finish(db, work_item_id, entry_id, repository, branch_name, created, error)

        if created and self._comment_on_success and self._task_source is not None:
            self._task_source.post_comment(
                external_key,
                f"Created development branch: {branch_name} in repository {repository.name}",
            )
        return created

    def _start(
        self,
        db: Database,
        work_item_id: int,
        repository: RepositoryInfo,
        explicit_name: str | None,
    ) -> tuple[int, str, str] | TaskBridgeError | None:
        """Phase 1. Returns (entry id, key, name), an error already recorded, or
        None when the branch is already in place."""

        with db.transaction() as session:
            item = session.get(WorkItem, work_item_id)
            if item is None:
                raise NotFoundError(f"Work item {work_item_id} not found")
            # Fails loudly before anything is written.
            state_machine.next_state(item.lifecycle_state, Trigger.BRANCH_CREATED)

            try:
                if explicit_name is not None:
                    name = validate_branch_name(explicit_name)
                else:
                    name = branch_name_for(item.external_key, item.title)
                if item.branch_name and item.branch_name != name:
                    raise ValidationError(
                        f"Work item already has branch {item.branch_name!r}; refusing to rename"
                    )
            except ValidationError as e:
                self._ledger.append(
                    session,
                    item.id,
                    ActionKind.BRANCH_CREATION,
                    Outcome.FAILED,
                    "Branch creation rejected before calling the provider",
                    error=str(e),
                )
                item.requires_approval = True
                state_machine.apply(item, Trigger.BRANCH_FAILED)
                logger.warning("Invalid branch request", extra={"key": item.external_key})
                return e

            if item.branch_name == name:
                logger.info(
                    "Branch already recorded", extra={"key": item.external_key, "branch": name}
                )
                return None

            self._close_abandoned(session, item.id)
            entry = self._ledger.append(
                session,
                item.id,
                ActionKind.BRANCH_CREATION,
                Outcome.IN_PROGRESS,
                f"Creating branch {name} in {repository.name}",
                details={"branch": name, "repository": repository.name},
            )
            return entry.id, item.external_key, name

    def _finish(
        self,
        db: Database,
        work_item_id: int,
        entry_id: int,
        repository: RepositoryInfo,
        branch_name: str,
        created: bool,
        error: TaskBridgeError | None,
    ) -> None:
        """Phase 2: finalize the entry and move the item in one transaction."""

        with db.transaction() as session:
            item = session.get(WorkItem, work_item_id)
            if item is None:
                raise NotFoundError(f"Work item {work_item_id} not found")

            if created:
                self._ledger.finalize(
                    session,
                    entry_id,
                    Outcome.COMPLETED,
                    description=f"Created branch {branch_name} in {repository.name}",
                )
                item.branch_name = branch_name
                state_machine.apply(item, Trigger.BRANCH_CREATED)
                if repository.id is not None:
                    repo_row = session.get(Repository, repository.id)
                    if repo_row is not None:
                        repo_row.last_used_at = utcnow()
                logger.info(
                    "Branch created", extra={"key": item.external_key, "branch": branch_name}
                )
                return

            if error is not None:
                self._ledger.finalize(
                    session,
                    entry_id,
                    Outcome.FAILED,
                    description=f"Error creating branch {branch_name}",
                    error=str(error),
                )
            else:
                self._ledger.finalize(
                    session,
                    entry_id,
                    Outcome.AWAITING_APPROVAL,
                    description=(
                        f"Provider refused branch {branch_name}. Human intervention required."
                    ),
                )
            item.requires_approval = True
            state_machine.apply(item, Trigger.BRANCH_FAILED)
            logger.warning(
                "Branch creation parked for approval",
                extra={"key": item.external_key, "branch": branch_name},
            )

    def _close_abandoned(self, session: Session, work_item_id: int) -> None:
        stmt = select(ProgressEntry).where(
            ProgressEntry.work_item_id == work_item_id,
            ProgressEntry.action_kind == ActionKind.BRANCH_CREATION,
            ProgressEntry.outcome.in_([Outcome.PENDING, Outcome.IN_PROGRESS]),
        )
        for stale in session.scalars(stmt):
            self._ledger.finalize(
                session,
                stale.id,
                Outcome.FAILED,
                error="Abandoned before completion; superseded by a new attempt",
            )
