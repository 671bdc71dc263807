"""CLI entrypoint for taskbridge."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from taskbridge import __version__
from taskbridge.orchestrator.config import TaskBridgeSettings
from taskbridge.orchestrator.logging import configure_logging
from taskbridge.orchestrator.store.models import LifecycleState
from taskbridge.orchestrator.workflow.engine import TaskLifecycleOrchestrator
from taskbridge.orchestrator.workflow.views import WorkItemView

logger = logging.getLogger(__name__)


def _print_task_line(task: WorkItemView) -> None:
    repo = task.repository.name if task.repository else "-"
    flag = " [approval]" if task.requires_approval else ""
    print(
        f"{task.id:>5}  {task.external_key:<12} {task.lifecycle_state.value:<18} "
        f"{repo:<24} {task.title}{flag}"
    )


def _print_task_detail(task: WorkItemView) -> None:
    print(f"Task #{task.id} {task.external_key}: {task.title}")
    print(f"  state:      {task.lifecycle_state.value}")
    print(f"  status:     {task.status or '-'}")
    print(f"  priority:   {task.priority or '-'}")
    print(f"  repository: {task.repository.name if task.repository else '-'}")
    print(f"  branch:     {task.branch_name or '-'}")
    if task.notes:
        print(f"  notes:      {task.notes}")
    print("  progress:")
    for entry in task.progress:
        line = (
            f"    [{entry.id}] {entry.created_at:%Y-%m-%d %H:%M} "
            f"{entry.action_kind.value}/{entry.outcome.value}: {entry.description}"
        )
        if entry.error:
            line += f" (error: {entry.error})"
        print(line)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskbridge",
        description="Drive tracker work items through repository assignment and branching",
    )
    parser.add_argument("--version", action="version", version=f"taskbridge {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sync", help="Import open tracker items and process new ones")
    subparsers.add_parser("process-new", help="Process every task in state 'new'")
    subparsers.add_parser(
        "process-pending", help="Resume every task that is in progress or approved"
    )
    subparsers.add_parser(
        "refresh-repositories", help="Reload the repository catalog from the provider"
    )

    list_cmd = subparsers.add_parser("list", help="List tasks, newest first")
    list_cmd.add_argument(
        "--state",
        choices=[s.value for s in LifecycleState],
        default=None,
        help="Only show tasks in this lifecycle state",
    )
    list_cmd.add_argument(
        "--awaiting", action="store_true", help="Only show tasks awaiting approval"
    )

    show = subparsers.add_parser("show", help="Show a task with its progress history")
    show.add_argument("task", help="Task id or tracker key, e.g. 42 or DEV-1")

    approve = subparsers.add_parser("approve", help="Approve a progress entry")
    approve.add_argument("task_id", type=int)
    approve.add_argument("progress_id", type=int)

    reject = subparsers.add_parser("reject", help="Reject a progress entry")
    reject.add_argument("task_id", type=int)
    reject.add_argument("progress_id", type=int)
    reject.add_argument("--reason", required=True, help="Why the step was rejected")

    approve_task = subparsers.add_parser(
        "approve-task", help="Approve whatever a task is currently waiting on"
    )
    approve_task.add_argument("task_id", type=int)

    reject_task = subparsers.add_parser(
        "reject-task", help="Reject whatever a task is currently waiting on"
    )
    reject_task.add_argument("task_id", type=int)
    reject_task.add_argument("--reason", required=True, help="Why the task was rejected")

    assign = subparsers.add_parser(
        "assign-repository", help="Assign a repository to a task by hand"
    )
    assign.add_argument("task_id", type=int)
    assign.add_argument("repository_id", type=int)

    branch = subparsers.add_parser("create-branch", help="Create the task's branch now")
    branch.add_argument("task_id", type=int)
    branch.add_argument(
        "--name",
        default=None,
        help="Explicit branch name (defaults to feature/<key>-<title-slug>)",
    )

    complete = subparsers.add_parser("complete", help="Mark an in-progress task completed")
    complete.add_argument("task_id", type=int)

    repositories = subparsers.add_parser("repositories", help="List known repositories")
    repositories.add_argument("--active", action="store_true", help="Only active repositories")

    stats = subparsers.add_parser("stats", help="Task counts per lifecycle state")
    stats.add_argument("--json", action="store_true", help="Print as JSON")

    return parser


def _find_task(orchestrator: TaskLifecycleOrchestrator, ref: str) -> WorkItemView | None:
    if ref.isdigit():
        return orchestrator.get_task(int(ref))
    return orchestrator.get_task_by_key(ref.upper())


def run_command(args: argparse.Namespace, orchestrator: TaskLifecycleOrchestrator) -> int:
    """Dispatch a parsed command. Returns the process exit code."""

    if args.command == "sync":
        result = orchestrator.sync()
        if not result.ok:
            print(f"Sync failed: {result.error}", file=sys.stderr)
            return 1
        print(f"Synced: {result.created} created, {result.updated} updated")
        return 0

    if args.command == "process-new":
        print(f"Processed {orchestrator.process_new_tasks()} new task(s)")
        return 0

    if args.command == "process-pending":
        print(f"Processed {orchestrator.process_pending_tasks()} pending task(s)")
        return 0

    if args.command == "refresh-repositories":
        count = orchestrator.refresh_repositories()
        print(f"Provider listed {count} repositories")
        return 0

    if args.command == "list":
        if args.awaiting:
            tasks = orchestrator.get_tasks_awaiting_approval()
        else:
            state = LifecycleState(args.state) if args.state else None
            tasks = orchestrator.get_tasks(state)
        if not tasks:
            print("No tasks")
        for task in tasks:
            _print_task_line(task)
        return 0

    if args.command == "show":
        found = _find_task(orchestrator, args.task)
        if found is None:
            print(f"Task {args.task} not found", file=sys.stderr)
            return 3
        _print_task_detail(found)
        return 0

    if args.command == "repositories":
        repos = orchestrator.list_repositories(active_only=args.active)
        if not repos:
            print("No repositories; run 'taskbridge refresh-repositories'")
        for repo in repos:
            state = "active" if repo.is_active else "inactive"
            print(f"{repo.id:>5}  {repo.name:<30} {repo.provider.value:<10} {state}")
        return 0

    if args.command == "stats":
        counts = orchestrator.task_statistics()
        if args.json:
            print(json.dumps(counts, indent=2))
        else:
            for state, count in counts.items():
                print(f"{state:<18} {count}")
        return 0

    # Mutating commands: the orchestrator reports failures as False.
    if args.command == "approve":
        ok = orchestrator.approve_task_progress(args.task_id, args.progress_id)
    elif args.command == "reject":
        ok = orchestrator.reject_task_progress(args.task_id, args.progress_id, args.reason)
    elif args.command == "approve-task":
        ok = orchestrator.approve_task(args.task_id)
    elif args.command == "reject-task":
        ok = orchestrator.reject_task(args.task_id, args.reason)
    elif args.command == "assign-repository":
        ok = orchestrator.assign_repository(args.task_id, args.repository_id)
    elif args.command == "create-branch":
        ok = orchestrator.create_branch(args.task_id, args.name)
    elif args.command == "complete":
        ok = orchestrator.complete_task(args.task_id)
    else:
        logger.error("Unknown command", extra={"command": args.command})
        return 2

    if not ok:
        print(f"{args.command} failed for task {args.task_id}; see log", file=sys.stderr)
        return 4

    task = orchestrator.get_task(args.task_id)
    if task is not None:
        print(f"Task #{task.id} {task.external_key} is now {task.lifecycle_state.value}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = TaskBridgeSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        orchestrator = TaskLifecycleOrchestrator.from_settings(settings)
        try:
            return run_command(args, orchestrator)
        finally:
            orchestrator.close()
    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
