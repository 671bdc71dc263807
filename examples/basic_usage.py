#!/usr/bin/env python3
"""Programmatic review example.

This demonstrates using the orchestrator directly instead of the CLI:

* load settings from `.env`
* sync open tracker items (repository matching and branching happen on import)
* print every task that is waiting for a human decision
* optionally approve one of them

Credentials for the tracker and repository provider are read from `.env`.
"""

from __future__ import annotations

import argparse
from typing import Sequence

from taskbridge.orchestrator.config import TaskBridgeSettings
from taskbridge.orchestrator.logging import configure_logging
from taskbridge.orchestrator.workflow.engine import TaskLifecycleOrchestrator


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync and review tasks (programmatic example).")
    parser.add_argument("--no-sync", action="store_true", help="Only inspect local state")
    parser.add_argument(
        "--approve",
        type=int,
        default=None,
        help="Approve whatever the task with this id is waiting on",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = TaskBridgeSettings()
    configure_logging(settings.log_level)

    orchestrator = TaskLifecycleOrchestrator.from_settings(settings)
    try:
        if not args.no_sync:
            result = orchestrator.sync()
            if not result.ok:
                print(f"Sync failed: {result.error}")
                return 1
            print(f"Synced: {result.created} created, {result.updated} updated")

        for task in orchestrator.get_tasks_awaiting_approval():
            detail = orchestrator.get_task(task.id)
            waiting = detail.progress[-1] if detail and detail.progress else None
            reason = waiting.description if waiting else "unknown"
            print(f"#{task.id} {task.external_key} {task.title!r}: {reason}")

        if args.approve is not None:
            ok = orchestrator.approve_task(args.approve)
            print(f"Approve task #{args.approve}: {'ok' if ok else 'failed'}")
            return 0 if ok else 4
        return 0
    finally:
        orchestrator.close()


if __name__ == "__main__":
    raise SystemExit(main())
