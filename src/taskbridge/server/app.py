"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the orchestrator's caller seams.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from taskbridge import __version__
from taskbridge.orchestrator.config import TaskBridgeSettings
from taskbridge.orchestrator.store.models import LifecycleState
from taskbridge.orchestrator.workflow.engine import TaskLifecycleOrchestrator
from taskbridge.orchestrator.workflow.views import RepositoryView, WorkItemView
from taskbridge.server.models import (
    ActionResult,
    ProcessResponse,
    RejectRequest,
    SyncResponse,
)

logger = logging.getLogger(__name__)


def create_app(
    orchestrator: TaskLifecycleOrchestrator | None = None,
    settings: TaskBridgeSettings | None = None,
) -> FastAPI:
    settings = settings or TaskBridgeSettings()
    if orchestrator is None:
        orchestrator = TaskLifecycleOrchestrator.from_settings(settings)

    app = FastAPI(
        title="taskbridge",
        version=__version__,
        description="REST API over the taskbridge lifecycle orchestrator.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _result(task_id: int, ok: bool) -> ActionResult:
        task = orchestrator.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        if not ok:
            raise HTTPException(
                status_code=409,
                detail=f"Action not applicable to task in state {task.lifecycle_state.value}",
            )
        return ActionResult(ok=True, task_id=task_id, lifecycle_state=task.lifecycle_state.value)

    def _require_entry(task_id: int, progress_id: int) -> None:
        task = orchestrator.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        if all(entry.id != progress_id for entry in task.progress):
            raise HTTPException(status_code=404, detail="Progress entry not found for task")

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/tasks", response_model=list[WorkItemView])
    def list_tasks(state: LifecycleState | None = None) -> list[WorkItemView]:
        return orchestrator.get_tasks(state)

    @app.get("/api/tasks/{task_id}", response_model=WorkItemView)
    def get_task(task_id: int) -> WorkItemView:
        task = orchestrator.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.post("/api/sync", response_model=SyncResponse)
    def sync() -> SyncResponse:
        result = orchestrator.sync()
        if not result.ok:
            logger.warning("Sync via API failed", extra={"error": result.error})
        return SyncResponse(
            ok=result.ok,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            error=result.error,
        )

    @app.post("/api/tasks/process-new", response_model=ProcessResponse)
    def process_new() -> ProcessResponse:
        return ProcessResponse(processed=orchestrator.process_new_tasks())

    @app.post("/api/tasks/process-pending", response_model=ProcessResponse)
    def process_pending() -> ProcessResponse:
        return ProcessResponse(processed=orchestrator.process_pending_tasks())

    @app.post("/api/tasks/{task_id}/progress/{progress_id}/approve", response_model=ActionResult)
    def approve(task_id: int, progress_id: int) -> ActionResult:
        _require_entry(task_id, progress_id)
        ok = orchestrator.approve_task_progress(task_id, progress_id)
        return _result(task_id, ok)

    @app.post("/api/tasks/{task_id}/progress/{progress_id}/reject", response_model=ActionResult)
    def reject(task_id: int, progress_id: int, req: RejectRequest) -> ActionResult:
        _require_entry(task_id, progress_id)
        ok = orchestrator.reject_task_progress(task_id, progress_id, req.reason)
        return _result(task_id, ok)

    @app.get("/api/stats")
    def stats() -> dict[str, int]:
        return orchestrator.task_statistics()

    @app.get("/api/repositories", response_model=list[RepositoryView])
    def repositories(active: bool = False) -> list[RepositoryView]:
        return orchestrator.list_repositories(active_only=active)

    return app
