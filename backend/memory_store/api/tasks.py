"""Task API routes.

Provides endpoints for creating, listing and renaming tasks, and for listing
and starting the runs a task owns.
"""

import logging

from fastapi import APIRouter, Depends, Query

from memory_store.auth import Caller, require_caller
from memory_store.db import run_store, task_store
from memory_store.models import (
    Run,
    RunCreate,
    RunsPublic,
    Task,
    TaskCreate,
    TasksPublic,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _clean(value: str | None) -> str | None:
    """Treat blank query parameters as absent."""
    if value is None:
        return None
    return value.strip() or None


# =============================================================================
# Tasks
# =============================================================================


@router.post("/tasks", response_model=Task, status_code=201)
@router.post("/tasks/", response_model=Task, status_code=201, include_in_schema=False)
async def create_task(
    task: TaskCreate, caller: Caller = Depends(require_caller)
) -> Task:
    """Create a new task."""
    created = await task_store.create(task)
    logger.info("Task %s created by %s", created.id, caller.subject)
    return created


@router.get("/tasks", response_model=TasksPublic)
@router.get("/tasks/", response_model=TasksPublic, include_in_schema=False)
async def list_tasks(
    workflow_key: str | None = Query(None, description="Filter by workflow key"),
    status: str | None = Query(None, description="Filter by status"),
    q: str | None = Query(None, description="Substring of title, goal or acceptance criteria"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> TasksPublic:
    """List tasks with optional filters."""
    tasks, total = await task_store.list_tasks(
        workflow_key=_clean(workflow_key),
        status=_clean(status),
        q=_clean(q),
        skip=skip,
        limit=limit,
    )
    return TasksPublic(data=tasks, count=total)


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str) -> Task:
    """Get a task by ID."""
    return await task_store.get(task_id)


@router.patch("/tasks/{task_id}", response_model=Task)
async def rename_task(
    task_id: str,
    update: TaskUpdate,
    caller: Caller = Depends(require_caller),
) -> Task:
    """Rename a task. Empty or whitespace-only titles are rejected."""
    task = await task_store.rename(task_id, update.title)
    logger.info("Task %s renamed by %s", task_id, caller.subject)
    return task


# =============================================================================
# Runs owned by a task
# =============================================================================


@router.get("/tasks/{task_id}/runs", response_model=RunsPublic)
async def list_task_runs(
    task_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> RunsPublic:
    """List the runs of a task."""
    runs, total = await task_store.get_runs(task_id, skip=skip, limit=limit)
    return RunsPublic(data=runs, count=total)


@router.post("/tasks/{task_id}/runs", response_model=Run, status_code=201)
async def start_run(
    task_id: str,
    request: RunCreate,
    caller: Caller = Depends(require_caller),
) -> Run:
    """Start a new run under a task."""
    run = await run_store.start_run(task_id, targets=request.targets)
    logger.info("Run %s started by %s", run.id, caller.subject)
    return run
