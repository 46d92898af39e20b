"""TaskStore - storage for tasks and their run listings."""

import json
import logging
from typing import Any

import aiosqlite

from memory_store.db.database import (
    check_page,
    clean_workflow_key,
    get_db,
    new_id,
    search_clause,
    transaction,
    utc_now,
)
from memory_store.errors import NotFoundError, ValidationError
from memory_store.models import Run, Task, TaskCreate

logger = logging.getLogger(__name__)

TASK_COLUMNS = (
    "id, title, workflow_key, goal, acceptance_criteria, systems_touched_json, "
    "risk_level, status, created_at, last_touched_at"
)


def _row_to_task(row: aiosqlite.Row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        id=row["id"],
        title=row["title"],
        workflow_key=row["workflow_key"],
        goal=row["goal"],
        acceptance_criteria=row["acceptance_criteria"],
        systems_touched=json.loads(row["systems_touched_json"] or "{}"),
        risk_level=row["risk_level"],
        status=row["status"],
        created_at=row["created_at"],
        last_touched_at=row["last_touched_at"],
    )


def row_to_run(row: aiosqlite.Row) -> Run:
    """Convert a database row to a Run model."""
    return Run(
        id=row["id"],
        task_id=row["task_id"],
        targets=json.loads(row["targets_json"] or "[]"),
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        status=row["status"],
        summary=row["summary"],
    )


class TaskStore:
    """Storage for tasks."""

    async def create(self, task: TaskCreate) -> Task:
        """Create a new task."""
        title = task.title.strip()
        if not title:
            raise ValidationError("Task title must not be empty")
        workflow_key = clean_workflow_key(task.workflow_key)

        task_id = new_id()
        now = utc_now()
        async with transaction() as conn:
            await conn.execute(
                """
                INSERT INTO tasks (id, title, workflow_key, goal, acceptance_criteria,
                    systems_touched_json, risk_level, status, created_at, last_touched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    title,
                    workflow_key,
                    task.goal,
                    task.acceptance_criteria,
                    json.dumps(task.systems_touched),
                    task.risk_level,
                    task.status,
                    now,
                    now,
                ),
            )

        logger.info("Created task %s in workflow %s", task_id, workflow_key)
        return await self.get(task_id)

    async def get(self, task_id: str) -> Task:
        """Get a task by ID."""
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return _row_to_task(row)

    async def list_tasks(
        self,
        workflow_key: str | None = None,
        status: str | None = None,
        q: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Task], int]:
        """Query tasks with filters. Returns (tasks, total_count).

        ``q`` is a case-insensitive substring match against title, goal and
        acceptance criteria.
        """
        check_page(skip, limit)
        db = await get_db()

        conditions: list[str] = []
        params: list[Any] = []

        if workflow_key:
            conditions.append("workflow_key = ?")
            params.append(workflow_key)

        if status:
            conditions.append("status = ?")
            params.append(status)

        if q:
            clause, clause_params = search_clause(["title", "goal", "acceptance_criteria"], q)
            conditions.append(clause)
            params.extend(clause_params)

        where_sql = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        # Get total count
        cursor = await db.execute(
            f"SELECT COUNT(*) as count FROM tasks {where_sql}", params
        )
        row = await cursor.fetchone()
        total = row["count"] if row else 0

        cursor = await db.execute(
            f"""
            SELECT {TASK_COLUMNS} FROM tasks {where_sql}
            ORDER BY last_touched_at DESC
            LIMIT ? OFFSET ?
            """,
            params + [limit, skip],
        )
        rows = await cursor.fetchall()
        return [_row_to_task(r) for r in rows], total

    async def rename(self, task_id: str, title: str) -> Task:
        """Rename a task.

        Renaming to the current title (after trimming) is a no-op and leaves
        ``last_touched_at`` alone.
        """
        new_title = title.strip()
        if not new_title:
            raise ValidationError("Task title must not be empty")

        async with transaction() as conn:
            cursor = await conn.execute(
                "SELECT title FROM tasks WHERE id = ?", (task_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Task {task_id} not found")

            if row["title"].strip() != new_title:
                await conn.execute(
                    "UPDATE tasks SET title = ?, last_touched_at = ? WHERE id = ?",
                    (new_title, utc_now(), task_id),
                )
                logger.info("Renamed task %s", task_id)

        return await self.get(task_id)

    async def get_runs(
        self, task_id: str, skip: int = 0, limit: int = 100
    ) -> tuple[list[Run], int]:
        """List the runs owned by a task, newest first."""
        check_page(skip, limit)
        await self.get(task_id)
        db = await get_db()

        cursor = await db.execute(
            "SELECT COUNT(*) as count FROM runs WHERE task_id = ?", (task_id,)
        )
        row = await cursor.fetchone()
        total = row["count"] if row else 0

        cursor = await db.execute(
            """
            SELECT id, task_id, targets_json, started_at, ended_at, status, summary
            FROM runs WHERE task_id = ?
            ORDER BY started_at DESC
            LIMIT ? OFFSET ?
            """,
            (task_id, limit, skip),
        )
        rows = await cursor.fetchall()
        return [row_to_run(r) for r in rows], total

    async def touch(self, conn: aiosqlite.Connection, task_id: str, now: str) -> None:
        """Advance ``last_touched_at`` inside an open transaction."""
        await conn.execute(
            "UPDATE tasks SET last_touched_at = ? WHERE id = ? AND last_touched_at < ?",
            (now, task_id, now),
        )


# Global instance
task_store = TaskStore()
