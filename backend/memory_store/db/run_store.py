"""RunStore - runs and their append-only event log."""

import json
import logging

import aiosqlite

from memory_store.db.database import get_db, new_id, transaction, utc_now
from memory_store.db.link_index import group_by_relation, link_index
from memory_store.db.task_store import row_to_run, task_store
from memory_store.errors import ConflictError, NotFoundError, ValidationError
from memory_store.models import (
    Run,
    RunDetail,
    RunEvent,
    RunEventCreate,
    RunStatus,
)

logger = logging.getLogger(__name__)

RUN_COLUMNS = "id, task_id, targets_json, started_at, ended_at, status, summary"
EVENT_COLUMNS = "id, run_id, ts, type, message, data_json, supersedes_event_id"


def _row_to_event(row: aiosqlite.Row) -> RunEvent:
    """Convert a database row to a RunEvent model."""
    return RunEvent(
        id=row["id"],
        run_id=row["run_id"],
        ts=row["ts"],
        type=row["type"],
        message=row["message"],
        data=json.loads(row["data_json"] or "{}"),
        supersedes_event_id=row["supersedes_event_id"],
    )


class RunStore:
    """Storage for runs and run events."""

    # ==================== Runs ====================

    async def start_run(self, task_id: str, targets: list | None = None) -> Run:
        """Start a new run under a task."""
        run_id = new_id()
        now = utc_now()
        async with transaction() as conn:
            cursor = await conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,))
            if await cursor.fetchone() is None:
                raise NotFoundError(f"Task {task_id} not found")

            await conn.execute(
                """
                INSERT INTO runs (id, task_id, targets_json, started_at, ended_at, status, summary)
                VALUES (?, ?, ?, ?, NULL, ?, NULL)
                """,
                (
                    run_id,
                    task_id,
                    json.dumps(targets or []),
                    now,
                    RunStatus.IN_PROGRESS.value,
                ),
            )
            await task_store.touch(conn, task_id, now)

        logger.info("Started run %s for task %s", run_id, task_id)
        return await self.get_run(run_id)

    async def get_run(self, run_id: str) -> Run:
        """Get a run by ID."""
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {RUN_COLUMNS} FROM runs WHERE id = ?", (run_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(f"Run {run_id} not found")
        return row_to_run(row)

    async def end_run(
        self, run_id: str, status: RunStatus | str, summary: str | None = None
    ) -> Run:
        """End a run. This is a one-shot transition out of ``in_progress``."""
        try:
            status = RunStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown run status {status!r}") from None
        if not status.is_terminal:
            raise ValidationError("A run can only be ended with a terminal status")

        now = utc_now()
        async with transaction() as conn:
            cursor = await conn.execute(
                "SELECT task_id, status FROM runs WHERE id = ?", (run_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Run {run_id} not found")

            cursor = await conn.execute(
                """
                UPDATE runs SET status = ?, ended_at = ?, summary = ?
                WHERE id = ? AND status = ? AND ended_at IS NULL
                """,
                (status.value, now, summary, run_id, RunStatus.IN_PROGRESS.value),
            )
            if cursor.rowcount != 1:
                raise ConflictError(
                    f"Run {run_id} already ended with status {row['status']}"
                )
            await task_store.touch(conn, row["task_id"], now)

        logger.info("Ended run %s with status %s", run_id, status.value)
        return await self.get_run(run_id)

    # ==================== Events ====================

    async def append_event(self, run_id: str, event: RunEventCreate) -> RunEvent:
        """Append an event with the next id in the run's sequence.

        A ``supersedes_event_id`` marks an earlier event of the same run as
        corrected; the earlier event itself is left untouched.
        """
        now = utc_now()
        async with transaction() as conn:
            cursor = await conn.execute(
                "SELECT task_id FROM runs WHERE id = ?", (run_id,)
            )
            run_row = await cursor.fetchone()
            if run_row is None:
                raise NotFoundError(f"Run {run_id} not found")

            if event.supersedes_event_id is not None:
                cursor = await conn.execute(
                    "SELECT 1 FROM run_events WHERE run_id = ? AND id = ?",
                    (run_id, event.supersedes_event_id),
                )
                if await cursor.fetchone() is None:
                    raise NotFoundError(
                        f"Event {event.supersedes_event_id} not found in run {run_id}"
                    )

            cursor = await conn.execute(
                "SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM run_events WHERE run_id = ?",
                (run_id,),
            )
            event_id = (await cursor.fetchone())["next_id"]

            await conn.execute(
                """
                INSERT INTO run_events (run_id, id, ts, type, message, data_json, supersedes_event_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    event_id,
                    now,
                    event.type,
                    event.message,
                    json.dumps(event.data),
                    event.supersedes_event_id,
                ),
            )
            await task_store.touch(conn, run_row["task_id"], now)

        return RunEvent(
            id=event_id,
            run_id=run_id,
            ts=now,
            type=event.type,
            message=event.message,
            data=event.data,
            supersedes_event_id=event.supersedes_event_id,
        )

    async def get_events(self, run_id: str) -> list[RunEvent]:
        """All events of a run in insertion order."""
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {EVENT_COLUMNS} FROM run_events WHERE run_id = ? ORDER BY id",
            (run_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_event(r) for r in rows]

    async def event_history(self, run_id: str, event_id: int) -> list[RunEvent]:
        """An event followed by every later event that corrects it, transitively."""
        await self.get_run(run_id)
        events = await self.get_events(run_id)
        chain_ids = {event_id}
        history: list[RunEvent] = []
        for event in events:
            if event.id == event_id:
                history.append(event)
            elif event.supersedes_event_id in chain_ids:
                chain_ids.add(event.id)
                history.append(event)
        if not history:
            raise NotFoundError(f"Event {event_id} not found in run {run_id}")
        return history

    # ==================== Detail ====================

    async def get_detail(self, run_id: str) -> RunDetail:
        """A run with its full event log and library links."""
        run = await self.get_run(run_id)
        events = await self.get_events(run_id)
        memory_links = await link_index.memory_links(run_id)
        return RunDetail(
            run=run,
            events=events,
            memory_links=memory_links,
            links_by_relation=group_by_relation(memory_links),
        )


# Global instance
run_store = RunStore()
