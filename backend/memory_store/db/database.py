"""SQLite database connection, schema initialization and write transactions."""

import logging
import sqlite3
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from memory_store.errors import TransientError, ValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 1000

# Global connection holder (reads)
_db_connection: aiosqlite.Connection | None = None
_db_path: str | None = None
_busy_timeout_s: float = 5.0


def new_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def check_page(skip: int, limit: int) -> None:
    """Reject malformed pagination bounds."""
    if skip < 0:
        raise ValidationError("skip must be >= 0")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")


def clean_workflow_key(workflow_key: str) -> str:
    """Trim a workflow key; a blank key is a ValidationError."""
    cleaned = workflow_key.strip()
    if not cleaned:
        raise ValidationError("workflow_key must not be empty")
    return cleaned


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def search_clause(columns: list[str], q: str) -> tuple[str, list[str]]:
    """Case-insensitive substring match of ``q`` against any of ``columns``.

    Uses the ``casefold`` SQL function registered on every connection, so
    non-ASCII letters fold the same way ``str.casefold`` does. ``instr`` takes
    the needle literally; ``%`` and ``_`` need no escaping.
    """
    needle = q.casefold()
    clause = " OR ".join(f"instr(casefold({column}), ?) > 0" for column in columns)
    return f"({clause})", [needle] * len(columns)


async def _register_functions(conn: aiosqlite.Connection) -> None:
    await conn.create_function("casefold", 1, _casefold, deterministic=True)


async def init_database(db_path: str, busy_timeout_ms: int = 5000) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection, _db_path, _busy_timeout_s

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_path = db_path
    _busy_timeout_s = busy_timeout_ms / 1000

    _db_connection = await aiosqlite.connect(db_path, timeout=_busy_timeout_s)
    _db_connection.row_factory = aiosqlite.Row
    await _register_functions(_db_connection)

    # WAL lets readers proceed while a writer holds the lock
    await _db_connection.execute("PRAGMA journal_mode = WAL")
    await _db_connection.execute("PRAGMA foreign_keys = ON")

    await _create_schema(_db_connection)
    logger.info("Database initialized at %s", db_path)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection, _db_path
    if _db_connection:
        await _db_connection.close()
        _db_connection = None
    _db_path = None


async def get_db() -> aiosqlite.Connection:
    """Get the shared read connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run one unit of work in its own ``BEGIN IMMEDIATE`` transaction.

    Each transaction gets a dedicated connection so concurrent writers are
    serialized by SQLite's write lock rather than interleaving statements on a
    shared connection. The transaction commits when the block exits normally
    and rolls back on any exception, including task cancellation.
    """
    if _db_path is None:
        raise RuntimeError("Database not initialized. Call init_database first.")

    try:
        conn = await aiosqlite.connect(
            _db_path, timeout=_busy_timeout_s, isolation_level=None
        )
    except sqlite3.OperationalError as e:
        raise TransientError(f"Could not open database: {e}") from e

    conn.row_factory = aiosqlite.Row
    try:
        await _register_functions(conn)
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            await conn.execute("ROLLBACK")
            raise
        await conn.execute("COMMIT")
    except sqlite3.OperationalError as e:
        logger.warning("Transaction aborted by database: %s", e)
        raise TransientError(f"Database unavailable: {e}") from e
    finally:
        await conn.close()


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables, indexes and guard triggers."""
    # Tasks table
    await db.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            workflow_key TEXT NOT NULL,
            goal TEXT,
            acceptance_criteria TEXT,
            systems_touched_json TEXT NOT NULL DEFAULT '{}',
            risk_level TEXT NOT NULL DEFAULT 'low',
            status TEXT NOT NULL DEFAULT 'open',
            created_at TEXT NOT NULL,
            last_touched_at TEXT NOT NULL
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_tasks_workflow_status
        ON tasks(workflow_key, status)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_tasks_last_touched
        ON tasks(last_touched_at)
    """)

    # Runs table
    await db.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL,
            targets_json TEXT NOT NULL DEFAULT '[]',
            started_at TEXT NOT NULL,
            ended_at TEXT,
            status TEXT NOT NULL DEFAULT 'in_progress',
            summary TEXT,
            FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_runs_task
        ON runs(task_id, started_at)
    """)

    # =========================================================================
    # Run Events (append-only audit log)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS run_events (
            run_id TEXT NOT NULL,
            id INTEGER NOT NULL,
            ts TEXT NOT NULL,
            type TEXT NOT NULL,
            message TEXT,
            data_json TEXT NOT NULL DEFAULT '{}',
            supersedes_event_id INTEGER,
            PRIMARY KEY (run_id, id),
            FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE,
            FOREIGN KEY (run_id, supersedes_event_id) REFERENCES run_events(run_id, id)
        )
    """)

    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_run_events_no_update
        BEFORE UPDATE ON run_events
        BEGIN
            SELECT RAISE(ABORT, 'run events are append-only');
        END
    """)

    # =========================================================================
    # Library Items (versioned by supersession)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS library_items (
            id TEXT PRIMARY KEY,
            chain_id TEXT NOT NULL,
            version INTEGER NOT NULL,
            workflow_key TEXT NOT NULL,
            kind TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL DEFAULT '',
            tags_json TEXT NOT NULL DEFAULT '{}',
            source_refs_json TEXT NOT NULL DEFAULT '[]',
            promotion_mode TEXT NOT NULL,
            created_at TEXT NOT NULL,
            last_used_at TEXT,
            superseded_by_id TEXT
                REFERENCES library_items(id) DEFERRABLE INITIALLY DEFERRED,
            UNIQUE(chain_id, version)
        )
    """)

    # Exactly one current item per chain
    await db.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_library_chain_current
        ON library_items(chain_id) WHERE superseded_by_id IS NULL
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_library_workflow_kind
        ON library_items(workflow_key, kind, superseded_by_id)
    """)

    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_library_items_content_immutable
        BEFORE UPDATE OF id, chain_id, version, workflow_key, kind, title, body,
            tags_json, source_refs_json, promotion_mode, created_at
        ON library_items
        BEGIN
            SELECT RAISE(ABORT, 'library item content is immutable');
        END
    """)

    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_library_items_supersede_once
        BEFORE UPDATE OF superseded_by_id ON library_items
        WHEN OLD.superseded_by_id IS NOT NULL
        BEGIN
            SELECT RAISE(ABORT, 'library item already superseded');
        END
    """)

    # Chain head index: O(1) lookup of the current version
    await db.execute("""
        CREATE TABLE IF NOT EXISTS library_chains (
            chain_id TEXT PRIMARY KEY,
            head_id TEXT NOT NULL,
            version_count INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (head_id) REFERENCES library_items(id) DEFERRABLE INITIALLY DEFERRED
        )
    """)

    # =========================================================================
    # Run <-> Library Links
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS run_library_links (
            run_id TEXT NOT NULL,
            library_item_id TEXT NOT NULL,
            relation TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (run_id, library_item_id, relation),
            FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE,
            FOREIGN KEY (library_item_id) REFERENCES library_items(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_links_item
        ON run_library_links(library_item_id, relation)
    """)

    await db.commit()
