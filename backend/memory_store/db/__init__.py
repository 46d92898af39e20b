"""Database module."""

from memory_store.db.database import close_database, get_db, init_database, transaction
from memory_store.db.library_store import LibraryStore, library_store
from memory_store.db.link_index import LinkIndex, link_index
from memory_store.db.run_store import RunStore, run_store
from memory_store.db.task_store import TaskStore, task_store

__all__ = [
    "get_db",
    "init_database",
    "close_database",
    "transaction",
    "task_store",
    "TaskStore",
    "run_store",
    "RunStore",
    "library_store",
    "LibraryStore",
    "link_index",
    "LinkIndex",
]
