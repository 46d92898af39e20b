"""Pydantic models for the memory store."""

from memory_store.models.library import (
    LibraryHistory,
    LibraryItem,
    LibraryItemCreate,
    LibraryItemKind,
    LibraryItemsPublic,
    LibraryItemWrite,
    PromotionMode,
    WorkflowKeyCount,
    WorkflowKeysPublic,
)
from memory_store.models.link import (
    ItemProvenance,
    ItemProvenancePublic,
    LinkCreate,
    LinkResult,
    RunLibraryLink,
    RunLibraryRelation,
    RunMemoryLink,
)
from memory_store.models.run import (
    Run,
    RunCreate,
    RunDetail,
    RunEnd,
    RunEvent,
    RunEventCreate,
    RunsPublic,
    RunStatus,
)
from memory_store.models.task import Task, TaskCreate, TasksPublic, TaskUpdate

__all__ = [
    # Tasks
    "Task",
    "TaskCreate",
    "TaskUpdate",
    "TasksPublic",
    # Runs & Events
    "Run",
    "RunCreate",
    "RunEnd",
    "RunStatus",
    "RunsPublic",
    "RunEvent",
    "RunEventCreate",
    "RunDetail",
    # Library
    "LibraryItem",
    "LibraryItemCreate",
    "LibraryItemWrite",
    "LibraryItemKind",
    "LibraryItemsPublic",
    "LibraryHistory",
    "PromotionMode",
    "WorkflowKeyCount",
    "WorkflowKeysPublic",
    # Links
    "LinkCreate",
    "LinkResult",
    "RunLibraryLink",
    "RunLibraryRelation",
    "RunMemoryLink",
    "ItemProvenance",
    "ItemProvenancePublic",
]
