"""Pydantic models for versioned library items.

Items are never edited in place. A new version is written as a new row and
the previous row's ``superseded_by_id`` is pointed at it, so every chain has
exactly one current item (the one with ``superseded_by_id`` unset).
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class LibraryItemKind(str, Enum):
    """Kind of reusable knowledge."""

    RECIPE = "recipe"
    PITFALL = "pitfall"
    DECISION = "decision"
    CHECKLIST = "checklist"


class PromotionMode(str, Enum):
    """Whether an item was promoted automatically or by a user."""

    AUTO = "auto"
    USER = "user"


class LibraryItemCreate(BaseModel):
    """Fields for a new item or a new version of an existing one."""

    workflow_key: str = Field(..., min_length=1)
    kind: LibraryItemKind
    title: str = Field(..., min_length=1)
    body: str = ""
    tags: dict[str, Any] = Field(default_factory=dict)
    source_refs: list[Any] = Field(default_factory=list)
    promotion_mode: PromotionMode


class LibraryItemWrite(LibraryItemCreate):
    """Request body for create/supersede, optionally attributed to a run."""

    run_id: str | None = None

    def item_fields(self) -> LibraryItemCreate:
        return LibraryItemCreate(**self.model_dump(exclude={"run_id"}))


class LibraryItem(BaseModel):
    """One version of a library item."""

    id: str
    chain_id: str
    version: int
    workflow_key: str
    kind: LibraryItemKind
    title: str
    body: str
    tags: dict[str, Any] = Field(default_factory=dict)
    source_refs: list[Any] = Field(default_factory=list)
    promotion_mode: PromotionMode
    created_at: datetime
    last_used_at: datetime | None = None
    superseded_by_id: str | None = None

    @property
    def is_current(self) -> bool:
        return self.superseded_by_id is None


class LibraryItemsPublic(BaseModel):
    """Page of library items."""

    data: list[LibraryItem]
    count: int


class LibraryHistory(BaseModel):
    """Every version of one chain, oldest first."""

    chain_id: str
    head_id: str
    data: list[LibraryItem]


class WorkflowKeyCount(BaseModel):
    """Derived bucket: items per workflow key with a readable label."""

    workflow_key: str
    bucket_name: str
    count: int


class WorkflowKeysPublic(BaseModel):
    """All buckets."""

    data: list[WorkflowKeyCount]
