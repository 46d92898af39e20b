"""Pydantic models for Run <-> LibraryItem relation edges."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from memory_store.models.library import LibraryItem


class RunLibraryRelation(str, Enum):
    """How a run touched a library item."""

    USED = "used"
    CREATED = "created"
    PROMOTED = "promoted"
    SUPERSEDED = "superseded"


class LinkCreate(BaseModel):
    """Request model for linking a run to a library item."""

    library_item_id: str
    relation: RunLibraryRelation


class RunLibraryLink(BaseModel):
    """A stored edge keyed by (run_id, library_item_id, relation)."""

    run_id: str
    library_item_id: str
    relation: RunLibraryRelation
    created_at: datetime


class LinkResult(BaseModel):
    """Outcome of an idempotent link write."""

    link: RunLibraryLink
    created: bool


class RunMemoryLink(BaseModel):
    """A link from a run's point of view, with the item inlined."""

    relation: RunLibraryRelation
    created_at: datetime
    library_item: LibraryItem


class ItemProvenance(BaseModel):
    """A link from an item's point of view: which run touched it and how."""

    run_id: str
    task_id: str
    relation: RunLibraryRelation
    created_at: datetime


class ItemProvenancePublic(BaseModel):
    """All runs that touched one library item."""

    data: list[ItemProvenance]
    count: int
