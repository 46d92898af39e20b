"""Library API routes.

Library items are versioned by replacement: ``PUT /library/{id}`` writes a new
row and marks ``{id}`` as superseded; it never edits ``{id}``.
"""

import logging

from fastapi import APIRouter, Depends, Query

from memory_store.auth import Caller, require_caller
from memory_store.db import library_store, link_index
from memory_store.models import (
    ItemProvenancePublic,
    LibraryHistory,
    LibraryItem,
    LibraryItemKind,
    LibraryItemsPublic,
    LibraryItemWrite,
    WorkflowKeysPublic,
)
from memory_store.services import workflow_buckets

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/library", response_model=LibraryItemsPublic)
@router.get("/library/", response_model=LibraryItemsPublic, include_in_schema=False)
async def list_library_items(
    workflow_key: str | None = Query(None, description="Filter by workflow key"),
    kind: LibraryItemKind | None = Query(None, description="Filter by kind"),
    q: str | None = Query(None, description="Substring of title or body"),
    current_only: bool = Query(False, description="Exclude superseded versions"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> LibraryItemsPublic:
    """List library items with optional filters."""
    items, total = await library_store.list_items(
        workflow_key=(workflow_key or "").strip() or None,
        kind=kind,
        q=(q or "").strip() or None,
        current_only=current_only,
        skip=skip,
        limit=limit,
    )
    return LibraryItemsPublic(data=items, count=total)


@router.get("/library/workflow-keys", response_model=WorkflowKeysPublic)
async def list_workflow_keys(
    current_only: bool = Query(False, description="Count only current versions"),
) -> WorkflowKeysPublic:
    """Workflow buckets with item counts."""
    return WorkflowKeysPublic(data=await workflow_buckets(current_only=current_only))


@router.post("/library", response_model=LibraryItem, status_code=201)
@router.post("/library/", response_model=LibraryItem, status_code=201, include_in_schema=False)
async def create_library_item(
    request: LibraryItemWrite,
    caller: Caller = Depends(require_caller),
) -> LibraryItem:
    """Create a new library item (the first version of a new chain)."""
    item = await library_store.create(request.item_fields(), run_id=request.run_id)
    logger.info("Library item %s created by %s", item.id, caller.subject)
    return item


@router.get("/library/{item_id}", response_model=LibraryItem)
async def get_library_item(item_id: str) -> LibraryItem:
    """Get one version of a library item."""
    return await library_store.get(item_id)


@router.put("/library/{item_id}", response_model=LibraryItem, status_code=201)
async def supersede_library_item(
    item_id: str,
    request: LibraryItemWrite,
    caller: Caller = Depends(require_caller),
) -> LibraryItem:
    """Supersede a library item with a new version.

    Returns 409 with ``current_head_id`` when ``item_id`` is no longer current.
    """
    item = await library_store.supersede(
        item_id, request.item_fields(), run_id=request.run_id
    )
    logger.info("Library item %s superseded by %s (%s)", item_id, item.id, caller.subject)
    return item


@router.get("/library/{item_id}/head", response_model=LibraryItem)
async def get_library_head(item_id: str) -> LibraryItem:
    """Current version of the chain containing ``item_id``."""
    return await library_store.head(item_id)


@router.get("/library/{item_id}/history", response_model=LibraryHistory)
async def get_library_history(item_id: str) -> LibraryHistory:
    """All versions of the chain containing ``item_id``, oldest first."""
    chain_id, head_id, versions = await library_store.history(item_id)
    return LibraryHistory(chain_id=chain_id, head_id=head_id, data=versions)


@router.get("/library/{item_id}/links", response_model=ItemProvenancePublic)
async def get_library_item_links(item_id: str) -> ItemProvenancePublic:
    """Runs that touched this item, with the relation."""
    links = await link_index.links_for_item(item_id)
    return ItemProvenancePublic(data=links, count=len(links))
