"""Run API routes: run lifecycle, event log and library links."""

import logging

from fastapi import APIRouter, Depends

from memory_store.auth import Caller, require_caller
from memory_store.db import link_index, run_store
from memory_store.models import (
    LinkCreate,
    LinkResult,
    Run,
    RunDetail,
    RunEnd,
    RunEvent,
    RunEventCreate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/runs/{run_id}", response_model=Run)
async def get_run(run_id: str) -> Run:
    """Get a run by ID."""
    return await run_store.get_run(run_id)


@router.get("/runs/{run_id}/detail", response_model=RunDetail)
async def get_run_detail(run_id: str) -> RunDetail:
    """Get a run with all of its events and library links."""
    return await run_store.get_detail(run_id)


@router.post("/runs/{run_id}/end", response_model=Run)
async def end_run(
    run_id: str,
    request: RunEnd,
    caller: Caller = Depends(require_caller),
) -> Run:
    """End a run. A second call returns 409."""
    run = await run_store.end_run(run_id, request.status, summary=request.summary)
    logger.info("Run %s ended by %s", run_id, caller.subject)
    return run


# =============================================================================
# Events
# =============================================================================


@router.post("/runs/{run_id}/events", response_model=RunEvent, status_code=201)
async def append_event(
    run_id: str,
    event: RunEventCreate,
    caller: Caller = Depends(require_caller),
) -> RunEvent:
    """Append an event to a run's log."""
    return await run_store.append_event(run_id, event)


@router.get("/runs/{run_id}/events/{event_id}/history", response_model=list[RunEvent])
async def get_event_history(run_id: str, event_id: int) -> list[RunEvent]:
    """An event and every later event correcting it."""
    return await run_store.event_history(run_id, event_id)


# =============================================================================
# Library links
# =============================================================================


@router.post("/runs/{run_id}/links", response_model=LinkResult)
async def link_library_item(
    run_id: str,
    request: LinkCreate,
    caller: Caller = Depends(require_caller),
) -> LinkResult:
    """Record that a run touched a library item. Repeating a link is a no-op."""
    link, created = await link_index.link(
        run_id, request.library_item_id, request.relation
    )
    return LinkResult(link=link, created=created)
