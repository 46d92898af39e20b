"""Pydantic models for Runs and their append-only event log."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from memory_store.models.link import RunLibraryRelation, RunMemoryLink


class RunStatus(str, Enum):
    """Lifecycle of a run. ``in_progress`` is the only non-terminal state."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.IN_PROGRESS


class RunCreate(BaseModel):
    """Request model for starting a run."""

    targets: list[Any] = Field(default_factory=list)


class RunEnd(BaseModel):
    """Request model for ending a run."""

    status: RunStatus
    summary: str | None = None


class Run(BaseModel):
    """One execution session against a task."""

    id: str
    task_id: str
    targets: list[Any] = Field(default_factory=list)
    started_at: datetime
    ended_at: datetime | None = None
    status: RunStatus
    summary: str | None = None


class RunsPublic(BaseModel):
    """Page of runs."""

    data: list[Run]
    count: int


class RunEventCreate(BaseModel):
    """Request model for appending an event."""

    type: str = Field(..., min_length=1)
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    supersedes_event_id: int | None = Field(None, ge=1)


class RunEvent(BaseModel):
    """An immutable entry in a run's audit log."""

    id: int
    run_id: str
    ts: datetime
    type: str
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    supersedes_event_id: int | None = None


class RunDetail(BaseModel):
    """A run with its full event log and library links."""

    run: Run
    events: list[RunEvent]
    memory_links: list[RunMemoryLink]
    links_by_relation: dict[RunLibraryRelation, list[RunMemoryLink]]
