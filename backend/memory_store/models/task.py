"""Pydantic models for Task records."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class TaskCreate(BaseModel):
    """Request model for creating a task."""

    title: str = Field(..., min_length=1)
    workflow_key: str = Field(..., min_length=1)
    goal: str | None = None
    acceptance_criteria: str | None = None
    systems_touched: dict[str, Any] = Field(default_factory=dict)
    risk_level: str = "low"
    status: str = "open"


class TaskUpdate(BaseModel):
    """Request model for renaming a task."""

    title: str


class Task(BaseModel):
    """A tracked unit of work."""

    id: str
    title: str
    workflow_key: str
    goal: str | None = None
    acceptance_criteria: str | None = None
    systems_touched: dict[str, Any] = Field(default_factory=dict)
    risk_level: str
    status: str
    created_at: datetime
    last_touched_at: datetime


class TasksPublic(BaseModel):
    """Page of tasks; ``count`` is the total number of matching rows."""

    data: list[Task]
    count: int
