"""Pytest configuration and fixtures."""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from memory_store.auth import TokenVerifier
from memory_store.db import library_store, run_store, task_store
from memory_store.db.database import close_database, init_database
from memory_store.main import app
from memory_store.models import (
    LibraryItem,
    LibraryItemCreate,
    LibraryItemKind,
    PromotionMode,
    Run,
    Task,
    TaskCreate,
)

TEST_TOKEN = "test-token"


@pytest.fixture(autouse=True)
async def setup_test_db(tmp_path):
    """Set up a fresh database file for each test."""
    db_path = tmp_path / "memory.db"
    await init_database(str(db_path), busy_timeout_ms=5000)

    yield

    await close_database()


@pytest.fixture(autouse=True)
def token_verifier():
    """Accept a single known token on write endpoints."""
    previous = getattr(app.state, "token_verifier", None)
    app.state.token_verifier = TokenVerifier({TEST_TOKEN: "tester"})
    yield app.state.token_verifier
    app.state.token_verifier = previous


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


def _make_item(**overrides) -> LibraryItemCreate:
    """Library item fields with sensible defaults."""
    fields = {
        "workflow_key": "foo",
        "kind": LibraryItemKind.RECIPE,
        "title": "Restart the worker",
        "body": "Run `make restart` and wait for the health check.",
        "tags": {"area": "ops"},
        "source_refs": ["run:1"],
        "promotion_mode": PromotionMode.AUTO,
    }
    fields.update(overrides)
    return LibraryItemCreate(**fields)


@pytest.fixture
async def task() -> Task:
    return await task_store.create(
        TaskCreate(
            title="Fix flaky deploy",
            workflow_key="github_actions",
            goal="Deployment pipeline passes on every push",
            acceptance_criteria="Three green runs in a row",
            systems_touched={"ci": "github"},
        )
    )


@pytest.fixture
async def run(task: Task) -> Run:
    return await run_store.start_run(task.id, targets=["repo:web"])


@pytest.fixture
async def item() -> LibraryItem:
    return await library_store.create(_make_item())


@pytest.fixture
def make_item():
    """Factory for library item fields."""
    return _make_item
