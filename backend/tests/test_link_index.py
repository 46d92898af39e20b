"""Tests for the run <-> library link index."""

import pytest

from memory_store.db import get_db, library_store, link_index, run_store, task_store
from memory_store.errors import NotFoundError, ValidationError
from memory_store.models import RunLibraryRelation


async def _link_rows(run_id: str, item_id: str, relation: str) -> int:
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT COUNT(*) AS n FROM run_library_links
        WHERE run_id = ? AND library_item_id = ? AND relation = ?
        """,
        (run_id, item_id, relation),
    )
    return (await cursor.fetchone())["n"]


class TestLink:
    """Tests for idempotent link writes."""

    @pytest.mark.asyncio
    async def test_link_is_idempotent(self, run, item):
        """Test that repeating a link keeps one row."""
        first, created_first = await link_index.link(run.id, item.id, "used")
        second, created_second = await link_index.link(run.id, item.id, "used")
        third, created_third = await link_index.link(run.id, item.id, RunLibraryRelation.USED)

        assert created_first is True
        assert created_second is False
        assert created_third is False
        assert first.created_at == second.created_at == third.created_at
        assert await _link_rows(run.id, item.id, "used") == 1

    @pytest.mark.asyncio
    async def test_used_touches_last_used_every_time(self, run, item):
        """Test that last_used_at reflects the most recent used link."""
        await link_index.link(run.id, item.id, "used")
        after_first = (await library_store.get(item.id)).last_used_at
        assert after_first is not None

        await link_index.link(run.id, item.id, "used")
        after_second = (await library_store.get(item.id)).last_used_at
        assert after_second > after_first
        assert await _link_rows(run.id, item.id, "used") == 1

    @pytest.mark.asyncio
    async def test_other_relations_do_not_touch_last_used(self, run, item):
        """Test that only used links touch last_used_at."""
        await link_index.link(run.id, item.id, "promoted")
        assert (await library_store.get(item.id)).last_used_at is None

    @pytest.mark.asyncio
    async def test_relations_are_independent_edges(self, run, item):
        """Test that one run may hold several relations to the same item."""
        await link_index.link(run.id, item.id, "created")
        await link_index.link(run.id, item.id, "promoted")

        groups = await link_index.links_for_run(run.id)
        assert len(groups[RunLibraryRelation.CREATED]) == 1
        assert len(groups[RunLibraryRelation.PROMOTED]) == 1
        assert groups[RunLibraryRelation.USED] == []
        assert groups[RunLibraryRelation.SUPERSEDED] == []

    @pytest.mark.asyncio
    async def test_unknown_relation_rejected(self, run, item):
        """Test that relations outside the vocabulary are rejected."""
        with pytest.raises(ValidationError):
            await link_index.link(run.id, item.id, "liked")

    @pytest.mark.asyncio
    async def test_unknown_ids_rejected(self, run, item):
        """Test NotFound for unknown run or item."""
        with pytest.raises(NotFoundError):
            await link_index.link("missing", item.id, "used")
        with pytest.raises(NotFoundError):
            await link_index.link(run.id, "missing", "used")

    @pytest.mark.asyncio
    async def test_new_link_touches_task(self, task, run, item):
        """Test that creating a link advances the owning task's last_touched_at."""
        before = (await task_store.get(task.id)).last_touched_at
        link, _ = await link_index.link(run.id, item.id, "used")
        after = (await task_store.get(task.id)).last_touched_at
        assert after == link.created_at
        assert after > before


class TestLinkQueries:
    """Tests for forward and reverse lookups."""

    @pytest.mark.asyncio
    async def test_links_for_item_gives_provenance(self, task, run, item):
        """Test that the reverse index lists every run that touched an item."""
        other_run = await run_store.start_run(task.id)
        await link_index.link(run.id, item.id, "used")
        await link_index.link(other_run.id, item.id, "used")
        await link_index.link(other_run.id, item.id, "superseded")

        provenance = await link_index.links_for_item(item.id)
        pairs = {(p.run_id, p.relation) for p in provenance}
        assert pairs == {
            (run.id, RunLibraryRelation.USED),
            (other_run.id, RunLibraryRelation.USED),
            (other_run.id, RunLibraryRelation.SUPERSEDED),
        }
        assert all(p.task_id == task.id for p in provenance)

    @pytest.mark.asyncio
    async def test_links_for_unknown_ids(self):
        """Test NotFound from both lookups."""
        with pytest.raises(NotFoundError):
            await link_index.links_for_run("missing")
        with pytest.raises(NotFoundError):
            await link_index.links_for_item("missing")

    @pytest.mark.asyncio
    async def test_empty_run_has_four_empty_groups(self, run):
        """Test that a run without links still returns every group."""
        groups = await link_index.links_for_run(run.id)
        assert set(groups) == set(RunLibraryRelation)
        assert all(links == [] for links in groups.values())
