"""LinkIndex - the relation graph between runs and library items.

Edges are keyed by (run_id, library_item_id, relation). Writing the same
triple twice leaves a single row. Different relations between the same run
and item are independent edges.
"""

import logging

import aiosqlite

from memory_store.db.database import get_db, transaction, utc_now
from memory_store.db.library_store import row_to_item
from memory_store.db.task_store import task_store
from memory_store.errors import NotFoundError, ValidationError
from memory_store.models import (
    ItemProvenance,
    RunLibraryLink,
    RunLibraryRelation,
    RunMemoryLink,
)

logger = logging.getLogger(__name__)


def parse_relation(relation: str | RunLibraryRelation) -> RunLibraryRelation:
    """Validate a relation against the closed vocabulary."""
    try:
        return RunLibraryRelation(relation)
    except ValueError:
        allowed = ", ".join(r.value for r in RunLibraryRelation)
        raise ValidationError(
            f"Unknown relation {relation!r}; expected one of: {allowed}"
        ) from None


def group_by_relation(
    links: list[RunMemoryLink],
) -> dict[RunLibraryRelation, list[RunMemoryLink]]:
    """Group links into the four relation buckets (each possibly empty)."""
    groups: dict[RunLibraryRelation, list[RunMemoryLink]] = {
        relation: [] for relation in RunLibraryRelation
    }
    for link in links:
        groups[link.relation].append(link)
    return groups


class LinkIndex:
    """Storage for run <-> library item links."""

    async def link(
        self,
        run_id: str,
        library_item_id: str,
        relation: str | RunLibraryRelation,
    ) -> tuple[RunLibraryLink, bool]:
        """Idempotently record that a run touched an item.

        Returns (link, created). A ``used`` link always refreshes the item's
        ``last_used_at``, whether or not the row already existed.
        """
        relation = parse_relation(relation)
        async with transaction() as conn:
            return await self.insert_link(
                conn, run_id, library_item_id, relation, utc_now()
            )

    async def insert_link(
        self,
        conn: aiosqlite.Connection,
        run_id: str,
        library_item_id: str,
        relation: RunLibraryRelation,
        now: str,
    ) -> tuple[RunLibraryLink, bool]:
        """Write a link inside an open transaction."""
        cursor = await conn.execute("SELECT task_id FROM runs WHERE id = ?", (run_id,))
        run_row = await cursor.fetchone()
        if run_row is None:
            raise NotFoundError(f"Run {run_id} not found")

        cursor = await conn.execute(
            "SELECT 1 FROM library_items WHERE id = ?", (library_item_id,)
        )
        if await cursor.fetchone() is None:
            raise NotFoundError(f"Library item {library_item_id} not found")

        cursor = await conn.execute(
            """
            INSERT INTO run_library_links (run_id, library_item_id, relation, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (run_id, library_item_id, relation) DO NOTHING
            """,
            (run_id, library_item_id, relation.value, now),
        )
        created = cursor.rowcount == 1

        if relation is RunLibraryRelation.USED:
            await conn.execute(
                "UPDATE library_items SET last_used_at = ? WHERE id = ?",
                (now, library_item_id),
            )

        if created:
            await task_store.touch(conn, run_row["task_id"], now)
            logger.info(
                "Linked run %s -> item %s (%s)", run_id, library_item_id, relation.value
            )

        cursor = await conn.execute(
            """
            SELECT run_id, library_item_id, relation, created_at
            FROM run_library_links
            WHERE run_id = ? AND library_item_id = ? AND relation = ?
            """,
            (run_id, library_item_id, relation.value),
        )
        row = await cursor.fetchone()
        link = RunLibraryLink(
            run_id=row["run_id"],
            library_item_id=row["library_item_id"],
            relation=row["relation"],
            created_at=row["created_at"],
        )
        return link, created

    async def memory_links(self, run_id: str) -> list[RunMemoryLink]:
        """All links for a run with the linked item inlined, oldest first."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT l.relation AS link_relation, l.created_at AS link_created_at, i.*
            FROM run_library_links l
            JOIN library_items i ON i.id = l.library_item_id
            WHERE l.run_id = ?
            ORDER BY l.created_at, l.rowid
            """,
            (run_id,),
        )
        rows = await cursor.fetchall()
        return [
            RunMemoryLink(
                relation=row["link_relation"],
                created_at=row["link_created_at"],
                library_item=row_to_item(row),
            )
            for row in rows
        ]

    async def links_for_run(
        self, run_id: str
    ) -> dict[RunLibraryRelation, list[RunMemoryLink]]:
        """All links for a run grouped by relation."""
        db = await get_db()
        cursor = await db.execute("SELECT 1 FROM runs WHERE id = ?", (run_id,))
        if await cursor.fetchone() is None:
            raise NotFoundError(f"Run {run_id} not found")
        return group_by_relation(await self.memory_links(run_id))

    async def links_for_item(self, library_item_id: str) -> list[ItemProvenance]:
        """Reverse index: every run that touched an item, and how."""
        db = await get_db()
        cursor = await db.execute(
            "SELECT 1 FROM library_items WHERE id = ?", (library_item_id,)
        )
        if await cursor.fetchone() is None:
            raise NotFoundError(f"Library item {library_item_id} not found")

        cursor = await db.execute(
            """
            SELECT l.run_id, r.task_id, l.relation, l.created_at
            FROM run_library_links l
            JOIN runs r ON r.id = l.run_id
            WHERE l.library_item_id = ?
            ORDER BY l.created_at, l.rowid
            """,
            (library_item_id,),
        )
        rows = await cursor.fetchall()
        return [
            ItemProvenance(
                run_id=row["run_id"],
                task_id=row["task_id"],
                relation=row["relation"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


# Global instance
link_index = LinkIndex()
