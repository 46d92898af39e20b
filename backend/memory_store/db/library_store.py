"""LibraryStore - versioned knowledge items and the supersession protocol.

A chain starts when an item is created. Each supersede writes a new row,
points the previous head's ``superseded_by_id`` at it and moves the chain's
entry in ``library_chains`` (the head index) in the same transaction. The
transition of ``superseded_by_id`` from NULL is a compare-and-set: of any
number of concurrent supersedes of the same item exactly one succeeds and the
rest get ConflictError.
"""

import json
import logging
from typing import Any

import aiosqlite

from memory_store.db.database import (
    check_page,
    clean_workflow_key,
    get_db,
    new_id,
    search_clause,
    transaction,
    utc_now,
)
from memory_store.errors import ConflictError, NotFoundError, StoreError, ValidationError
from memory_store.models import (
    LibraryItem,
    LibraryItemCreate,
    LibraryItemKind,
    PromotionMode,
    RunLibraryRelation,
)

logger = logging.getLogger(__name__)

ITEM_COLUMNS = (
    "id, chain_id, version, workflow_key, kind, title, body, tags_json, "
    "source_refs_json, promotion_mode, created_at, last_used_at, superseded_by_id"
)


def row_to_item(row: aiosqlite.Row) -> LibraryItem:
    """Convert a database row to a LibraryItem model."""
    return LibraryItem(
        id=row["id"],
        chain_id=row["chain_id"],
        version=row["version"],
        workflow_key=row["workflow_key"],
        kind=LibraryItemKind(row["kind"]),
        title=row["title"],
        body=row["body"],
        tags=json.loads(row["tags_json"] or "{}"),
        source_refs=json.loads(row["source_refs_json"] or "[]"),
        promotion_mode=PromotionMode(row["promotion_mode"]),
        created_at=row["created_at"],
        last_used_at=row["last_used_at"],
        superseded_by_id=row["superseded_by_id"],
    )


def parse_kind(kind: str | LibraryItemKind) -> LibraryItemKind:
    """Validate a kind against the closed vocabulary."""
    try:
        return LibraryItemKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in LibraryItemKind)
        raise ValidationError(
            f"Unknown kind {kind!r}; expected one of: {allowed}"
        ) from None


def _creation_relation(item: LibraryItemCreate) -> RunLibraryRelation:
    """User-promoted items are recorded as ``promoted``, the rest as ``created``."""
    if item.promotion_mode is PromotionMode.USER:
        return RunLibraryRelation.PROMOTED
    return RunLibraryRelation.CREATED


class LibraryStore:
    """Storage for library items."""

    # ==================== Writes ====================

    async def create(
        self, item: LibraryItemCreate, run_id: str | None = None
    ) -> LibraryItem:
        """Create a new item, starting a new chain.

        When ``run_id`` is given the run is linked to the item in the same
        transaction.
        """
        from memory_store.db.link_index import link_index

        clean_workflow_key(item.workflow_key)
        item_id = new_id()
        now = utc_now()
        async with transaction() as conn:
            await self._insert_item(conn, item_id, item_id, 1, item, now)
            await conn.execute(
                """
                INSERT INTO library_chains (chain_id, head_id, version_count, updated_at)
                VALUES (?, ?, 1, ?)
                """,
                (item_id, item_id, now),
            )
            if run_id is not None:
                await link_index.insert_link(
                    conn, run_id, item_id, _creation_relation(item), now
                )

        logger.info(
            "Created library item %s (%s) in workflow %s",
            item_id,
            item.kind.value,
            item.workflow_key,
        )
        return await self.get(item_id)

    async def supersede(
        self,
        old_id: str,
        item: LibraryItemCreate,
        run_id: str | None = None,
    ) -> LibraryItem:
        """Replace ``old_id`` with a new version built from ``item``.

        The old row keeps its content; only its ``superseded_by_id`` is set.
        Raises ConflictError (with the current head id) when ``old_id`` is no
        longer current.
        """
        from memory_store.db.link_index import link_index

        clean_workflow_key(item.workflow_key)
        new_item_id = new_id()
        now = utc_now()
        async with transaction() as conn:
            cursor = await conn.execute(
                "SELECT chain_id, version, superseded_by_id FROM library_items WHERE id = ?",
                (old_id,),
            )
            old = await cursor.fetchone()
            if old is None:
                raise NotFoundError(f"Library item {old_id} not found")

            chain_id = old["chain_id"]
            if old["superseded_by_id"] is not None:
                head_id = await self._head_id(conn, chain_id)
                raise ConflictError(
                    f"Library item {old_id} was already superseded",
                    current_head_id=head_id,
                )

            # Compare-and-set: only a still-current row can be superseded
            cursor = await conn.execute(
                """
                UPDATE library_items SET superseded_by_id = ?
                WHERE id = ? AND superseded_by_id IS NULL
                """,
                (new_item_id, old_id),
            )
            if cursor.rowcount != 1:
                head_id = await self._head_id(conn, chain_id)
                raise ConflictError(
                    f"Library item {old_id} was already superseded",
                    current_head_id=head_id,
                )

            await self._insert_item(
                conn, new_item_id, chain_id, old["version"] + 1, item, now
            )

            cursor = await conn.execute(
                """
                UPDATE library_chains
                SET head_id = ?, version_count = version_count + 1, updated_at = ?
                WHERE chain_id = ? AND head_id = ?
                """,
                (new_item_id, now, chain_id, old_id),
            )
            if cursor.rowcount != 1:
                raise ConflictError(
                    f"Head index for chain {chain_id} does not point at {old_id}",
                    current_head_id=await self._head_id(conn, chain_id),
                )

            if run_id is not None:
                await link_index.insert_link(
                    conn, run_id, old_id, RunLibraryRelation.SUPERSEDED, now
                )
                await link_index.insert_link(
                    conn, run_id, new_item_id, _creation_relation(item), now
                )

        logger.info("Superseded library item %s -> %s", old_id, new_item_id)
        return await self.get(new_item_id)

    async def _insert_item(
        self,
        conn: aiosqlite.Connection,
        item_id: str,
        chain_id: str,
        version: int,
        item: LibraryItemCreate,
        now: str,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO library_items (id, chain_id, version, workflow_key, kind, title, body,
                tags_json, source_refs_json, promotion_mode, created_at, last_used_at,
                superseded_by_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL)
            """,
            (
                item_id,
                chain_id,
                version,
                clean_workflow_key(item.workflow_key),
                item.kind.value,
                item.title,
                item.body,
                json.dumps(item.tags),
                json.dumps(item.source_refs),
                item.promotion_mode.value,
                now,
            ),
        )

    async def _head_id(self, conn: aiosqlite.Connection, chain_id: str) -> str | None:
        cursor = await conn.execute(
            "SELECT head_id FROM library_chains WHERE chain_id = ?", (chain_id,)
        )
        row = await cursor.fetchone()
        return row["head_id"] if row else None

    # ==================== Reads ====================

    async def get(self, item_id: str) -> LibraryItem:
        """Get one version by ID."""
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {ITEM_COLUMNS} FROM library_items WHERE id = ?", (item_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(f"Library item {item_id} not found")
        return row_to_item(row)

    async def list_items(
        self,
        workflow_key: str | None = None,
        kind: LibraryItemKind | None = None,
        q: str | None = None,
        current_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[LibraryItem], int]:
        """Query items with filters. Returns (items, total_count)."""
        check_page(skip, limit)
        db = await get_db()

        conditions: list[str] = []
        params: list[Any] = []

        if workflow_key:
            conditions.append("workflow_key = ?")
            params.append(workflow_key)

        if kind:
            conditions.append("kind = ?")
            params.append(parse_kind(kind).value)

        if q:
            clause, clause_params = search_clause(["title", "body"], q)
            conditions.append(clause)
            params.extend(clause_params)

        if current_only:
            conditions.append("superseded_by_id IS NULL")

        where_sql = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        cursor = await db.execute(
            f"SELECT COUNT(*) as count FROM library_items {where_sql}", params
        )
        row = await cursor.fetchone()
        total = row["count"] if row else 0

        cursor = await db.execute(
            f"""
            SELECT {ITEM_COLUMNS} FROM library_items {where_sql}
            ORDER BY created_at DESC
            LIMIT ? OFFSET ?
            """,
            params + [limit, skip],
        )
        rows = await cursor.fetchall()
        return [row_to_item(r) for r in rows], total

    async def head(self, item_id: str) -> LibraryItem:
        """Current version of the chain containing ``item_id`` (head index lookup)."""
        db = await get_db()
        cursor = await db.execute(
            f"""
            SELECT {", ".join("h." + c.strip() for c in ITEM_COLUMNS.split(","))}
            FROM library_items i
            JOIN library_chains c ON c.chain_id = i.chain_id
            JOIN library_items h ON h.id = c.head_id
            WHERE i.id = ?
            """,
            (item_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(f"Library item {item_id} not found")
        return row_to_item(row)

    async def walk_to_head(self, item_id: str) -> LibraryItem:
        """Find the current version by following ``superseded_by_id`` forward."""
        item = await self.get(item_id)
        seen = {item.id}
        while item.superseded_by_id is not None:
            item = await self.get(item.superseded_by_id)
            if item.id in seen:
                raise StoreError(f"Supersede cycle detected at {item.id}")
            seen.add(item.id)
        return item

    async def history(self, item_id: str) -> tuple[str, str, list[LibraryItem]]:
        """Every version of the chain containing ``item_id``, oldest first.

        Returns (chain_id, head_id, versions).
        """
        item = await self.get(item_id)
        db = await get_db()
        cursor = await db.execute(
            f"""
            SELECT {ITEM_COLUMNS} FROM library_items
            WHERE chain_id = ?
            ORDER BY version
            """,
            (item.chain_id,),
        )
        rows = await cursor.fetchall()
        cursor = await db.execute(
            "SELECT head_id FROM library_chains WHERE chain_id = ?", (item.chain_id,)
        )
        chain = await cursor.fetchone()
        return item.chain_id, chain["head_id"], [row_to_item(r) for r in rows]

    async def count_by_workflow_key(self, current_only: bool = False) -> list[tuple[str, int]]:
        """Item counts per workflow key, sorted by key."""
        db = await get_db()
        where_sql = "WHERE superseded_by_id IS NULL" if current_only else ""
        cursor = await db.execute(
            f"""
            SELECT workflow_key, COUNT(*) as count
            FROM library_items {where_sql}
            GROUP BY workflow_key
            ORDER BY workflow_key
            """
        )
        rows = await cursor.fetchall()
        return [(row["workflow_key"], row["count"]) for row in rows]


# Global instance
library_store = LibraryStore()
