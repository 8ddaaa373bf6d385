"""Storage for content items and their status audit log.

This module defines the storage protocols the status services depend on,
and implements them for PostgreSQL using asyncpg:

- ItemStore: read-side queries plus transaction scoping
- StoreTransaction: the writes allowed inside one transaction
- PostgresItemStore: asyncpg implementation with connection pooling

Within a transaction the current stage is read with SELECT ... FOR UPDATE,
so concurrent transitions on the same item are serialized: the second
caller blocks until the first commits and then validates against the
committed stage.

The repository expects the schema from migrations/001_content_status.sql.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Collection,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Tuple,
    runtime_checkable,
)

import asyncpg

from src.content_pipeline.status.models import AuditEntry, Item, Stage
from src.content_pipeline.status.normalizer import normalize


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage operation fails.

    A failed transaction never leaves a partial mutation behind, so the
    operation that raised this may be retried.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


@runtime_checkable
class StoreTransaction(Protocol):
    """Writes available inside one storage transaction."""

    async def lock_item_stage(self, item_id: str) -> Optional[str]:
        """Read an item's raw stage, holding it until the transaction ends.

        Returns:
            The stored stage value, or None if the item does not exist.
        """
        ...

    async def update_stage(
        self,
        item_id: str,
        stage: Stage,
        updated_at: datetime,
    ) -> None:
        """Set an item's stage and last-updated time.

        Raises:
            StorageError: If no row was updated or the write fails.
        """
        ...

    async def insert_audit_entry(self, entry: AuditEntry) -> None:
        """Append an audit entry."""
        ...


@runtime_checkable
class ItemStore(Protocol):
    """Protocol defining the storage the status services depend on."""

    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """Open a transaction. Commits on normal exit, rolls back on error."""
        ...

    async def create_item(self, item: Item) -> None:
        """Insert a new item. Used by ingestion, not by status services."""
        ...

    async def get_item(self, item_id: str) -> Optional[Item]:
        ...

    async def get_stage(self, item_id: str) -> Optional[str]:
        """Read an item's raw stage without locking."""
        ...

    async def list_audit_entries(self, item_id: str, limit: int) -> List[AuditEntry]:
        """Audit entries for an item, newest first."""
        ...

    async def list_items_by_stage(
        self,
        raw_values: Collection[str],
        offset: int,
        limit: int,
    ) -> Tuple[List[Item], int]:
        """Items whose stored stage is one of raw_values, and their total.

        Ordered by updated_at descending, then id.
        """
        ...

    async def count_by_stage(self) -> Dict[str, int]:
        """Item counts grouped by raw stored stage value."""
        ...

    async def list_items_updated_before(
        self,
        raw_values: Collection[str],
        cutoff: datetime,
    ) -> List[Item]:
        """Items in raw_values last updated before cutoff, oldest first."""
        ...

    async def find_existing_ids(self, item_ids: Collection[str]) -> Set[str]:
        ...

    async def health_check(self) -> bool:
        ...


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _rows_affected(command_status: str) -> int:
    """Parse the row count from an asyncpg command status like 'UPDATE 1'."""
    try:
        return int(command_status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _item_from_row(row: Any) -> Item:
    return Item(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        stage=normalize(row["stage"]),
        created_at=_aware(row["created_at"]),
        updated_at=_aware(row["updated_at"]),
    )


def _audit_entry_from_row(row: Any) -> AuditEntry:
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return AuditEntry(
        id=row["id"],
        item_id=row["item_id"],
        old_stage=normalize(row["old_stage"]),
        new_stage=normalize(row["new_stage"]),
        trigger_event=row["trigger_event"],
        metadata=metadata or {},
        created_at=_aware(row["created_at"]),
        created_by=row["created_by"],
    )


_ITEM_COLUMNS = "id, title, content, stage, created_at, updated_at"


class PostgresTransaction:
    """StoreTransaction bound to one asyncpg connection in a transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def lock_item_stage(self, item_id: str) -> Optional[str]:
        return await self._conn.fetchval(
            """
            SELECT stage
            FROM content_items
            WHERE id = $1
            FOR UPDATE
            """,
            item_id,
        )

    async def update_stage(
        self,
        item_id: str,
        stage: Stage,
        updated_at: datetime,
    ) -> None:
        result = await self._conn.execute(
            """
            UPDATE content_items
            SET stage = $2, updated_at = $3
            WHERE id = $1
            """,
            item_id,
            stage.value,
            updated_at,
        )
        if _rows_affected(result) == 0:
            raise StorageError(
                f"Failed to update item {item_id}: no rows affected"
            )

    async def insert_audit_entry(self, entry: AuditEntry) -> None:
        await self._conn.execute(
            """
            INSERT INTO status_audit_log (
                id,
                item_id,
                old_stage,
                new_stage,
                trigger_event,
                metadata,
                created_at,
                created_by
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            entry.id,
            entry.item_id,
            entry.old_stage.value,
            entry.new_stage.value,
            entry.trigger_event,
            json.dumps(entry.metadata) if entry.metadata else None,
            entry.created_at,
            entry.created_by,
        )


class PostgresItemStore:
    """PostgreSQL implementation of the ItemStore protocol.

    Attributes:
        connection_string: PostgreSQL connection URL.
        min_pool_size: Minimum connections in pool.
        max_pool_size: Maximum connections in pool.

    Example:
        >>> async with PostgresItemStore("postgresql://...") as store:
        ...     async with store.transaction() as tx:
        ...         stage = await tx.lock_item_stage("item-1")
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool.

        Raises:
            StorageError: If the pool is not initialized.
        """
        if self._pool is None:
            raise StorageError(
                "Database pool not initialized. Call connect() first."
            )
        return self._pool

    async def connect(self) -> None:
        """Initialize the connection pool.

        Raises:
            StorageError: If connection fails.
        """
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            logger.info(
                "Connecting to PostgreSQL",
                extra={
                    "min_pool_size": self.min_pool_size,
                    "max_pool_size": self.max_pool_size,
                },
            )
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
            logger.info("PostgreSQL connection pool established")
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(
                "Failed to connect to PostgreSQL",
                extra={"error": str(e)},
            )
            raise StorageError(
                f"Failed to connect to PostgreSQL: {e}",
                original_error=e,
            ) from e

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info("Closing PostgreSQL connection pool")
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "PostgresItemStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        """Open a transaction for atomic stage changes.

        Any exception raised in the body rolls the transaction back and is
        re-raised. Database errors are wrapped in StorageError.

        Yields:
            A PostgresTransaction bound to the open transaction.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgresTransaction(conn)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(
                "Status transaction failed",
                extra={"error": str(e)},
            )
            raise StorageError(
                f"Status transaction failed: {e}",
                original_error=e,
            ) from e

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(
                "Status query failed",
                extra={"error": str(e)},
            )
            raise StorageError(
                f"Status query failed: {e}",
                original_error=e,
            ) from e

    async def create_item(self, item: Item) -> None:
        """Insert a new item.

        Raises:
            StorageError: If the item already exists or the insert fails.
        """
        try:
            async with self._read() as conn:
                await conn.execute(
                    """
                    INSERT INTO content_items (
                        id, title, content, stage, created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    item.id,
                    item.title,
                    item.content,
                    item.stage.value,
                    item.created_at,
                    item.updated_at,
                )
        except StorageError as e:
            if isinstance(e.original_error, asyncpg.UniqueViolationError):
                raise StorageError(
                    f"Item already exists: {item.id}",
                    original_error=e.original_error,
                ) from e
            raise

    async def get_item(self, item_id: str) -> Optional[Item]:
        async with self._read() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ITEM_COLUMNS} FROM content_items WHERE id = $1",
                item_id,
            )
        return _item_from_row(row) if row is not None else None

    async def get_stage(self, item_id: str) -> Optional[str]:
        async with self._read() as conn:
            return await conn.fetchval(
                "SELECT stage FROM content_items WHERE id = $1",
                item_id,
            )

    async def list_audit_entries(self, item_id: str, limit: int) -> List[AuditEntry]:
        async with self._read() as conn:
            rows = await conn.fetch(
                """
                SELECT
                    id,
                    item_id,
                    old_stage,
                    new_stage,
                    trigger_event,
                    metadata,
                    created_at,
                    created_by
                FROM status_audit_log
                WHERE item_id = $1
                ORDER BY created_at DESC, seq DESC
                LIMIT $2
                """,
                item_id,
                limit,
            )
        return [_audit_entry_from_row(row) for row in rows]

    async def list_items_by_stage(
        self,
        raw_values: Collection[str],
        offset: int,
        limit: int,
    ) -> Tuple[List[Item], int]:
        values = list(raw_values)
        async with self._read() as conn:
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM content_items WHERE stage = ANY($1::text[])",
                values,
            )
            rows = await conn.fetch(
                f"""
                SELECT {_ITEM_COLUMNS}
                FROM content_items
                WHERE stage = ANY($1::text[])
                ORDER BY updated_at DESC, id ASC
                LIMIT $2 OFFSET $3
                """,
                values,
                limit,
                offset,
            )
        return [_item_from_row(row) for row in rows], int(total or 0)

    async def count_by_stage(self) -> Dict[str, int]:
        async with self._read() as conn:
            rows = await conn.fetch(
                "SELECT stage, COUNT(*) AS count FROM content_items GROUP BY stage"
            )
        return {row["stage"]: int(row["count"]) for row in rows}

    async def list_items_updated_before(
        self,
        raw_values: Collection[str],
        cutoff: datetime,
    ) -> List[Item]:
        async with self._read() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_ITEM_COLUMNS}
                FROM content_items
                WHERE stage = ANY($1::text[])
                AND updated_at < $2
                ORDER BY updated_at ASC, id ASC
                """,
                list(raw_values),
                cutoff,
            )
        return [_item_from_row(row) for row in rows]

    async def find_existing_ids(self, item_ids: Collection[str]) -> Set[str]:
        if not item_ids:
            return set()
        async with self._read() as conn:
            rows = await conn.fetch(
                "SELECT id FROM content_items WHERE id = ANY($1::text[])",
                list(item_ids),
            )
        return {row["id"] for row in rows}

    async def health_check(self) -> bool:
        """Check if the database connection is healthy."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.warning(
                "Database health check failed",
                extra={"error": str(e)},
            )
            return False
