"""In-memory item store.

Implements the ItemStore protocol without a database, for local
development and tests. Transactions are serialized with an asyncio.Lock
(one per event loop the store is used from) and write to a working copy
that replaces the committed state only when the transaction body finishes
without raising, so readers never observe a half-applied transaction.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Collection, Dict, List, Optional, Set, Tuple

from src.content_pipeline.status.models import AuditEntry, Item, Stage
from src.content_pipeline.status.normalizer import normalize
from src.content_pipeline.status.repository import StorageError


class _StoredItem:
    __slots__ = ("id", "title", "content", "stage", "created_at", "updated_at")

    def __init__(
        self,
        id: str,
        title: str,
        content: str,
        stage: str,
        created_at: datetime,
        updated_at: datetime,
    ):
        self.id = id
        self.title = title
        self.content = content
        self.stage = stage
        self.created_at = created_at
        self.updated_at = updated_at

    def copy(self) -> "_StoredItem":
        return _StoredItem(
            self.id,
            self.title,
            self.content,
            self.stage,
            self.created_at,
            self.updated_at,
        )

    def to_item(self) -> Item:
        return Item(
            id=self.id,
            title=self.title,
            content=self.content,
            stage=normalize(self.stage),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class InMemoryTransaction:
    """StoreTransaction over a private working copy of the store."""

    def __init__(self, items: Dict[str, _StoredItem]):
        self._items = items
        self._touched: Dict[str, _StoredItem] = {}
        self._audit: List[AuditEntry] = []

    def _working(self, item_id: str) -> Optional[_StoredItem]:
        if item_id in self._touched:
            return self._touched[item_id]
        return self._items.get(item_id)

    async def lock_item_stage(self, item_id: str) -> Optional[str]:
        stored = self._working(item_id)
        return stored.stage if stored is not None else None

    async def update_stage(
        self,
        item_id: str,
        stage: Stage,
        updated_at: datetime,
    ) -> None:
        stored = self._working(item_id)
        if stored is None:
            raise StorageError(
                f"Failed to update item {item_id}: no rows affected"
            )
        updated = stored.copy()
        updated.stage = stage.value
        updated.updated_at = updated_at
        self._touched[item_id] = updated

    async def insert_audit_entry(self, entry: AuditEntry) -> None:
        self._audit.append(entry)


class InMemoryItemStore:
    """ItemStore backed by dictionaries.

    Raw stage strings are stored as given, so legacy aliases written by
    create_item or seed_raw behave exactly like legacy database rows.
    """

    def __init__(self) -> None:
        self._items: Dict[str, _StoredItem] = {}
        self._audit: Dict[str, List[AuditEntry]] = {}
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _transaction_lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the first loop that waits on it
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        async with self._transaction_lock():
            tx = InMemoryTransaction(self._items)
            yield tx
            # Commit: only reached when the body did not raise
            for item_id, stored in tx._touched.items():
                self._items[item_id] = stored
            for entry in tx._audit:
                self._audit.setdefault(entry.item_id, []).append(entry)

    async def create_item(self, item: Item) -> None:
        await self.seed_raw(
            item.id,
            item.stage.value,
            title=item.title,
            content=item.content,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    async def seed_raw(
        self,
        item_id: str,
        raw_stage: str,
        title: str = "",
        content: str = "",
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        """Insert an item with an arbitrary raw stage value.

        Raises:
            StorageError: If the item already exists.
        """
        if item_id in self._items:
            raise StorageError(f"Item already exists: {item_id}")
        now = datetime.now(timezone.utc)
        self._items[item_id] = _StoredItem(
            item_id,
            title,
            content,
            raw_stage,
            created_at or now,
            updated_at or created_at or now,
        )

    async def get_item(self, item_id: str) -> Optional[Item]:
        stored = self._items.get(item_id)
        return stored.to_item() if stored is not None else None

    async def get_stage(self, item_id: str) -> Optional[str]:
        stored = self._items.get(item_id)
        return stored.stage if stored is not None else None

    async def list_audit_entries(self, item_id: str, limit: int) -> List[AuditEntry]:
        # Entries are appended in commit order; reverse for newest first
        entries = self._audit.get(item_id, [])
        ordered = sorted(
            enumerate(entries),
            key=lambda pair: (pair[1].created_at, pair[0]),
            reverse=True,
        )
        return [entry for _, entry in ordered[:limit]]

    async def list_items_by_stage(
        self,
        raw_values: Collection[str],
        offset: int,
        limit: int,
    ) -> Tuple[List[Item], int]:
        values = set(raw_values)
        matching = [s for s in self._items.values() if s.stage in values]
        matching.sort(key=lambda s: s.id)
        matching.sort(key=lambda s: s.updated_at, reverse=True)
        page = matching[offset:offset + limit]
        return [s.to_item() for s in page], len(matching)

    async def count_by_stage(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for stored in self._items.values():
            counts[stored.stage] = counts.get(stored.stage, 0) + 1
        return counts

    async def list_items_updated_before(
        self,
        raw_values: Collection[str],
        cutoff: datetime,
    ) -> List[Item]:
        values = set(raw_values)
        matching = [
            s for s in self._items.values()
            if s.stage in values and s.updated_at < cutoff
        ]
        matching.sort(key=lambda s: (s.updated_at, s.id))
        return [s.to_item() for s in matching]

    async def find_existing_ids(self, item_ids: Collection[str]) -> Set[str]:
        return {item_id for item_id in item_ids if item_id in self._items}

    async def health_check(self) -> bool:
        return True
