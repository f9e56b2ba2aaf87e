"""
Owner-scoped semantic memory cache.

Memories are partitioned into one table per domain (``<prefix>_<domain slug>``) and every
read is filtered by owner, so a query can never surface another owner's records. Writes
propagate storage failures; reads degrade to empty results.
"""

import asyncio
import functools
import re
import time
import uuid
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..api.schemas import OperationResult, RetrieveRequest, StoreMemoryRequest, parse_request
from ..core import config
from ..core.errors import StorageUnavailable, ValidationError, require_text
from ..core.maintenance import MaintenanceReport, cleanup_memories
from ..core.schema import MemoryRecord, MemorySearchResult, MemoryStats, MemoryType, UserPreference
from ..util.logging import audit_event, logger
from ..vector.embeddings import EmbeddingService
from ..vector.index import ITableStore
from ..vector.types import VectorRecord


def generate_memory_id() -> str:
    return f"mem_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class MemoryCache:
    """Store, retrieve and forget memories for (owner, domain) pairs."""

    def __init__(self, table_store: ITableStore, embeddings: EmbeddingService,
                 table_prefix: str = None, retention_days: int = None,
                 max_memories: int = None, default_min_similarity: float = None):
        self.table_store = table_store
        self.embeddings = embeddings
        self.table_prefix = table_prefix or config.MEMORY_TABLE_PREFIX
        self.retention_days = retention_days or config.MEMORY_RETENTION_DAYS
        self.max_memories = max_memories or config.MAX_MEMORIES_PER_OWNER
        self.default_min_similarity = (
            config.DEFAULT_MIN_SIMILARITY if default_min_similarity is None else default_min_similarity
        )
        self._cleanups: Dict[Tuple[str, str], asyncio.Task] = {}
        self._cleanup_requested: Set[Tuple[str, str]] = set()

    def table_for(self, domain_id: str) -> str:
        """Physical table for a domain."""
        slug = re.sub(r"[^a-z0-9]+", "_", domain_id.lower()).strip("_")
        return f"{self.table_prefix}_{slug}" if slug else self.table_prefix

    async def memory_tables(self) -> List[str]:
        tables = await self.table_store.list_tables(prefix=self.table_prefix)
        return [t for t in tables if t == self.table_prefix or t.startswith(self.table_prefix + "_")]

    async def initialize(self) -> Dict[str, int]:
        """Report existing memory tables and their row counts."""
        counts = {}
        for table in await self.memory_tables():
            counts[table] = await self.table_store.count_rows(table)

        logger.log_operation("memory.initialize", "success", {
            "tables": len(counts),
            "rows": sum(counts.values())
        })
        return counts

    async def store(self, owner_id: str, domain_id: str, content: str, memory_type,
                    importance: int = 5, metadata: dict = None) -> str:
        """
        Embed and persist one memory.

        Returns:
            The new memory id.

        Raises:
            ValidationError: empty content/scope, unknown type, importance outside 1-10
            StorageUnavailable: the table store could not take the write
        """
        request = parse_request(
            StoreMemoryRequest,
            owner_id=owner_id,
            domain_id=domain_id,
            content=content,
            memory_type=memory_type,
            importance=importance,
            metadata=metadata if metadata is not None else {}
        )

        vector = await self.embeddings.embed(request.content)
        now = time.time()
        record = MemoryRecord(
            id=generate_memory_id(),
            owner_id=request.owner_id,
            domain_id=request.domain_id,
            content=request.content,
            memory_type=request.memory_type,
            importance=request.importance,
            metadata=request.metadata,
            created_at=now,
            last_accessed_at=now,
            access_count=0
        )

        table = self.table_for(request.domain_id)
        await self.table_store.upsert_many(table, [VectorRecord(record.id, vector, record.to_fields())])

        logger.log_memory_operation("store", record.id, {
            "owner_id": record.owner_id,
            "table": table,
            "memory_type": record.memory_type.value,
            "content": record.content
        })

        self._schedule_cleanup(record.owner_id, record.domain_id)
        return record.id

    async def retrieve(self, owner_id: str, domain_id: str, query: str, limit: int = 5,
                       memory_types: Optional[Sequence] = None,
                       min_similarity: float = None) -> List[MemorySearchResult]:
        """
        Rank the owner's memories in a domain by similarity to ``query``.

        Over-fetches ``2 * limit`` candidates, then keeps rows that belong to the owner,
        have an allowed type and reach ``min_similarity``.
        """
        request = parse_request(
            RetrieveRequest,
            owner_id=owner_id,
            domain_id=domain_id,
            query=query,
            limit=limit,
            memory_types=list(memory_types) if memory_types else None,
            min_similarity=self.default_min_similarity if min_similarity is None else min_similarity
        )

        vector = await self.embeddings.embed(request.query)
        table = self.table_for(request.domain_id)

        try:
            hits = await self.table_store.similarity_search(
                table, vector, k=request.limit * 2,
                filter={"owner_id": request.owner_id, "domain_id": request.domain_id}
            )
        except StorageUnavailable as e:
            logger.log_memory_operation("retrieve", "-", {"table": table, "error": str(e)}, status="failed")
            return []

        allowed = {t.value for t in request.memory_types} if request.memory_types else None

        results = []
        for hit in hits:
            if hit.fields.get("owner_id") != request.owner_id:
                continue
            if allowed is not None and hit.fields.get("memory_type") not in allowed:
                continue
            if hit.similarity < request.min_similarity:
                continue
            results.append(MemorySearchResult(
                memory=MemoryRecord.from_fields(hit.id, hit.fields, hit.vector),
                similarity=hit.similarity
            ))
            if len(results) >= request.limit:
                break

        await self._record_access(table, results)

        logger.log_memory_operation("retrieve", "-", {
            "owner_id": request.owner_id,
            "table": table,
            "candidates": len(hits),
            "returned": len(results)
        })
        return results

    async def _record_access(self, table: str, results: List[MemorySearchResult]) -> None:
        now = time.time()
        for result in results:
            memory = result.memory
            try:
                await self.table_store.update_where(
                    table,
                    {"id": memory.id, "owner_id": memory.owner_id},
                    {"access_count": memory.access_count + 1, "last_accessed_at": now}
                )
            except StorageUnavailable as e:
                logger.log_memory_operation("access_update", memory.id, {"error": str(e)}, status="failed")
                continue
            memory.access_count += 1
            memory.last_accessed_at = now

    async def get_recent(self, owner_id: str, domain_id: str, limit: int = 10) -> List[MemoryRecord]:
        """Newest conversation memories first."""
        require_text(owner_id, "owner_id")
        table = self.table_for(domain_id)
        try:
            rows = await self.table_store.scan(table, {
                "owner_id": owner_id,
                "domain_id": domain_id,
                "memory_type": MemoryType.CONVERSATION.value
            })
        except StorageUnavailable as e:
            logger.log_memory_operation("get_recent", "-", {"table": table, "error": str(e)}, status="failed")
            return []

        records = [MemoryRecord.from_fields(r.id, r.fields, r.vector) for r in rows]
        records.sort(key=lambda m: m.created_at, reverse=True)
        return records[:limit]

    async def get_preferences(self, owner_id: str, domain_id: str) -> List[UserPreference]:
        """Preference memories as key/value rows, newest first."""
        require_text(owner_id, "owner_id")
        table = self.table_for(domain_id)
        try:
            rows = await self.table_store.scan(table, {
                "owner_id": owner_id,
                "domain_id": domain_id,
                "memory_type": MemoryType.PREFERENCE.value
            })
        except StorageUnavailable as e:
            logger.log_memory_operation("get_preferences", "-", {"table": table, "error": str(e)}, status="failed")
            return []

        preferences = []
        for row in rows:
            memory = MemoryRecord.from_fields(row.id, row.fields, row.vector)
            preferences.append(UserPreference(
                id=memory.id,
                owner_id=memory.owner_id,
                preference_key=memory.metadata.get("preference_key", "unknown"),
                preference_value=str(memory.metadata.get("preference_value", "")),
                confidence=float(memory.metadata.get("confidence", 0.5)),
                extracted_from=memory.content,
                updated_at=memory.created_at
            ))

        preferences.sort(key=lambda p: p.updated_at, reverse=True)
        return preferences

    async def get_stats(self, owner_id: str, domain_id: str = None) -> MemoryStats:
        """Totals per memory type across every memory table (or one domain's table)."""
        require_text(owner_id, "owner_id")
        stats = MemoryStats.empty()
        try:
            tables = [self.table_for(domain_id)] if domain_id else await self.memory_tables()
            for table in tables:
                for row in await self.table_store.scan(table, {"owner_id": owner_id, "domain_id": domain_id}):
                    memory_type = row.fields.get("memory_type")
                    created_at = float(row.fields.get("created_at", 0.0))

                    stats.total_memories += 1
                    stats.by_type[memory_type] = stats.by_type.get(memory_type, 0) + 1
                    if stats.oldest_timestamp is None or created_at < stats.oldest_timestamp:
                        stats.oldest_timestamp = created_at
                    if stats.newest_timestamp is None or created_at > stats.newest_timestamp:
                        stats.newest_timestamp = created_at
        except StorageUnavailable as e:
            logger.log_memory_operation("get_stats", "-", {"owner_id": owner_id, "error": str(e)}, status="failed")
            return MemoryStats.empty()

        return stats

    async def forget(self, memory_id: str, owner_id: str = None) -> OperationResult:
        """
        Permanently delete one memory from every memory table.

        Deleting an id that no longer exists is a successful no-op. When ``owner_id`` is
        given only that owner's row can be removed.
        """
        if not memory_id or not memory_id.strip():
            raise ValidationError("memory_id cannot be empty", field="memory_id")

        deleted = 0
        try:
            for table in await self.memory_tables():
                deleted += await self.table_store.delete_where(table, {"id": memory_id, "owner_id": owner_id})
        except StorageUnavailable as e:
            logger.log_memory_operation("forget", memory_id, {"error": str(e)}, status="failed")
            return OperationResult(success=False, deleted=deleted, error=str(e))

        audit_event("memory.forget", {"memory_id": memory_id, "owner_id": owner_id, "deleted": deleted})
        return OperationResult(success=True, deleted=deleted)

    async def forget_all(self, owner_id: str) -> OperationResult:
        """Delete every memory the owner has in any domain; any storage error fails the whole call."""
        require_text(owner_id, "owner_id")

        deleted = 0
        try:
            for table in await self.memory_tables():
                deleted += await self.table_store.delete_where(table, {"owner_id": owner_id})
        except StorageUnavailable as e:
            logger.log_memory_operation("forget_all", "-", {
                "owner_id": owner_id,
                "deleted_before_failure": deleted,
                "error": str(e)
            }, status="failed")
            return OperationResult(success=False, deleted=deleted, error=str(e))

        audit_event("memory.forget_all", {"owner_id": owner_id, "deleted": deleted})
        return OperationResult(success=True, deleted=deleted)

    async def clear_all(self) -> OperationResult:
        """Drop every memory table. Irreversible."""
        dropped = 0
        try:
            for table in await self.memory_tables():
                if await self.table_store.drop_table(table):
                    dropped += 1
        except StorageUnavailable as e:
            return OperationResult(success=False, deleted=dropped, error=str(e))

        audit_event("memory.clear_all", {"tables_dropped": dropped})
        return OperationResult(success=True, deleted=dropped)

    async def run_cleanup(self, owner_id: str, domain_id: str, now: float = None) -> MaintenanceReport:
        """Apply retention and volume limits to one owner's memories in one domain."""
        require_text(owner_id, "owner_id")
        return await cleanup_memories(
            self.table_store,
            self.table_for(domain_id),
            owner_id,
            retention_days=self.retention_days,
            max_memories=self.max_memories,
            now=now
        )

    def _schedule_cleanup(self, owner_id: str, domain_id: str) -> None:
        # One task per (owner, table); writes landing mid-pass request another pass
        key = (owner_id, self.table_for(domain_id))
        self._cleanup_requested.add(key)

        pending = self._cleanups.get(key)
        if pending is not None and not pending.done():
            return

        task = asyncio.create_task(self._cleanup_quietly(key, owner_id, domain_id))
        self._cleanups[key] = task
        task.add_done_callback(functools.partial(self._cleanup_finished, key))

    def _cleanup_finished(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._cleanups.get(key) is task:
            del self._cleanups[key]

    async def _cleanup_quietly(self, key: Tuple[str, str], owner_id: str, domain_id: str) -> None:
        while key in self._cleanup_requested:
            self._cleanup_requested.discard(key)
            # Maintenance must never fail the write that triggered it
            try:
                await self.run_cleanup(owner_id, domain_id)
            except Exception as e:
                logger.log_memory_operation("cleanup", "-", {"owner_id": owner_id, "error": str(e)}, status="failed")

    async def wait_for_maintenance(self) -> None:
        """Await any cleanup passes scheduled by earlier writes."""
        pending = [t for t in self._cleanups.values() if not t.done()]
        while pending:
            await asyncio.gather(*pending)
            pending = [t for t in self._cleanups.values() if not t.done()]
