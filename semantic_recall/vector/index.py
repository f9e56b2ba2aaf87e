"""
Table store contract and the in-memory implementation.

A table is a named, lazily created collection of ``VectorRecord`` rows. Reads against a
missing table are empty; writes create it. Filters are AND-combined equality checks on
row fields (and ``id``); entries whose value is ``None`` do not count as conditions.
"""

from abc import ABC, abstractmethod
import copy
import re
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from ..core.errors import ValidationError
from ..util.logging import logger
from .types import VectorRecord, QueryResult

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_table_name(table: str) -> str:
    """Reject names that are not safe identifiers."""
    if not isinstance(table, str) or not TABLE_NAME_PATTERN.match(table):
        raise ValidationError(f"Invalid table name: {table!r}", field="table")
    return table


def effective_filter(filter: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop ``None``-valued entries; what remains are the real conditions."""
    if not filter:
        return {}
    return {key: value for key, value in filter.items() if value is not None}


def matches_filter(record_id: str, fields: Dict[str, Any], conditions: Dict[str, Any]) -> bool:
    for key, expected in conditions.items():
        actual = record_id if key == "id" else fields.get(key)
        if actual != expected:
            return False
    return True


def cosine_distance(query: np.ndarray, vector: Iterable[float]) -> float:
    """Cosine distance in [0, 2]; zero vectors and length mismatches are distance 1."""
    stored = np.asarray(vector, dtype=np.float64)
    if stored.shape != query.shape:
        return 1.0

    query_norm = np.linalg.norm(query)
    stored_norm = np.linalg.norm(stored)
    if query_norm == 0 or stored_norm == 0:
        return 1.0

    return float(1.0 - np.dot(query, stored) / (query_norm * stored_norm))


def to_similarity(distance: float) -> float:
    return max(0.0, 1.0 - distance)


def rank_records(records: Iterable[VectorRecord], query_vector: List[float], k: int,
                 filter: Optional[Dict[str, Any]] = None) -> List[QueryResult]:
    """Brute-force nearest neighbours over already-loaded rows, closest first."""
    if k <= 0:
        return []

    conditions = effective_filter(filter)
    query = np.asarray(query_vector, dtype=np.float64)

    results = []
    for record in records:
        if not matches_filter(record.id, record.fields, conditions):
            continue
        distance = cosine_distance(query, record.vector)
        results.append(QueryResult(
            id=record.id,
            fields=copy.deepcopy(record.fields),
            distance=distance,
            similarity=to_similarity(distance),
            vector=list(record.vector)
        ))

    # Stable sort: equal distances keep insertion order
    results.sort(key=lambda r: r.distance)
    return results[:k]


class ITableStore(ABC):
    """Abstract interface for named vector tables."""

    @abstractmethod
    async def ensure_table(self, table: str) -> None:
        """Create the table if it does not exist; idempotent."""
        pass

    @abstractmethod
    async def table_exists(self, table: str) -> bool:
        pass

    @abstractmethod
    async def list_tables(self, prefix: Optional[str] = None) -> List[str]:
        """Existing table names, optionally restricted to a name prefix."""
        pass

    @abstractmethod
    async def upsert_many(self, table: str, records: List[VectorRecord]) -> int:
        """Append records, creating the table on first write. Duplicate ids become separate rows."""
        pass

    @abstractmethod
    async def similarity_search(self, table: str, query_vector: List[float], k: int = 5,
                                filter: Optional[Dict[str, Any]] = None) -> List[QueryResult]:
        """Up to ``k`` rows nearest to ``query_vector`` by cosine distance."""
        pass

    @abstractmethod
    async def scan(self, table: str, filter: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[VectorRecord]:
        """Rows matching ``filter`` in insertion order."""
        pass

    @abstractmethod
    async def update_where(self, table: str, filter: Dict[str, Any], changes: Dict[str, Any]) -> int:
        """Merge ``changes`` into the fields of matching rows. Refuses an empty filter."""
        pass

    @abstractmethod
    async def delete_where(self, table: str, filter: Dict[str, Any]) -> int:
        """Delete matching rows and return how many went. Refuses an empty filter (returns 0)."""
        pass

    @abstractmethod
    async def drop_table(self, table: str) -> bool:
        """Irreversibly remove the table. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def count_rows(self, table: str, filter: Optional[Dict[str, Any]] = None) -> int:
        pass


def refuse_unfiltered(table: str, operation: str, conditions: Dict[str, Any]) -> bool:
    """Log and return True when a destructive call has no effective conditions."""
    if conditions:
        return False
    logger.log_store_event(table, operation, {"reason": "empty filter", "affected": 0}, status="refused")
    return True


class InMemoryTableStore(ITableStore):
    """Process-local table store backed by lists of rows; used for tests and ephemeral runs."""

    def __init__(self):
        self._tables: Dict[str, List[VectorRecord]] = {}

    async def ensure_table(self, table: str) -> None:
        validate_table_name(table)
        if table not in self._tables:
            self._tables[table] = []
            logger.log_store_event(table, "create_table")

    async def table_exists(self, table: str) -> bool:
        validate_table_name(table)
        return table in self._tables

    async def list_tables(self, prefix: Optional[str] = None) -> List[str]:
        return sorted(name for name in self._tables if prefix is None or name.startswith(prefix))

    async def upsert_many(self, table: str, records: List[VectorRecord]) -> int:
        await self.ensure_table(table)
        for record in records:
            self._tables[table].append(VectorRecord(
                id=record.id,
                vector=[float(x) for x in record.vector],
                fields=copy.deepcopy(record.fields)
            ))
        return len(records)

    async def similarity_search(self, table: str, query_vector: List[float], k: int = 5,
                                filter: Optional[Dict[str, Any]] = None) -> List[QueryResult]:
        validate_table_name(table)
        return rank_records(self._tables.get(table, []), query_vector, k, filter)

    async def scan(self, table: str, filter: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[VectorRecord]:
        validate_table_name(table)
        conditions = effective_filter(filter)
        rows = []
        for record in self._tables.get(table, []):
            if matches_filter(record.id, record.fields, conditions):
                rows.append(VectorRecord(record.id, list(record.vector), copy.deepcopy(record.fields)))
                if limit is not None and len(rows) >= limit:
                    break
        return rows

    async def update_where(self, table: str, filter: Dict[str, Any], changes: Dict[str, Any]) -> int:
        validate_table_name(table)
        conditions = effective_filter(filter)
        if refuse_unfiltered(table, "update_where", conditions):
            return 0

        updated = 0
        for record in self._tables.get(table, []):
            if matches_filter(record.id, record.fields, conditions):
                record.fields.update(copy.deepcopy(changes))
                updated += 1
        return updated

    async def delete_where(self, table: str, filter: Dict[str, Any]) -> int:
        validate_table_name(table)
        conditions = effective_filter(filter)
        if refuse_unfiltered(table, "delete_where", conditions):
            return 0

        rows = self._tables.get(table)
        if not rows:
            return 0

        kept = [r for r in rows if not matches_filter(r.id, r.fields, conditions)]
        deleted = len(rows) - len(kept)
        self._tables[table] = kept
        if deleted:
            logger.log_store_event(table, "delete_where", {"deleted": deleted})
        return deleted

    async def drop_table(self, table: str) -> bool:
        validate_table_name(table)
        if self._tables.pop(table, None) is None:
            return False
        logger.log_store_event(table, "drop_table")
        return True

    async def count_rows(self, table: str, filter: Optional[Dict[str, Any]] = None) -> int:
        validate_table_name(table)
        conditions = effective_filter(filter)
        return sum(1 for r in self._tables.get(table, []) if matches_filter(r.id, r.fields, conditions))
