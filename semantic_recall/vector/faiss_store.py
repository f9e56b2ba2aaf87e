"""
FAISS-backed table store.

Each table keeps its rows in insertion order next to a flat inner-product index over the
L2-normalised vectors, so the inner product is the cosine similarity. FAISS has no cheap
point deletes; deleting rows rebuilds the table's index from the remaining vectors.
"""

import copy
from typing import Any, Dict, List, Optional

import numpy as np

from ..util.logging import logger
from .index import (
    ITableStore, effective_filter, matches_filter, refuse_unfiltered,
    to_similarity, validate_table_name
)
from .types import VectorRecord, QueryResult


class _FaissTable:
    """Rows of one table plus the index whose positions line up with them."""

    def __init__(self, faiss, dimension: int):
        self.faiss = faiss
        self.dimension = dimension
        self.rows: List[VectorRecord] = []
        self.index = faiss.IndexFlatIP(dimension)

    def normalise(self, vector: List[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.shape != (self.dimension,):
            # Mismatched rows stay stored but can never be similar to anything
            return np.zeros(self.dimension, dtype=np.float32)
        norm = np.linalg.norm(array)
        if norm == 0:
            return array
        return array / norm

    def add(self, records: List[VectorRecord]) -> None:
        if not records:
            return
        batch = np.vstack([self.normalise(r.vector) for r in records]).astype(np.float32)
        self.index.add(batch)
        self.rows.extend(records)

    def rebuild(self, rows: List[VectorRecord]) -> None:
        self.rows = []
        self.index = self.faiss.IndexFlatIP(self.dimension)
        self.add(rows)


class FaissTableStore(ITableStore):
    """In-process FAISS implementation of ITableStore."""

    def __init__(self, dimension: int = 384):
        """
        Initialize FAISS table store.

        Args:
            dimension: Dimension of the vectors (default: 384 for hash embeddings)
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.faiss = faiss
        self.dimension = dimension
        self._tables: Dict[str, _FaissTable] = {}

    async def ensure_table(self, table: str) -> None:
        validate_table_name(table)
        if table not in self._tables:
            self._tables[table] = _FaissTable(self.faiss, self.dimension)
            logger.log_store_event(table, "create_table", {"dimension": self.dimension})

    async def table_exists(self, table: str) -> bool:
        validate_table_name(table)
        return table in self._tables

    async def list_tables(self, prefix: Optional[str] = None) -> List[str]:
        return sorted(name for name in self._tables if prefix is None or name.startswith(prefix))

    async def upsert_many(self, table: str, records: List[VectorRecord]) -> int:
        await self.ensure_table(table)

        copies = []
        for record in records:
            if len(record.vector) != self.dimension:
                logger.log_store_event(table, "dimension_mismatch", {
                    "id": record.id,
                    "expected": self.dimension,
                    "received": len(record.vector)
                }, status="warning")
            copies.append(VectorRecord(record.id, [float(x) for x in record.vector], copy.deepcopy(record.fields)))

        self._tables[table].add(copies)
        return len(copies)

    async def similarity_search(self, table: str, query_vector: List[float], k: int = 5,
                                filter: Optional[Dict[str, Any]] = None) -> List[QueryResult]:
        validate_table_name(table)
        faiss_table = self._tables.get(table)
        if faiss_table is None or not faiss_table.index.ntotal or k <= 0:
            return []

        if len(query_vector) != self.dimension:
            logger.log_store_event(table, "similarity_search", {
                "reason": "query dimension mismatch",
                "received": len(query_vector)
            }, status="warning")
            return []

        conditions = effective_filter(filter)
        query = faiss_table.normalise(query_vector).reshape(1, -1)

        # Filtering happens after the search, so a filtered query ranks every row
        fetch = faiss_table.index.ntotal if conditions else min(k, faiss_table.index.ntotal)
        scores, indices = faiss_table.index.search(query, fetch)

        results = []
        for score, position in zip(scores[0], indices[0]):
            if position < 0:
                continue
            record = faiss_table.rows[position]
            if not matches_filter(record.id, record.fields, conditions):
                continue
            distance = float(1.0 - score)
            results.append(QueryResult(
                id=record.id,
                fields=copy.deepcopy(record.fields),
                distance=distance,
                similarity=to_similarity(distance),
                vector=list(record.vector)
            ))
            if len(results) >= k:
                break

        return results

    async def scan(self, table: str, filter: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[VectorRecord]:
        validate_table_name(table)
        faiss_table = self._tables.get(table)
        if faiss_table is None:
            return []

        conditions = effective_filter(filter)
        rows = []
        for record in faiss_table.rows:
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

        faiss_table = self._tables.get(table)
        if faiss_table is None:
            return 0

        updated = 0
        for record in faiss_table.rows:
            if matches_filter(record.id, record.fields, conditions):
                record.fields.update(copy.deepcopy(changes))
                updated += 1
        return updated

    async def delete_where(self, table: str, filter: Dict[str, Any]) -> int:
        validate_table_name(table)
        conditions = effective_filter(filter)
        if refuse_unfiltered(table, "delete_where", conditions):
            return 0

        faiss_table = self._tables.get(table)
        if faiss_table is None:
            return 0

        kept = [r for r in faiss_table.rows if not matches_filter(r.id, r.fields, conditions)]
        deleted = len(faiss_table.rows) - len(kept)
        if deleted:
            faiss_table.rebuild(kept)
            logger.log_store_event(table, "delete_where", {"deleted": deleted, "rebuilt": True})
        return deleted

    async def drop_table(self, table: str) -> bool:
        validate_table_name(table)
        if self._tables.pop(table, None) is None:
            return False
        logger.log_store_event(table, "drop_table")
        return True

    async def count_rows(self, table: str, filter: Optional[Dict[str, Any]] = None) -> int:
        validate_table_name(table)
        faiss_table = self._tables.get(table)
        if faiss_table is None:
            return 0
        conditions = effective_filter(filter)
        return sum(1 for r in faiss_table.rows if matches_filter(r.id, r.fields, conditions))
