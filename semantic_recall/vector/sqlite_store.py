"""
Durable table store on SQLite.

Each logical table is one SQLite table holding the row id, a float32 vector blob and the
JSON-encoded fields. Every call opens its own connection in a worker thread and is bounded
by ``timeout``; sqlite failures and timeouts surface as ``StorageUnavailable``.
"""

import asyncio
from contextlib import contextmanager
import json
import sqlite3
import threading
from typing import Any, Dict, Generator, List, Optional, Tuple

import numpy as np

from ..core.errors import StorageUnavailable
from ..util.logging import logger
from .index import (
    ITableStore, effective_filter, matches_filter, rank_records,
    refuse_unfiltered, validate_table_name
)
from .types import VectorRecord, QueryResult


def encode_vector(vector: List[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def decode_vector(blob: bytes) -> List[float]:
    if not blob:
        return []
    return np.frombuffer(blob, dtype=np.float32).astype(np.float64).tolist()


def decode_fields(fields_json: Optional[str]) -> Dict[str, Any]:
    return json.loads(fields_json) if fields_json else {}


class SQLiteTableStore(ITableStore):
    """SQLite-backed implementation of ITableStore."""

    def __init__(self, db_path: str, timeout: float = 15.0):
        self.db_path = db_path
        self.timeout = timeout

        # ":memory:" databases vanish with their connection, so keep one open
        self._lock = threading.Lock()
        self._shared = None
        if db_path == ":memory:":
            self._shared = sqlite3.connect(db_path, check_same_thread=False)

    @contextmanager
    def get_db(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite database connection."""
        if self._shared is not None:
            with self._lock:
                yield self._shared
            return

        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            yield conn
        finally:
            conn.close()

    async def _run(self, operation: str, table: str, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.log_store_event(table, operation, {"error": "timeout", "timeout": self.timeout}, status="failed")
            raise StorageUnavailable(f"{operation} on {table} timed out after {self.timeout}s", table=table) from e
        except (sqlite3.Error, json.JSONDecodeError) as e:
            logger.log_store_event(table, operation, {"error": str(e)}, status="failed")
            raise StorageUnavailable(f"{operation} on {table} failed: {e}", table=table) from e

    # Synchronous helpers, always called inside a worker thread

    @staticmethod
    def _create(cursor: sqlite3.Cursor, table: str) -> None:
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS "{table}" (
                row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                vector BLOB,
                fields TEXT NOT NULL DEFAULT '{{}}',
                inserted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        cursor.execute(f'CREATE INDEX IF NOT EXISTS "idx_{table}_id" ON "{table}"(id)')

    @staticmethod
    def _exists(cursor: sqlite3.Cursor, table: str) -> bool:
        cursor.execute("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,))
        return cursor.fetchone() is not None

    def _load(self, cursor: sqlite3.Cursor, table: str,
              conditions: Dict[str, Any]) -> List[Tuple[int, VectorRecord]]:
        if not self._exists(cursor, table):
            return []

        if "id" in conditions:
            cursor.execute(f'SELECT row_id, id, vector, fields FROM "{table}" WHERE id = ? ORDER BY row_id',
                           (conditions["id"],))
        else:
            cursor.execute(f'SELECT row_id, id, vector, fields FROM "{table}" ORDER BY row_id')

        rows = []
        for row_id, record_id, blob, fields_json in cursor.fetchall():
            fields = decode_fields(fields_json)
            if matches_filter(record_id, fields, conditions):
                rows.append((row_id, VectorRecord(id=record_id, vector=decode_vector(blob), fields=fields)))
        return rows

    def _ensure_table_sync(self, table: str) -> None:
        with self.get_db() as conn:
            cursor = conn.cursor()
            created = not self._exists(cursor, table)
            self._create(cursor, table)
            conn.commit()
        if created:
            logger.log_store_event(table, "create_table", {"db_path": self.db_path})

    def _table_exists_sync(self, table: str) -> bool:
        with self.get_db() as conn:
            return self._exists(conn.cursor(), table)

    def _list_tables_sync(self, prefix: Optional[str]) -> List[str]:
        with self.get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name")
            names = [row[0] for row in cursor.fetchall()]
        return [name for name in names if prefix is None or name.startswith(prefix)]

    def _upsert_many_sync(self, table: str, records: List[VectorRecord]) -> int:
        with self.get_db() as conn:
            cursor = conn.cursor()
            self._create(cursor, table)
            cursor.executemany(
                f'INSERT INTO "{table}" (id, vector, fields) VALUES (?, ?, ?)',
                [(r.id, encode_vector(r.vector), json.dumps(r.fields)) for r in records]
            )
            conn.commit()
        return len(records)

    def _search_sync(self, table: str, query_vector: List[float], k: int,
                     filter: Optional[Dict[str, Any]]) -> List[QueryResult]:
        with self.get_db() as conn:
            rows = self._load(conn.cursor(), table, effective_filter(filter))
        return rank_records((record for _, record in rows), query_vector, k)

    def _scan_sync(self, table: str, filter: Optional[Dict[str, Any]], limit: Optional[int]) -> List[VectorRecord]:
        with self.get_db() as conn:
            rows = self._load(conn.cursor(), table, effective_filter(filter))
        records = [record for _, record in rows]
        return records if limit is None else records[:limit]

    def _update_where_sync(self, table: str, conditions: Dict[str, Any], changes: Dict[str, Any]) -> int:
        with self.get_db() as conn:
            cursor = conn.cursor()
            rows = self._load(cursor, table, conditions)
            for row_id, record in rows:
                record.fields.update(changes)
                cursor.execute(f'UPDATE "{table}" SET fields = ? WHERE row_id = ?',
                               (json.dumps(record.fields), row_id))
            conn.commit()
        return len(rows)

    def _delete_where_sync(self, table: str, conditions: Dict[str, Any]) -> int:
        with self.get_db() as conn:
            cursor = conn.cursor()
            rows = self._load(cursor, table, conditions)
            cursor.executemany(f'DELETE FROM "{table}" WHERE row_id = ?', [(row_id,) for row_id, _ in rows])
            conn.commit()
        return len(rows)

    def _drop_table_sync(self, table: str) -> bool:
        with self.get_db() as conn:
            cursor = conn.cursor()
            if not self._exists(cursor, table):
                return False
            cursor.execute(f'DROP TABLE "{table}"')
            conn.commit()
        return True

    def _count_rows_sync(self, table: str, conditions: Dict[str, Any]) -> int:
        with self.get_db() as conn:
            cursor = conn.cursor()
            if conditions:
                return len(self._load(cursor, table, conditions))
            if not self._exists(cursor, table):
                return 0
            cursor.execute(f'SELECT COUNT(*) FROM "{table}"')
            return cursor.fetchone()[0]

    # ITableStore

    async def ensure_table(self, table: str) -> None:
        validate_table_name(table)
        await self._run("ensure_table", table, self._ensure_table_sync, table)

    async def table_exists(self, table: str) -> bool:
        validate_table_name(table)
        return await self._run("table_exists", table, self._table_exists_sync, table)

    async def list_tables(self, prefix: Optional[str] = None) -> List[str]:
        return await self._run("list_tables", prefix or "*", self._list_tables_sync, prefix)

    async def upsert_many(self, table: str, records: List[VectorRecord]) -> int:
        validate_table_name(table)
        if not records:
            await self.ensure_table(table)
            return 0
        return await self._run("upsert_many", table, self._upsert_many_sync, table, list(records))

    async def similarity_search(self, table: str, query_vector: List[float], k: int = 5,
                                filter: Optional[Dict[str, Any]] = None) -> List[QueryResult]:
        validate_table_name(table)
        return await self._run("similarity_search", table, self._search_sync, table, query_vector, k, filter)

    async def scan(self, table: str, filter: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[VectorRecord]:
        validate_table_name(table)
        return await self._run("scan", table, self._scan_sync, table, filter, limit)

    async def update_where(self, table: str, filter: Dict[str, Any], changes: Dict[str, Any]) -> int:
        validate_table_name(table)
        conditions = effective_filter(filter)
        if refuse_unfiltered(table, "update_where", conditions):
            return 0
        return await self._run("update_where", table, self._update_where_sync, table, conditions, dict(changes))

    async def delete_where(self, table: str, filter: Dict[str, Any]) -> int:
        validate_table_name(table)
        conditions = effective_filter(filter)
        if refuse_unfiltered(table, "delete_where", conditions):
            return 0
        deleted = await self._run("delete_where", table, self._delete_where_sync, table, conditions)
        if deleted:
            logger.log_store_event(table, "delete_where", {"deleted": deleted})
        return deleted

    async def drop_table(self, table: str) -> bool:
        validate_table_name(table)
        dropped = await self._run("drop_table", table, self._drop_table_sync, table)
        if dropped:
            logger.log_store_event(table, "drop_table")
        return dropped

    async def count_rows(self, table: str, filter: Optional[Dict[str, Any]] = None) -> int:
        validate_table_name(table)
        return await self._run("count_rows", table, self._count_rows_sync, table, effective_filter(filter))
