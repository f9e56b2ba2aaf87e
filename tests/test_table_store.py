"""
Contract tests run against every ITableStore implementation.
"""

from unittest.mock import patch

import pytest

from semantic_recall.core.errors import StorageUnavailable, ValidationError
from semantic_recall.vector import (
    FaissTableStore, InMemoryTableStore, ITableStore, SQLiteTableStore, VectorRecord
)
from semantic_recall.vector.sqlite_store import decode_fields

X = [1.0, 0.0, 0.0, 0.0]
Y = [0.0, 1.0, 0.0, 0.0]
NEG_X = [-1.0, 0.0, 0.0, 0.0]
ZERO = [0.0, 0.0, 0.0, 0.0]


@pytest.fixture(params=["memory", "sqlite", "faiss"])
def store(request, tmp_path) -> ITableStore:
    if request.param == "memory":
        return InMemoryTableStore()
    if request.param == "sqlite":
        return SQLiteTableStore(str(tmp_path / "tables.db"), timeout=5.0)
    return FaissTableStore(dimension=4)


def rec(record_id, vector, **fields):
    return VectorRecord(id=record_id, vector=vector, fields=fields)


@pytest.mark.asyncio
async def test_missing_table_reads_are_empty(store):
    assert await store.table_exists("nothing_here") is False
    assert await store.similarity_search("nothing_here", X, k=5) == []
    assert await store.scan("nothing_here") == []
    assert await store.count_rows("nothing_here") == 0
    assert await store.delete_where("nothing_here", {"owner_id": "u1"}) == 0
    assert await store.drop_table("nothing_here") is False


@pytest.mark.asyncio
async def test_first_write_creates_table(store):
    await store.upsert_many("notes", [rec("a", X, owner_id="u1")])

    assert await store.table_exists("notes") is True
    assert await store.count_rows("notes") == 1


@pytest.mark.asyncio
async def test_ensure_table_is_idempotent(store):
    await store.ensure_table("notes")
    await store.ensure_table("notes")

    assert await store.list_tables() == ["notes"]
    assert await store.count_rows("notes") == 0


@pytest.mark.asyncio
async def test_upsert_is_append_only(store):
    await store.upsert_many("notes", [rec("dup", X, n=1)])
    await store.upsert_many("notes", [rec("dup", Y, n=2)])

    rows = await store.scan("notes", {"id": "dup"})
    assert [r.fields["n"] for r in rows] == [1, 2]


@pytest.mark.asyncio
async def test_similarity_is_derived_from_cosine_distance(store):
    await store.upsert_many("notes", [rec("same", X), rec("orthogonal", Y), rec("opposite", NEG_X)])

    results = await store.similarity_search("notes", X, k=3)

    assert [r.id for r in results] == ["same", "orthogonal", "opposite"]
    assert results[0].distance == pytest.approx(0.0, abs=1e-6)
    assert results[0].similarity == pytest.approx(1.0, abs=1e-6)
    assert results[1].similarity == pytest.approx(0.0, abs=1e-6)
    assert results[2].distance == pytest.approx(2.0, abs=1e-6)
    assert results[2].similarity == 0.0
    assert all(0.0 <= r.similarity <= 1.0 for r in results)


@pytest.mark.asyncio
async def test_similarity_search_respects_k(store):
    await store.upsert_many("notes", [rec(f"r{i}", X) for i in range(6)])

    assert len(await store.similarity_search("notes", X, k=4)) == 4
    assert await store.similarity_search("notes", X, k=0) == []


@pytest.mark.asyncio
async def test_zero_vectors_have_distance_one(store):
    await store.upsert_many("notes", [rec("zero", ZERO)])

    results = await store.similarity_search("notes", X, k=1)

    assert results[0].distance == pytest.approx(1.0)
    assert results[0].similarity == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_filters_are_and_combined(store):
    await store.upsert_many("notes", [
        rec("a", X, owner_id="u1", kind="fact"),
        rec("b", X, owner_id="u1", kind="preference"),
        rec("c", X, owner_id="u2", kind="fact"),
    ])

    results = await store.similarity_search("notes", X, k=10, filter={"owner_id": "u1", "kind": "fact"})
    assert [r.id for r in results] == ["a"]

    rows = await store.scan("notes", {"owner_id": "u1"})
    assert sorted(r.id for r in rows) == ["a", "b"]

    assert await store.count_rows("notes", {"kind": "fact"}) == 2


@pytest.mark.asyncio
async def test_none_valued_filter_entries_are_ignored(store):
    await store.upsert_many("notes", [rec("a", X, owner_id="u1"), rec("b", Y, owner_id="u2")])

    rows = await store.scan("notes", {"owner_id": "u1", "category": None})
    assert [r.id for r in rows] == ["a"]


@pytest.mark.asyncio
async def test_scan_limit(store):
    await store.upsert_many("notes", [rec(f"r{i}", X, owner_id="u1") for i in range(5)])

    rows = await store.scan("notes", {"owner_id": "u1"}, limit=2)
    assert [r.id for r in rows] == ["r0", "r1"]


@pytest.mark.asyncio
async def test_delete_with_empty_filter_is_refused(store):
    await store.upsert_many("notes", [rec("a", X, owner_id="u1"), rec("b", Y, owner_id="u2")])

    assert await store.delete_where("notes", {}) == 0
    assert await store.delete_where("notes", None) == 0
    assert await store.delete_where("notes", {"owner_id": None}) == 0
    assert await store.count_rows("notes") == 2


@pytest.mark.asyncio
async def test_delete_where_removes_matching_rows(store):
    await store.upsert_many("notes", [
        rec("a", X, owner_id="u1"),
        rec("b", Y, owner_id="u1"),
        rec("c", NEG_X, owner_id="u2"),
    ])

    assert await store.delete_where("notes", {"owner_id": "u1"}) == 2

    remaining = await store.similarity_search("notes", X, k=10)
    assert [r.id for r in remaining] == ["c"]


@pytest.mark.asyncio
async def test_update_where_merges_fields(store):
    await store.upsert_many("notes", [rec("a", X, owner_id="u1", hits=0), rec("b", Y, owner_id="u1", hits=0)])

    assert await store.update_where("notes", {"id": "a"}, {"hits": 3, "flag": True}) == 1
    assert await store.update_where("notes", {}, {"hits": 99}) == 0

    rows = {r.id: r.fields for r in await store.scan("notes")}
    assert rows["a"] == {"owner_id": "u1", "hits": 3, "flag": True}
    assert rows["b"]["hits"] == 0


@pytest.mark.asyncio
async def test_boolean_fields_round_trip_through_filters(store):
    await store.upsert_many("notes", [rec("on", X, is_active=True), rec("off", X, is_active=False)])

    results = await store.similarity_search("notes", X, k=10, filter={"is_active": True})
    assert [r.id for r in results] == ["on"]


@pytest.mark.asyncio
async def test_drop_table(store):
    await store.upsert_many("notes", [rec("a", X)])

    assert await store.drop_table("notes") is True
    assert await store.table_exists("notes") is False
    assert await store.scan("notes") == []


@pytest.mark.asyncio
async def test_list_tables_by_prefix(store):
    await store.upsert_many("user_memories_home", [rec("a", X)])
    await store.upsert_many("user_memories_work", [rec("b", X)])
    await store.upsert_many("life_ceo_patterns", [rec("c", X)])

    assert await store.list_tables(prefix="user_memories") == ["user_memories_home", "user_memories_work"]
    assert len(await store.list_tables()) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_name", ["bad-name", "1table", "x; DROP TABLE y", "", "with space"])
async def test_invalid_table_names_are_rejected(store, bad_name):
    with pytest.raises(ValidationError):
        await store.upsert_many(bad_name, [rec("a", X)])
    with pytest.raises(ValidationError):
        await store.scan(bad_name)


@pytest.mark.asyncio
async def test_returned_rows_are_copies(store):
    await store.upsert_many("notes", [rec("a", X, tags=["x"])])

    rows = await store.scan("notes")
    rows[0].fields["tags"].append("mutated")

    again = await store.scan("notes")
    assert again[0].fields["tags"] == ["x"]


# SQLite specifics

@pytest.mark.asyncio
async def test_sqlite_persists_across_instances(tmp_path):
    path = str(tmp_path / "durable.db")
    await SQLiteTableStore(path).upsert_many("notes", [rec("a", X, owner_id="u1", meta={"k": [1, 2]})])

    rows = await SQLiteTableStore(path).scan("notes")

    assert len(rows) == 1
    assert rows[0].fields == {"owner_id": "u1", "meta": {"k": [1, 2]}}
    assert rows[0].vector == pytest.approx(X)


@pytest.mark.asyncio
async def test_sqlite_in_memory_database_keeps_data():
    store = SQLiteTableStore(":memory:")
    await store.upsert_many("notes", [rec("a", X)])

    assert await store.count_rows("notes") == 1


@pytest.mark.asyncio
async def test_sqlite_unreachable_database_raises_storage_unavailable(tmp_path):
    # A directory cannot be opened as a database file
    store = SQLiteTableStore(str(tmp_path), timeout=1.0)

    with pytest.raises(StorageUnavailable) as exc_info:
        await store.upsert_many("notes", [rec("a", X)])

    assert exc_info.value.table == "notes"


@pytest.mark.asyncio
async def test_sqlite_id_filters_only_decode_the_matching_row(tmp_path):
    store = SQLiteTableStore(str(tmp_path / "tables.db"), timeout=5.0)
    await store.upsert_many("notes", [rec(f"r{i}", X, owner_id="u1") for i in range(50)])

    with patch("semantic_recall.vector.sqlite_store.decode_fields", wraps=decode_fields) as decoder:
        assert await store.delete_where("notes", {"id": "r7", "owner_id": "u2"}) == 0
        assert decoder.call_count == 1

        decoder.reset_mock()
        assert await store.update_where("notes", {"id": "r8", "owner_id": "u1"}, {"seen": True}) == 1
        assert await store.delete_where("notes", {"id": "r7", "owner_id": "u1"}) == 1
        assert decoder.call_count == 2

    assert await store.count_rows("notes") == 49
    assert (await store.scan("notes", {"id": "r8"}))[0].fields == {"owner_id": "u1", "seen": True}


# FAISS specifics

@pytest.mark.asyncio
async def test_faiss_rebuilds_index_after_delete():
    store = FaissTableStore(dimension=4)
    await store.upsert_many("notes", [rec("a", X, owner_id="u1"), rec("b", Y, owner_id="u2")])

    await store.delete_where("notes", {"owner_id": "u1"})
    results = await store.similarity_search("notes", Y, k=5)

    assert [r.id for r in results] == ["b"]
    assert results[0].similarity == pytest.approx(1.0, abs=1e-6)


@pytest.mark.asyncio
async def test_faiss_keeps_mismatched_vectors_unsearchable():
    store = FaissTableStore(dimension=4)
    await store.upsert_many("notes", [rec("short", [1.0, 0.0])])

    assert await store.count_rows("notes") == 1
    results = await store.similarity_search("notes", X, k=1)
    assert results[0].similarity == pytest.approx(0.0)
    assert await store.similarity_search("notes", [1.0, 0.0], k=1) == []
