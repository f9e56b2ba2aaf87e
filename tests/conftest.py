"""
Shared fixtures: deterministic embeddings, fresh table stores and a scripted summarizer.
"""

import pytest

from semantic_recall.learning.summarizer import ISummarizer
from semantic_recall.memory.cache import MemoryCache
from semantic_recall.vector.embeddings import DeterministicHashEmbedding, EmbeddingService
from semantic_recall.vector.index import InMemoryTableStore
from semantic_recall.vector.sqlite_store import SQLiteTableStore


class FakeSummarizer(ISummarizer):
    """Returns queued responses in order and records every prompt it was given."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete_json(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if not self.responses:
            return None
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def hash_provider():
    return DeterministicHashEmbedding(dimension=384)


@pytest.fixture
def embeddings(hash_provider):
    return EmbeddingService(hash_provider, cache_size=1000, cache_key_chars=500, timeout=5.0)


@pytest.fixture
def memory_store():
    return InMemoryTableStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteTableStore(str(tmp_path / "recall.db"), timeout=5.0)


@pytest.fixture
def memory_cache(memory_store, embeddings):
    return MemoryCache(
        memory_store,
        embeddings,
        table_prefix="user_memories",
        retention_days=365,
        max_memories=10000,
        default_min_similarity=0.7
    )
