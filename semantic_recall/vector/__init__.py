"""
Embeddings and table stores: the storage layer every recall service is built on.
"""

# Package initialization for vector module
from .index import ITableStore, InMemoryTableStore
from .sqlite_store import SQLiteTableStore
from .faiss_store import FaissTableStore
from .types import VectorRecord, QueryResult
from .embeddings import (
    IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding,
    HttpEmbedding, EmbeddingService
)

__all__ = [
    'ITableStore',
    'InMemoryTableStore',
    'SQLiteTableStore',
    'FaissTableStore',
    'VectorRecord',
    'QueryResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'HttpEmbedding',
    'EmbeddingService'
]
