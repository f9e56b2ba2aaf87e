"""
Runtime configuration for the semantic recall engine.
Values come from the environment (optionally a .env file); services take explicit
constructor arguments that default to these constants.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Table store configuration
DB_PATH = os.getenv("DB_PATH", "./data/semantic_recall.db")
STORE_PROVIDER = os.getenv("STORE_PROVIDER", "sqlite")  # sqlite|memory|faiss
STORE_TIMEOUT_SEC = float(os.getenv("STORE_TIMEOUT_SEC", "15"))

# Embedding configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence-transformers|http
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))
EMBED_API_URL = os.getenv("EMBED_API_URL", "https://api.openai.com/v1")
EMBED_API_MODEL = os.getenv("EMBED_API_MODEL", "text-embedding-3-small")
EMBED_API_DIM = int(os.getenv("EMBED_API_DIM", "1536"))
EMBED_API_KEY = os.getenv("EMBED_API_KEY")
EMBED_TIMEOUT_SEC = float(os.getenv("EMBED_TIMEOUT_SEC", "15"))
EMBED_CACHE_SIZE = int(os.getenv("EMBED_CACHE_SIZE", "1000"))
EMBED_CACHE_KEY_CHARS = int(os.getenv("EMBED_CACHE_KEY_CHARS", "500"))

# Memory cache configuration
MEMORY_TABLE_PREFIX = os.getenv("MEMORY_TABLE_PREFIX", "user_memories")
MEMORY_RETENTION_DAYS = int(os.getenv("MEMORY_RETENTION_DAYS", "365"))
MAX_MEMORIES_PER_OWNER = int(os.getenv("MAX_MEMORIES_PER_OWNER", "10000"))
DEFAULT_MIN_SIMILARITY = float(os.getenv("DEFAULT_MIN_SIMILARITY", "0.7"))

# Pattern learning configuration
PATTERN_TABLE = os.getenv("PATTERN_TABLE", "life_ceo_patterns")
PATTERN_INITIAL_CONFIDENCE = float(os.getenv("PATTERN_INITIAL_CONFIDENCE", "0.5"))
PATTERN_CONFIDENCE_STEP = float(os.getenv("PATTERN_CONFIDENCE_STEP", "0.05"))
KNOWLEDGE_TABLE = os.getenv("KNOWLEDGE_TABLE", "learned_patterns_vectors")
KNOWLEDGE_MIN_CONFIDENCE = float(os.getenv("KNOWLEDGE_MIN_CONFIDENCE", "0.6"))

# Summarizer collaborator (LLM) configuration
SUMMARIZER_ENABLED = os.getenv("SUMMARIZER_ENABLED", "false").lower() == "true"
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
SUMMARIZER_TIMEOUT_SEC = float(os.getenv("SUMMARIZER_TIMEOUT_SEC", "30"))

VERSION = "1.0.0"

VALID_STORE_PROVIDERS = ["sqlite", "memory", "faiss"]
VALID_EMBED_PROVIDERS = ["hash", "sentence-transformers", "http"]


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def embedding_dimension():
    """Vector length of the configured embedding provider."""
    return EMBED_API_DIM if EMBED_PROVIDER == "http" else EMBED_DIM


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    from ..util.logging import logger

    if EMBED_PROVIDER == "sentence-transformers":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)
    elif EMBED_PROVIDER == "http":
        from ..vector.embeddings import HttpEmbedding
        return HttpEmbedding(
            api_url=EMBED_API_URL,
            api_key=EMBED_API_KEY,
            model_name=EMBED_API_MODEL,
            dimension=EMBED_API_DIM,
            timeout=EMBED_TIMEOUT_SEC
        )

    if EMBED_PROVIDER != "hash":
        logger.warning(f"Unknown EMBED_PROVIDER '{EMBED_PROVIDER}', using deterministic hash embeddings")
    from ..vector.embeddings import DeterministicHashEmbedding
    return DeterministicHashEmbedding(EMBED_DIM)


def get_table_store():
    """Get configured table store implementation."""
    from ..util.logging import logger

    if STORE_PROVIDER == "memory":
        from ..vector.index import InMemoryTableStore
        return InMemoryTableStore()
    elif STORE_PROVIDER == "faiss":
        from ..vector.faiss_store import FaissTableStore
        return FaissTableStore(embedding_dimension())

    if STORE_PROVIDER != "sqlite":
        logger.warning(f"Unknown STORE_PROVIDER '{STORE_PROVIDER}', using SQLite table store")
    from ..vector.sqlite_store import SQLiteTableStore
    ensure_db_directory()
    return SQLiteTableStore(DB_PATH, timeout=STORE_TIMEOUT_SEC)


def get_summarizer():
    """Get the summarizer collaborator. Returns None when LLM features are disabled."""
    if not SUMMARIZER_ENABLED:
        return None

    from ..learning.summarizer import OllamaSummarizer
    return OllamaSummarizer(model_name=OLLAMA_MODEL, host=OLLAMA_HOST, timeout=SUMMARIZER_TIMEOUT_SEC)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if STORE_PROVIDER not in VALID_STORE_PROVIDERS:
        issues.append(f"Invalid STORE_PROVIDER: {STORE_PROVIDER}")

    if EMBED_PROVIDER not in VALID_EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_PROVIDER == "http" and not EMBED_API_KEY:
        issues.append("EMBED_PROVIDER=http requires EMBED_API_KEY")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if EMBED_API_DIM < 1:
        issues.append("EMBED_API_DIM must be >= 1")

    if EMBED_CACHE_SIZE < 1:
        issues.append("EMBED_CACHE_SIZE must be >= 1")

    if not 0.0 <= DEFAULT_MIN_SIMILARITY <= 1.0:
        issues.append("DEFAULT_MIN_SIMILARITY must be within [0, 1]")

    if not 0.0 <= PATTERN_INITIAL_CONFIDENCE <= 1.0:
        issues.append("PATTERN_INITIAL_CONFIDENCE must be within [0, 1]")

    if MEMORY_RETENTION_DAYS < 1:
        issues.append("MEMORY_RETENTION_DAYS must be >= 1")

    if MAX_MEMORIES_PER_OWNER < 1:
        issues.append("MAX_MEMORIES_PER_OWNER must be >= 1")

    return issues
