"""
Embedding providers and the caching embedding service used by every store.

Providers are synchronous and may raise. ``EmbeddingService`` is the async boundary:
it caches by normalised text prefix, bounds each call with a timeout and converts any
provider failure into an all-zero vector so callers never handle embedding exceptions.
"""

from abc import ABC, abstractmethod
import asyncio
from collections import OrderedDict
import hashlib
import re
import threading
from typing import Any, Dict, List, Optional

import numpy as np
import requests

from ..util.logging import logger


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for tests and offline use.

    Every lowercase word is hashed into one signed bucket and the bucket counts are
    L2-normalised, so texts that share words have a positive cosine similarity and
    identical texts have similarity 1. No model download is needed.
    """

    TOKEN_PATTERN = re.compile(r"[a-z0-9]+")

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector using hash function."""
        vector = np.zeros(self.dimension, dtype=np.float64)

        for token in self.TOKEN_PATTERN.findall(text.lower()):
            hex_dig = hashlib.md5(token.encode()).hexdigest()
            index = int(hex_dig[:8], 16) % self.dimension
            sign = 1.0 if int(hex_dig[8], 16) % 2 == 0 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm

        return vector.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    The model is loaded on first use; all-MiniLM-L6-v2 produces 384-dimensional vectors.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
            logger.log_embedding_event("model_loaded", "success", {"model": self.model_name})
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_numpy=True)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class HttpEmbedding(IEmbeddingProvider):
    """Remote embedding provider speaking the OpenAI-compatible ``/embeddings`` API."""

    def __init__(self, api_url: str, api_key: Optional[str], model_name: str = "text-embedding-3-small",
                 dimension: int = 1536, timeout: float = 15.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model_name = model_name
        self.dimension = dimension
        self.timeout = timeout
        self._session = requests.Session()

    def embed_text(self, text: str) -> List[float]:
        """POST the full text to the embeddings endpoint and return the first vector."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = self._session.post(
            f"{self.api_url}/embeddings",
            json={"model": self.model_name, "input": text},
            headers=headers,
            timeout=self.timeout
        )
        response.raise_for_status()

        payload = response.json()
        return [float(x) for x in payload["data"][0]["embedding"]]

    def get_dimension(self) -> int:
        return self.dimension


class EmbeddingService:
    """
    Async embedding facade with a bounded prefix cache and zero-vector degradation.

    The cache is FIFO: once ``cache_size`` entries are held, the oldest insertion is
    dropped. Failed or timed-out embeddings are never cached.
    """

    def __init__(self, provider: IEmbeddingProvider = None, cache_size: int = None,
                 cache_key_chars: int = None, timeout: float = None, dimension: int = None):
        from ..core import config

        self.provider = provider or config.get_embedding_provider()
        self.cache_size = cache_size or config.EMBED_CACHE_SIZE
        self.cache_key_chars = cache_key_chars or config.EMBED_CACHE_KEY_CHARS
        self.timeout = timeout or config.EMBED_TIMEOUT_SEC
        self._configured_dimension = dimension or config.embedding_dimension()
        self._dimension = dimension

        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.failures = 0
        self.degraded = False

    @property
    def dimension(self) -> int:
        """Expected vector length: the provider's once resolved, configuration until then."""
        if self._dimension is None:
            return self._configured_dimension
        return self._dimension

    def _resolve_dimension(self) -> None:
        # Worker thread only; providers may load a model here
        try:
            self._dimension = int(self.provider.get_dimension())
        except Exception as e:
            logger.log_embedding_event("dimension_lookup", "failed", {"error": str(e)})

    def _embed_blocking(self, text: str) -> List[float]:
        if self._dimension is None:
            self._resolve_dimension()
        return [float(x) for x in self.provider.embed_text(text)]

    def cache_key(self, text: str) -> str:
        """Normalised prefix used as the cache key (whitespace collapsed, stripped)."""
        return " ".join(text.split())[:self.cache_key_chars]

    def zero_vector(self) -> List[float]:
        return [0.0] * self.dimension

    async def embed(self, text: str) -> List[float]:
        """
        Embed text, serving repeated prefixes from the cache.

        Returns:
            The provider's vector, or an all-zero vector of the expected dimension if the
            provider failed or timed out.
        """
        key = self.cache_key(text)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self.hits += 1
                return list(cached)
            self.misses += 1

        try:
            vector = await asyncio.wait_for(
                asyncio.to_thread(self._embed_blocking, text),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return self._degrade(f"embedding timed out after {self.timeout}s")
        except Exception as e:
            return self._degrade(str(e))

        expected = self.dimension
        if len(vector) != expected:
            logger.log_embedding_event("dimension_mismatch", "warning", {
                "expected": expected,
                "received": len(vector)
            })

        with self._lock:
            self._cache[key] = vector
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        if self.degraded:
            self.degraded = False
            logger.log_embedding_event("provider", "recovered", {"provider": self.provider.__class__.__name__})

        return list(vector)

    def _degrade(self, reason: str) -> List[float]:
        with self._lock:
            self.failures += 1
        self.degraded = True
        logger.log_embedding_event("provider", "degraded", {
            "provider": self.provider.__class__.__name__,
            "error": reason[:200],
            "fallback": "zero_vector"
        })
        return self.zero_vector()

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def stats(self) -> Dict[str, Any]:
        """Cache and degradation counters for health reporting."""
        with self._lock:
            return {
                "provider": self.provider.__class__.__name__,
                "dimension": self.dimension,
                "cache_size": len(self._cache),
                "cache_capacity": self.cache_size,
                "hits": self.hits,
                "misses": self.misses,
                "failures": self.failures,
                "degraded": self.degraded,
            }
