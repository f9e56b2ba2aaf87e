"""
Service container. Build it once at process start and hand it to route handlers or
agents; tests build their own with in-memory stores and deterministic embeddings.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .api.schemas import OperationResult
from .core import config
from .core.errors import StorageUnavailable
from .learning.knowledge import KnowledgePatternStore, PatternExtractor
from .learning.patterns import PatternLearner
from .learning.summarizer import ISummarizer
from .memory.cache import MemoryCache
from .memory.conversation import ConversationDistiller
from .util.logging import logger
from .vector.embeddings import EmbeddingService, IEmbeddingProvider
from .vector.index import ITableStore


@dataclass
class RecallServices:
    embeddings: EmbeddingService
    table_store: ITableStore
    memory: MemoryCache
    conversations: ConversationDistiller
    patterns: PatternLearner
    knowledge: KnowledgePatternStore
    summarizer: Optional[ISummarizer] = None

    async def initialize(self) -> Dict[str, int]:
        return await self.memory.initialize()

    async def forget_owner(self, owner_id: str) -> OperationResult:
        """Remove the owner's memories and observed patterns."""
        result = await self.memory.forget_all(owner_id)
        if not result.success:
            return result

        try:
            removed = await self.patterns.forget_all(owner_id)
        except StorageUnavailable as e:
            return OperationResult(success=False, deleted=result.deleted, error=str(e))

        return OperationResult(success=True, deleted=result.deleted + removed)

    def health(self) -> Dict[str, Any]:
        """Health snapshot: embedding degradation is surfaced here rather than raised."""
        embedding_stats = self.embeddings.stats()
        return {
            "status": "degraded" if embedding_stats["degraded"] else "ok",
            "version": config.VERSION,
            "table_store": self.table_store.__class__.__name__,
            "summarizer": self.summarizer.__class__.__name__ if self.summarizer else None,
            "embeddings": embedding_stats
        }

    async def shutdown(self) -> None:
        await self.memory.wait_for_maintenance()


def build_services(table_store: ITableStore = None, embedding_provider: IEmbeddingProvider = None,
                   summarizer: ISummarizer = None) -> RecallServices:
    """Wire every service around one table store and one embedding cache."""
    issues = config.validate_config()
    for issue in issues:
        logger.warning(f"Configuration issue: {issue}")

    table_store = table_store or config.get_table_store()
    embeddings = EmbeddingService(embedding_provider or config.get_embedding_provider())
    summarizer = summarizer or config.get_summarizer()

    memory = MemoryCache(table_store, embeddings)
    services = RecallServices(
        embeddings=embeddings,
        table_store=table_store,
        memory=memory,
        conversations=ConversationDistiller(memory, summarizer),
        patterns=PatternLearner(table_store, embeddings),
        knowledge=KnowledgePatternStore(table_store, embeddings, extractor=PatternExtractor(summarizer)),
        summarizer=summarizer
    )

    logger.log_operation("services.build", "success", {
        "table_store": table_store.__class__.__name__,
        "embedding_provider": embeddings.provider.__class__.__name__,
        "summarizer": summarizer.__class__.__name__ if summarizer else None
    })
    return services
