"""
Behavioural pattern learning for (owner, domain) pairs.

Each observation of a pattern text either creates a record (frequency 1, initial
confidence) or reinforces the existing one by a fixed confidence step capped at 1.0.
Consumers bias decisions with ``score_with_patterns``: a pattern contributes when its text
occurs in the input (case-insensitive) and its confidence is above 0.5.
"""

import time
import uuid
from typing import List, Optional, Tuple

from ..core import config
from ..core.errors import StorageUnavailable, require_text
from ..core.schema import PatternRecord
from ..util.logging import audit_event, logger
from ..vector.embeddings import EmbeddingService
from ..vector.index import ITableStore
from ..vector.types import VectorRecord

MATCH_CONFIDENCE_THRESHOLD = 0.5
SECONDS_PER_DAY = 86400


def matching_patterns(text: str, patterns: List[PatternRecord]) -> List[PatternRecord]:
    """Patterns whose text occurs in ``text`` and whose confidence is above the threshold."""
    haystack = text.lower()
    return [
        p for p in patterns
        if p.confidence > MATCH_CONFIDENCE_THRESHOLD and p.pattern_text.lower() in haystack
    ]


def score_with_patterns(base_score: float, text: str, patterns: List[PatternRecord], weight: float = 0.1) -> float:
    """``base_score`` plus ``confidence * weight`` for every matching pattern."""
    return base_score + sum(p.confidence * weight for p in matching_patterns(text, patterns))


class PatternLearner:
    """Observe, rank and prune behavioural patterns."""

    def __init__(self, table_store: ITableStore, embeddings: EmbeddingService, table: str = None,
                 initial_confidence: float = None, confidence_step: float = None):
        self.table_store = table_store
        self.embeddings = embeddings
        self.table = table or config.PATTERN_TABLE
        self.initial_confidence = (
            config.PATTERN_INITIAL_CONFIDENCE if initial_confidence is None else initial_confidence
        )
        self.confidence_step = config.PATTERN_CONFIDENCE_STEP if confidence_step is None else confidence_step

    async def observe(self, owner_id: str, domain_id: str, pattern_text: str) -> PatternRecord:
        """
        Record one observation of a pattern.

        Read-then-write without compare-and-swap: two concurrent first observations of the
        same key can both insert, and concurrent reinforcements can lose an increment.
        """
        for name, value in (("owner_id", owner_id), ("domain_id", domain_id), ("pattern_text", pattern_text)):
            require_text(value, name)

        now = time.time()
        existing = await self.table_store.scan(self.table, {
            "owner_id": owner_id,
            "domain_id": domain_id,
            "pattern_text": pattern_text
        }, limit=1)

        if existing:
            record = PatternRecord.from_fields(existing[0].id, existing[0].fields)
            record.frequency += 1
            record.confidence = round(min(1.0, record.confidence + self.confidence_step), 4)
            record.last_seen = now

            await self.table_store.update_where(self.table, {"id": record.id}, {
                "frequency": record.frequency,
                "confidence": record.confidence,
                "last_seen": record.last_seen
            })
            logger.log_pattern_event("reinforce", pattern_text, {
                "owner_id": owner_id,
                "frequency": record.frequency,
                "confidence": record.confidence
            })
            return record

        record = PatternRecord(
            id=f"pattern_{int(now * 1000)}_{uuid.uuid4().hex[:9]}",
            owner_id=owner_id,
            domain_id=domain_id,
            pattern_text=pattern_text,
            frequency=1,
            confidence=self.initial_confidence,
            first_seen=now,
            last_seen=now
        )
        vector = await self.embeddings.embed(pattern_text)
        await self.table_store.upsert_many(self.table, [VectorRecord(record.id, vector, record.to_fields())])

        logger.log_pattern_event("observe", pattern_text, {"owner_id": owner_id, "confidence": record.confidence})
        return record

    async def get_patterns(self, owner_id: str, domain_id: str, min_confidence: float = 0.0) -> List[PatternRecord]:
        """All patterns for the pair, highest confidence first."""
        require_text(owner_id, "owner_id")
        try:
            rows = await self.table_store.scan(self.table, {"owner_id": owner_id, "domain_id": domain_id})
        except StorageUnavailable as e:
            logger.log_pattern_event("get_patterns", "-", {"owner_id": owner_id, "error": str(e)}, status="failed")
            return []

        patterns = [PatternRecord.from_fields(r.id, r.fields) for r in rows]
        patterns = [p for p in patterns if p.confidence >= min_confidence]
        patterns.sort(key=lambda p: (p.confidence, p.frequency), reverse=True)
        return patterns

    async def bias_score(self, owner_id: str, domain_id: str, text: str,
                         base_score: float = 0.0, weight: float = 0.1) -> float:
        patterns = await self.get_patterns(owner_id, domain_id)
        return score_with_patterns(base_score, text, patterns, weight)

    async def similar_patterns(self, owner_id: str, domain_id: str, text: str, limit: int = 5,
                               min_similarity: float = 0.0) -> List[Tuple[PatternRecord, float]]:
        """Embedding-based matching: the pair's patterns nearest to ``text``."""
        require_text(owner_id, "owner_id")
        vector = await self.embeddings.embed(text)
        try:
            hits = await self.table_store.similarity_search(
                self.table, vector, k=limit, filter={"owner_id": owner_id, "domain_id": domain_id}
            )
        except StorageUnavailable as e:
            logger.log_pattern_event("similar_patterns", "-", {"owner_id": owner_id, "error": str(e)}, status="failed")
            return []

        return [
            (PatternRecord.from_fields(hit.id, hit.fields), hit.similarity)
            for hit in hits
            if hit.similarity >= min_similarity
        ]

    async def prune(self, owner_id: str, domain_id: str, max_age_days: int, now: float = None) -> int:
        """Delete patterns of the pair not observed within ``max_age_days``."""
        require_text(owner_id, "owner_id")
        now = time.time() if now is None else now
        cutoff = now - max_age_days * SECONDS_PER_DAY

        rows = await self.table_store.scan(self.table, {"owner_id": owner_id, "domain_id": domain_id})
        removed = 0
        for row in rows:
            if float(row.fields.get("last_seen", now)) < cutoff:
                removed += await self.table_store.delete_where(self.table, {"id": row.id, "owner_id": owner_id})

        if removed:
            logger.log_pattern_event("prune", domain_id, {"owner_id": owner_id, "removed": removed})
        return removed

    async def forget_all(self, owner_id: str) -> int:
        """Delete every pattern observed for the owner."""
        require_text(owner_id, "owner_id")

        removed = await self.table_store.delete_where(self.table, {"owner_id": owner_id})
        audit_event("pattern.forget_all", {"owner_id": owner_id, "deleted": removed})
        return removed
