"""
Knowledge pattern store: reusable solutions learned from completed tasks.

Successful outcomes go through ``PatternExtractor`` (LLM-backed, with a generic
low-confidence fallback). Extractions below the confidence threshold are not saved, and a
pattern name that already exists counts as another application of that pattern.
"""

import json
import math
import time
import uuid
from typing import Any, Dict, List, Optional

from ..api.schemas import LearningOutcomeRequest, parse_request
from ..core import config
from ..core.errors import StorageUnavailable, ValidationError
from ..core.schema import ExtractedPattern, LearnedPattern, PatternCategory, SimilarPattern
from ..util.logging import audit_event, logger
from ..vector.embeddings import EmbeddingService
from ..vector.index import ITableStore
from ..vector.types import VectorRecord
from .summarizer import ISummarizer

DEFAULT_EXTRACTED_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.5

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at identifying and extracting reusable software patterns "
    "from completed tasks. Always return valid JSON."
)

EXTRACTION_PROMPT = """Analyze this completed task and extract a reusable pattern.

Task Type: {task_type}
Context: {context}
Solution: {solution}
Outcome: {outcome}

Extract a generalized, reusable pattern that can help with similar tasks in the future.

Return JSON with this structure:
{{
  "patternName": "Descriptive name (e.g., 'API Error Handling with Retry Logic')",
  "category": "One of: {categories}",
  "problemSignature": "Clear description of the problem this pattern solves",
  "solutionTemplate": "Step-by-step solution template with placeholders",
  "confidence": 0.0-1.0 (how confident you are this pattern is reusable),
  "discoveredBy": ["agent-id or name who discovered this"],
  "codeExample": "Code example showing how to use this pattern",
  "whenNotToUse": "Situations where this pattern should NOT be used",
  "variations": {{}} (object with pattern variations if any)
}}"""


def _millis() -> int:
    return int(time.time() * 1000)


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class PatternExtractor:
    """Turns a task outcome into an ExtractedPattern, never raising."""

    def __init__(self, summarizer: Optional[ISummarizer] = None):
        self.summarizer = summarizer

    def build_prompt(self, request: LearningOutcomeRequest) -> str:
        return EXTRACTION_PROMPT.format(
            task_type=request.task_type,
            context=_to_json(request.context),
            solution=_to_json(request.solution),
            outcome=request.outcome,
            categories=", ".join(c.value for c in PatternCategory)
        )

    async def extract(self, request: LearningOutcomeRequest) -> ExtractedPattern:
        if self.summarizer is None:
            return self.fallback(request)

        try:
            extracted = await self.summarizer.complete_json(EXTRACTION_SYSTEM_PROMPT, self.build_prompt(request))
        except Exception as e:
            # Extraction degrades to the generic pattern instead of failing the save
            logger.log_pattern_event("extract", request.task_type, {"error": str(e)}, status="failed")
            return self.fallback(request)

        if not isinstance(extracted, dict):
            logger.log_pattern_event("extract", request.task_type, {"reason": "unusable response"}, status="failed")
            return self.fallback(request)

        return self.from_response(extracted, request)

    def from_response(self, extracted: Dict[str, Any], request: LearningOutcomeRequest) -> ExtractedPattern:
        """Fill defaults and normalise an LLM answer."""
        try:
            confidence = float(extracted.get("confidence", DEFAULT_EXTRACTED_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_EXTRACTED_CONFIDENCE

        category = str(extracted.get("category") or PatternCategory.CODE_GENERATION.value).strip().lower()
        if category not in {c.value for c in PatternCategory}:
            category = PatternCategory.CODE_GENERATION.value

        discovered_by = extracted.get("discoveredBy")
        if not isinstance(discovered_by, list) or not discovered_by:
            discovered_by = [request.agent_id]

        variations = extracted.get("variations")
        return ExtractedPattern(
            pattern_name=str(extracted.get("patternName") or f"Pattern-{_millis()}"),
            category=category,
            problem_signature=str(extracted.get("problemSignature") or f"Problem from {request.task_type}"),
            solution_template=str(extracted.get("solutionTemplate") or json.dumps(request.solution, default=str)),
            confidence=min(1.0, max(0.0, confidence)),
            discovered_by=[str(d) for d in discovered_by],
            code_example=extracted.get("codeExample"),
            when_not_to_use=extracted.get("whenNotToUse"),
            variations=variations if isinstance(variations, dict) else None,
            metadata=dict(request.metadata)
        )

    def fallback(self, request: LearningOutcomeRequest) -> ExtractedPattern:
        """Generic pattern built from the raw task; its confidence sits below the save threshold."""
        return ExtractedPattern(
            pattern_name=f"{request.task_type}-{_millis()}",
            category=PatternCategory.CODE_GENERATION.value,
            problem_signature=f"Problem from {request.task_type}",
            solution_template=json.dumps(request.solution, default=str),
            confidence=FALLBACK_CONFIDENCE,
            discovered_by=[request.agent_id],
            metadata=dict(request.metadata)
        )


class KnowledgePatternStore:
    """Persist, search and score learned patterns."""

    def __init__(self, table_store: ITableStore, embeddings: EmbeddingService,
                 extractor: PatternExtractor = None, table: str = None, min_confidence: float = None):
        self.table_store = table_store
        self.embeddings = embeddings
        self.extractor = extractor or PatternExtractor()
        self.table = table or config.KNOWLEDGE_TABLE
        self.min_confidence = config.KNOWLEDGE_MIN_CONFIDENCE if min_confidence is None else min_confidence

    async def record_outcome(self, agent_id: Optional[str], task_type: str, context: Any, solution: Any,
                             outcome: str, metadata: Dict[str, Any] = None) -> Optional[str]:
        """
        Learn from a completed task.

        Returns:
            The id of the stored (or reused) pattern, or None when nothing was saved:
            failed outcomes and extractions below the confidence threshold.
        """
        request = parse_request(
            LearningOutcomeRequest,
            agent_id=agent_id or "auto-saver",
            task_type=task_type,
            context=context,
            solution=solution,
            outcome=outcome,
            metadata=metadata if metadata is not None else {}
        )

        if request.outcome == "failure":
            logger.log_pattern_event("record_outcome", request.task_type, {"reason": "failure outcome"}, status="skipped")
            return None

        extracted = await self.extractor.extract(request)
        if extracted.confidence < self.min_confidence:
            logger.log_pattern_event("record_outcome", extracted.pattern_name, {
                "reason": "confidence below threshold",
                "confidence": extracted.confidence,
                "threshold": self.min_confidence
            }, status="skipped")
            return None

        existing = await self.table_store.scan(self.table, {"pattern_name": extracted.pattern_name}, limit=1)
        if existing:
            pattern = LearnedPattern.from_fields(existing[0].id, existing[0].fields)
            await self.table_store.update_where(self.table, {"id": pattern.id}, {
                "times_applied": pattern.times_applied + 1,
                "last_used": time.time()
            })
            logger.log_pattern_event("reuse", pattern.pattern_name, {
                "pattern_id": pattern.id,
                "times_applied": pattern.times_applied + 1
            })
            return pattern.id

        now = time.time()
        pattern = LearnedPattern(
            id=f"pattern_{_millis()}_{uuid.uuid4().hex[:9]}",
            pattern_name=extracted.pattern_name,
            category=extracted.category,
            problem_signature=extracted.problem_signature,
            solution_template=extracted.solution_template,
            confidence=extracted.confidence,
            times_applied=1,
            success_rate=1.0,
            is_active=True,
            discovered_by=extracted.discovered_by,
            code_example=extracted.code_example,
            when_not_to_use=extracted.when_not_to_use,
            variations=extracted.variations,
            metadata={
                **extracted.metadata,
                "agent_id": request.agent_id,
                "task_type": request.task_type,
                "created_from": "auto_save"
            },
            created_at=now,
            last_used=now
        )

        vector = await self.embeddings.embed(pattern.searchable_text)
        await self.table_store.upsert_many(self.table, [VectorRecord(pattern.id, vector, pattern.to_fields())])

        logger.log_pattern_event("save", pattern.pattern_name, {
            "pattern_id": pattern.id,
            "category": pattern.category,
            "confidence": pattern.confidence
        })
        return pattern.id

    async def find_similar(self, task_description: str, category: str = None, limit: int = 5,
                           min_similarity: float = 0.0) -> List[SimilarPattern]:
        """Active patterns ranked by similarity of their name, problem and solution to the task."""
        if not task_description or not task_description.strip():
            raise ValidationError("task_description cannot be empty", field="task_description")

        vector = await self.embeddings.embed(task_description)
        try:
            hits = await self.table_store.similarity_search(
                self.table, vector, k=limit * 2, filter={"is_active": True, "category": category}
            )
        except StorageUnavailable as e:
            logger.log_pattern_event("find_similar", task_description, {"error": str(e)}, status="failed")
            return []

        results = [
            SimilarPattern(pattern=LearnedPattern.from_fields(hit.id, hit.fields), similarity=hit.similarity)
            for hit in hits
            if hit.fields.get("is_active", True) and hit.similarity >= min_similarity
        ]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    async def get_pattern(self, pattern_id: str) -> Optional[LearnedPattern]:
        try:
            rows = await self.table_store.scan(self.table, {"id": pattern_id}, limit=1)
        except StorageUnavailable as e:
            logger.log_pattern_event("get_pattern", pattern_id, {"error": str(e)}, status="failed")
            return None
        if not rows:
            return None
        return LearnedPattern.from_fields(rows[0].id, rows[0].fields)

    async def record_usage(self, pattern_id: str, was_successful: bool) -> Optional[LearnedPattern]:
        """
        Fold one application into the pattern's success rate.

        The stored rate is turned back into a success count by rounding half up, the new
        result is added, and the rate is recomputed over ``times_applied + 1`` uses.
        Returns the updated pattern, or None if the id is unknown.
        """
        pattern = await self.get_pattern(pattern_id)
        if pattern is None:
            logger.log_pattern_event("record_usage", pattern_id, {"reason": "not found"}, status="skipped")
            return None

        total_uses = pattern.times_applied + 1
        successful_uses = round_half_up(pattern.success_rate * pattern.times_applied) + (1 if was_successful else 0)

        pattern.times_applied = total_uses
        pattern.success_rate = successful_uses / total_uses
        pattern.last_used = time.time()

        await self.table_store.update_where(self.table, {"id": pattern.id}, {
            "times_applied": pattern.times_applied,
            "success_rate": pattern.success_rate,
            "last_used": pattern.last_used
        })
        logger.log_pattern_event("record_usage", pattern.pattern_name, {
            "times_applied": pattern.times_applied,
            "success_rate": round(pattern.success_rate, 4)
        })
        return pattern

    async def deactivate(self, pattern_id: str) -> bool:
        """Exclude a pattern from similarity search. Returns False if it does not exist."""
        updated = await self.table_store.update_where(self.table, {"id": pattern_id}, {"is_active": False})
        if updated:
            audit_event("pattern.deactivate", {"pattern_id": pattern_id})
        return updated > 0

    async def get_stats(self) -> Dict[str, Any]:
        try:
            rows = await self.table_store.scan(self.table)
        except StorageUnavailable as e:
            logger.log_pattern_event("get_stats", "-", {"error": str(e)}, status="failed")
            rows = []

        patterns = [LearnedPattern.from_fields(r.id, r.fields) for r in rows]
        active = [p for p in patterns if p.is_active]
        average = sum(p.success_rate for p in active) / len(active) if active else 0.0

        top = sorted(patterns, key=lambda p: p.times_applied, reverse=True)[:10]
        return {
            "total_patterns": len(patterns),
            "active_patterns": len(active),
            "average_success_rate": average,
            "top_patterns": [
                {"name": p.pattern_name, "times_applied": p.times_applied, "success_rate": p.success_rate}
                for p in top
            ]
        }
