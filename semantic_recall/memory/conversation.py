"""
Distils conversations into memories: a stored summary per conversation and one
preference memory per extracted user preference.
"""

import math
import time
from typing import Any, Dict, List, Optional

from ..api.schemas import SummaryResult
from ..core.errors import StorageUnavailable
from ..core.schema import MemoryType, UserPreference
from ..learning.summarizer import ISummarizer
from ..util.logging import logger
from .cache import MemoryCache

SUMMARY_IMPORTANCE = 7

SUMMARY_PROMPT = """You are a conversation summarizer. Create a concise summary of this conversation.

Return JSON in this format:
{
  "summary": "Brief 2-3 sentence summary of the conversation",
  "topics": ["topic1", "topic2", "topic3"],
  "keyDecisions": ["decision1", "decision2"]
}"""

PREFERENCE_PROMPT = """You are a preference extraction AI. Analyze the conversation and extract user preferences.

Return JSON in this format:
{
  "preferences": [
    {
      "preferenceKey": "language",
      "preferenceValue": "typescript",
      "confidence": 0.9,
      "reasoning": "User explicitly stated preference for TypeScript"
    }
  ]
}

Extract preferences about:
- Programming languages
- Frameworks/libraries
- Coding style
- UI/UX preferences
- Work patterns
- Communication style

Only include high-confidence (>0.7) preferences with clear evidence from the conversation."""


def format_conversation(messages: List[Dict[str, Any]]) -> str:
    return "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages)


def preference_importance(confidence: float) -> int:
    """Importance 1-10 from a preference's confidence (ceil of confidence * 10)."""
    return min(10, max(1, math.ceil(confidence * 10)))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


class ConversationDistiller:
    """Uses the summarizer collaborator to turn conversations into memories."""

    def __init__(self, memory: MemoryCache, summarizer: Optional[ISummarizer] = None):
        self.memory = memory
        self.summarizer = summarizer

    async def summarize_conversation(self, owner_id: str, domain_id: str, messages: List[Dict[str, Any]],
                                     conversation_id: str = None) -> SummaryResult:
        if not messages:
            return SummaryResult(success=False, error="No messages to summarize")
        if self.summarizer is None:
            return SummaryResult(success=False, error="Summarizer not configured")

        try:
            result = await self.summarizer.complete_json(SUMMARY_PROMPT, format_conversation(messages))
        except Exception as e:
            logger.log_operation("memory.summarize_conversation", "failed", {"owner_id": owner_id, "error": str(e)})
            return SummaryResult(success=False, error=f"Summarizer failed: {e}")

        if not isinstance(result, dict) or not str(result.get("summary") or "").strip():
            return SummaryResult(success=False, error="Summarizer returned no usable summary")

        summary = str(result["summary"]).strip()
        topics = _string_list(result.get("topics"))

        try:
            memory_id = await self.memory.store(
                owner_id, domain_id,
                f"Conversation Summary: {summary}",
                MemoryType.CONVERSATION,
                importance=SUMMARY_IMPORTANCE,
                metadata={
                    "conversation_id": conversation_id,
                    "message_count": len(messages),
                    "topics": topics,
                    "key_decisions": _string_list(result.get("keyDecisions"))
                }
            )
        except StorageUnavailable as e:
            return SummaryResult(success=False, summary=summary, topics=topics, error=str(e))

        logger.log_memory_operation("summarize_conversation", memory_id, {"message_count": len(messages)})
        return SummaryResult(success=True, summary=summary, topics=topics, memory_id=memory_id)

    async def extract_preferences(self, owner_id: str, domain_id: str,
                                  messages: List[Dict[str, Any]]) -> List[UserPreference]:
        """Store each extracted preference as a preference memory; malformed output yields []."""
        if not messages or self.summarizer is None:
            return []

        conversation_text = format_conversation(messages)
        try:
            result = await self.summarizer.complete_json(PREFERENCE_PROMPT, conversation_text)
        except Exception as e:
            logger.log_operation("memory.extract_preferences", "failed", {"owner_id": owner_id, "error": str(e)})
            return []

        if isinstance(result, dict):
            result = result.get("preferences")
        if not isinstance(result, list):
            return []

        preferences = []
        for item in result:
            if not isinstance(item, dict) or not item.get("preferenceKey") or item.get("preferenceValue") is None:
                continue

            try:
                confidence = min(1.0, max(0.0, float(item.get("confidence", 0.5))))
            except (TypeError, ValueError):
                confidence = 0.5

            key = str(item["preferenceKey"])
            value = str(item["preferenceValue"])
            memory_id = await self.memory.store(
                owner_id, domain_id,
                f"Preference: {key} = {value}",
                MemoryType.PREFERENCE,
                importance=preference_importance(confidence),
                metadata={
                    "preference_key": key,
                    "preference_value": value,
                    "confidence": confidence
                }
            )
            preferences.append(UserPreference(
                id=memory_id,
                owner_id=owner_id,
                preference_key=key,
                preference_value=value,
                confidence=confidence,
                extracted_from=conversation_text[:200],
                updated_at=time.time()
            ))

        logger.log_operation("memory.extract_preferences", "success", {"owner_id": owner_id, "count": len(preferences)})
        return preferences
