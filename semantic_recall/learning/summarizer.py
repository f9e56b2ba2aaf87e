"""
LLM collaborator used for conversation summaries, preference extraction and pattern
extraction. It is treated as a function from prompts to JSON; anything unusable comes
back as ``None`` so callers can fall back instead of crashing.
"""

from abc import ABC, abstractmethod
import asyncio
import json
import re
from typing import Any, Optional

import ollama

from ..util.logging import logger

CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
JSON_BLOCK = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)


def parse_json_response(raw: Any) -> Optional[Any]:
    """Parse model output into JSON, tolerating code fences and surrounding prose."""
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return raw

    cleaned = CODE_FENCE.sub("", str(raw).strip())
    if not cleaned:
        return None

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    match = JSON_BLOCK.search(cleaned)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass

    logger.log_operation("summarizer.parse", "failed", {"preview": cleaned[:80]})
    return None


class ISummarizer(ABC):
    """Abstract interface for the structured-output LLM collaborator."""

    @abstractmethod
    async def complete_json(self, system_prompt: str, user_prompt: str) -> Optional[Any]:
        """Return the parsed JSON answer, or None when no usable answer was produced."""
        pass


class OllamaSummarizer(ISummarizer):
    """Summarizer backed by a local Ollama model in JSON mode."""

    def __init__(self, model_name: str = "llama3.1:8b", host: str = None,
                 timeout: float = 30.0, temperature: float = 0.3):
        self.model_name = model_name
        self.timeout = timeout
        self.temperature = temperature
        self.client = ollama.Client(host=host)

    def _chat(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.chat(
            model=self.model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            format="json",
            options={
                "temperature": self.temperature
            }
        )
        return response.get("message", {}).get("content", "")

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Optional[Any]:
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._chat, system_prompt, user_prompt),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.log_operation("summarizer.chat", "failed", {
                "model": self.model_name,
                "error": f"timed out after {self.timeout}s"
            })
            return None
        except (ollama.ResponseError, ConnectionError, OSError) as e:
            logger.log_operation("summarizer.chat", "failed", {"model": self.model_name, "error": str(e)})
            return None

        return parse_json_response(raw)
