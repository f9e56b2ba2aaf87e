"""
Behavioural patterns, learned task patterns and the LLM summarizer they share.
"""

from .patterns import PatternLearner, matching_patterns, score_with_patterns
from .knowledge import KnowledgePatternStore, PatternExtractor
from .summarizer import ISummarizer, OllamaSummarizer, parse_json_response

__all__ = [
    'PatternLearner',
    'matching_patterns',
    'score_with_patterns',
    'KnowledgePatternStore',
    'PatternExtractor',
    'ISummarizer',
    'OllamaSummarizer',
    'parse_json_response'
]
