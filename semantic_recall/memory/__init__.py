"""
Owner-scoped memories and the conversation distiller built on them.
"""

from .cache import MemoryCache
from .conversation import ConversationDistiller

__all__ = ['MemoryCache', 'ConversationDistiller']
