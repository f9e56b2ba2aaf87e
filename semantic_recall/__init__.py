"""
Semantic recall: an embedding-keyed memory cache with similarity retrieval,
pattern reinforcement and table-per-domain partitioning.
"""

from .core.errors import SemanticRecallError, StorageUnavailable, ValidationError
from .core.schema import MemoryType, PatternCategory
from .services import RecallServices, build_services

__version__ = "1.0.0"

__all__ = [
    'SemanticRecallError',
    'StorageUnavailable',
    'ValidationError',
    'MemoryType',
    'PatternCategory',
    'RecallServices',
    'build_services'
]
