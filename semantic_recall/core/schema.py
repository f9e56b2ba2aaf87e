"""
Record types persisted by the memory cache and the two pattern stores.
Each record converts to and from the flat ``fields`` mapping stored next to its vector.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class MemoryType(str, Enum):
    CONVERSATION = "conversation"
    PREFERENCE = "preference"
    FACT = "fact"
    FEEDBACK = "feedback"
    DECISION = "decision"


class PatternCategory(str, Enum):
    CODE_GENERATION = "code_generation"
    ERROR_HANDLING = "error_handling"
    DEPLOYMENT = "deployment"
    REFACTORING = "refactoring"
    TESTING = "testing"
    OPTIMIZATION = "optimization"
    INTEGRATION = "integration"


@dataclass
class MemoryRecord:
    id: str
    owner_id: str
    domain_id: str
    content: str
    memory_type: MemoryType
    importance: int
    metadata: Dict[str, Any]
    created_at: float
    last_accessed_at: float
    access_count: int = 0
    embedding: Optional[List[float]] = None

    def to_fields(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "domain_id": self.domain_id,
            "content": self.content,
            "memory_type": self.memory_type.value,
            "importance": self.importance,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
            "access_count": self.access_count,
        }

    @classmethod
    def from_fields(cls, record_id: str, fields: Dict[str, Any], embedding: Optional[List[float]] = None) -> "MemoryRecord":
        return cls(
            id=record_id,
            owner_id=fields["owner_id"],
            domain_id=fields["domain_id"],
            content=fields["content"],
            memory_type=MemoryType(fields["memory_type"]),
            importance=int(fields.get("importance", 5)),
            metadata=dict(fields.get("metadata") or {}),
            created_at=float(fields["created_at"]),
            last_accessed_at=float(fields.get("last_accessed_at", fields["created_at"])),
            access_count=int(fields.get("access_count", 0)),
            embedding=embedding,
        )


@dataclass
class MemorySearchResult:
    memory: MemoryRecord
    similarity: float


@dataclass
class MemoryStats:
    total_memories: int
    by_type: Dict[str, int]
    oldest_timestamp: Optional[float] = None
    newest_timestamp: Optional[float] = None

    @classmethod
    def empty(cls) -> "MemoryStats":
        return cls(total_memories=0, by_type={t.value: 0 for t in MemoryType})


@dataclass
class UserPreference:
    id: str
    owner_id: str
    preference_key: str
    preference_value: str
    confidence: float
    extracted_from: str
    updated_at: float


@dataclass
class PatternRecord:
    """A recurring behavioural signal observed for an (owner, domain) pair."""
    id: str
    owner_id: str
    domain_id: str
    pattern_text: str
    frequency: int
    confidence: float
    first_seen: float
    last_seen: float

    def to_fields(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "domain_id": self.domain_id,
            "pattern_text": self.pattern_text,
            "frequency": self.frequency,
            "confidence": self.confidence,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_fields(cls, record_id: str, fields: Dict[str, Any]) -> "PatternRecord":
        return cls(
            id=record_id,
            owner_id=fields["owner_id"],
            domain_id=fields["domain_id"],
            pattern_text=fields["pattern_text"],
            frequency=int(fields["frequency"]),
            confidence=float(fields["confidence"]),
            first_seen=float(fields.get("first_seen", fields["last_seen"])),
            last_seen=float(fields["last_seen"]),
        )


@dataclass
class ExtractedPattern:
    """Output of the extraction step, before it is persisted."""
    pattern_name: str
    category: str
    problem_signature: str
    solution_template: str
    confidence: float
    discovered_by: List[str] = field(default_factory=list)
    code_example: Optional[str] = None
    when_not_to_use: Optional[str] = None
    variations: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LearnedPattern:
    """A generalized, reusable solution extracted from a completed task."""
    id: str
    pattern_name: str
    category: str
    problem_signature: str
    solution_template: str
    confidence: float
    times_applied: int = 1
    success_rate: float = 1.0
    is_active: bool = True
    discovered_by: List[str] = field(default_factory=list)
    code_example: Optional[str] = None
    when_not_to_use: Optional[str] = None
    variations: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    last_used: Optional[float] = None

    @property
    def searchable_text(self) -> str:
        return f"{self.pattern_name}\n{self.problem_signature}\n{self.solution_template}"

    def to_fields(self) -> Dict[str, Any]:
        return {
            "pattern_name": self.pattern_name,
            "category": self.category,
            "problem_signature": self.problem_signature,
            "solution_template": self.solution_template,
            "confidence": self.confidence,
            "times_applied": self.times_applied,
            "success_rate": self.success_rate,
            "is_active": self.is_active,
            "discovered_by": list(self.discovered_by),
            "code_example": self.code_example,
            "when_not_to_use": self.when_not_to_use,
            "variations": self.variations,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "last_used": self.last_used,
        }

    @classmethod
    def from_fields(cls, record_id: str, fields: Dict[str, Any]) -> "LearnedPattern":
        return cls(
            id=record_id,
            pattern_name=fields["pattern_name"],
            category=fields["category"],
            problem_signature=fields["problem_signature"],
            solution_template=fields["solution_template"],
            confidence=float(fields["confidence"]),
            times_applied=int(fields.get("times_applied", 1)),
            success_rate=float(fields.get("success_rate", 1.0)),
            is_active=bool(fields.get("is_active", True)),
            discovered_by=list(fields.get("discovered_by") or []),
            code_example=fields.get("code_example"),
            when_not_to_use=fields.get("when_not_to_use"),
            variations=fields.get("variations"),
            metadata=dict(fields.get("metadata") or {}),
            created_at=float(fields.get("created_at", 0.0)),
            last_used=fields.get("last_used"),
        )


@dataclass
class SimilarPattern:
    pattern: LearnedPattern
    similarity: float
