"""
Request models and result envelopes for the recall services.
Request models reject unknown top-level fields; result envelopes are what a route
layer serialises as ``{success, error}`` JSON.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError
from ..core.schema import MemoryType


class StoreMemoryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_id: str
    domain_id: str
    content: str
    memory_type: MemoryType
    importance: int = Field(default=5, ge=1, le=10)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('owner_id', 'domain_id')
    @classmethod
    def scope_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('scope identifiers cannot be empty')
        return v.strip()

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('content cannot be empty')
        return v

    @field_validator('metadata')
    @classmethod
    def metadata_must_be_json(cls, v):
        try:
            json.dumps(v)
        except (TypeError, ValueError):
            raise ValueError('metadata must be JSON serialisable')
        return v


class RetrieveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_id: str
    domain_id: str
    query: str
    limit: int = Field(default=5, ge=1, le=500)
    memory_types: Optional[List[MemoryType]] = None
    min_similarity: float = Field(default=0.7, ge=0.0, le=1.0)

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v


class LearningOutcomeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    agent_id: str = "auto-saver"
    task_type: str
    context: Any = None
    solution: Any = None
    outcome: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('task_type')
    @classmethod
    def task_type_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('task_type cannot be empty')
        return v.strip()

    @field_validator('outcome')
    @classmethod
    def outcome_must_be_valid(cls, v):
        valid_outcomes = ['success', 'failure']
        if v not in valid_outcomes:
            raise ValueError(f'outcome must be one of: {valid_outcomes}')
        return v


class OperationResult(BaseModel):
    success: bool
    deleted: int = 0
    error: Optional[str] = None


class SummaryResult(BaseModel):
    success: bool
    summary: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    memory_id: Optional[str] = None
    error: Optional[str] = None


def parse_request(model_cls, **data):
    """Build a request model, converting pydantic errors into the engine's ValidationError."""
    try:
        return model_cls(**data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(f"{field_name}: {first.get('msg')}", field=field_name) from e
