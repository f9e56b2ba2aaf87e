"""
Error taxonomy for the semantic recall engine.

Only validation and storage failures are raised. Embedding degradation is reported through
``EmbeddingService.degraded`` and missing ids are reported through ``None``/``False`` returns.
"""


class SemanticRecallError(Exception):
    """Base class for errors raised by the recall engine."""
    pass


class ValidationError(SemanticRecallError, ValueError):
    """Input rejected before any I/O (empty content, out-of-range importance, bad table name)."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class StorageUnavailable(SemanticRecallError):
    """The table store could not be reached or did not answer in time."""

    def __init__(self, message: str, table: str = None):
        super().__init__(message)
        self.table = table


def require_text(value, field: str) -> str:
    """Reject ``None``, non-strings and blank strings for a required scope field."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} cannot be empty", field=field)
    return value
