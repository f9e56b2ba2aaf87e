"""
Structured operation logging for the semantic recall engine.
Every component logs through the process-wide ``logger`` instance defined here.
"""

import logging
import os
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['content', 'text', 'value', 'data', 'payload', 'secret', 'password', 'api_key']


def _preview(text: str, limit: int = 50) -> str:
    """Short preview of free text for log lines."""
    if text is None:
        return ""
    return text[:limit] + "..." if len(text) > limit else text


class StructuredLogger:
    """Structured logger for memory, embedding, pattern and maintenance operations."""

    def __init__(self, name: str = "semantic_recall"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_memory_operation(self, operation: str, memory_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a memory cache operation."""
        log_details = {"memory_id": memory_id}
        if details:
            log_details.update(details)
        if "content" in log_details:
            log_details["content"] = _preview(log_details["content"])

        level = logging.WARNING if status == "failed" else logging.INFO
        self.log_operation(f"memory.{operation}", status, log_details, level)

    def log_embedding_event(self, event: str, status: str, details: Dict[str, Any] = None):
        """Log embedding provider events (cache evictions, degradation, dimension drift)."""
        level = logging.INFO if status in ("success", "recovered") else logging.WARNING
        self.log_operation(f"embedding.{event}", status, details, level)

    def log_store_event(self, table: str, event: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a table store event."""
        log_details = {"table": table}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"store.{event}", status, log_details, level)

    def log_pattern_event(self, event: str, pattern_name: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log pattern learning events."""
        log_details = {"pattern": _preview(pattern_name, 80)}
        if details:
            log_details.update(details)

        level = logging.INFO if status in ("success", "skipped") else logging.WARNING
        self.log_operation(f"pattern.{event}", status, log_details, level)

    def log_cleanup(self, owner_id: str, table: str, expired: int, evicted: int, status: str = "success"):
        """Log the result of a retention/volume cleanup pass."""
        self.log_operation("maintenance.cleanup", status, {
            "owner_id": owner_id,
            "table": table,
            "expired": expired,
            "evicted": evicted
        })

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls.

    Used for GDPR-style deletions and destructive maintenance, so that the audit trail
    records who/what was removed without echoing memory content.
    """
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    operation = event_type.replace(".", "_")
    logger.log_operation(operation, "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
