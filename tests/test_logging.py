"""
Tests for structured logging and privacy controls on the audit trail.
"""

import logging

from semantic_recall.util.logging import audit_event, logger, sanitize_payload


class TestSanitizePayload:
    """Sensitive keys are redacted at every nesting level."""

    def test_redacts_sensitive_fields(self):
        payload = {"memory_id": "mem_1", "content": "I love jazz music", "nested": {"api_key": "sk-123"}}

        sanitized = sanitize_payload(payload)

        assert sanitized == {"memory_id": "mem_1", "content": "[REDACTED]", "nested": {"api_key": "[REDACTED]"}}

    def test_reveal_sensitive_keeps_values(self):
        assert sanitize_payload({"content": "hello"}, reveal_sensitive=True) == {"content": "hello"}

    def test_truncates_long_strings_in_lists(self):
        sanitized = sanitize_payload(["x" * 150, 7])

        assert sanitized[0] == "x" * 100 + "..."
        assert sanitized[1] == 7

    def test_custom_sensitive_fields(self):
        assert sanitize_payload({"owner_id": "u1"}, sensitive_fields=["owner_id"]) == {"owner_id": "[REDACTED]"}


def test_audit_event_never_logs_content(caplog):
    with caplog.at_level(logging.INFO, logger="semantic_recall"):
        audit_event("memory.forget", {"memory_id": "mem_1"}, payload={"content": "Booked flights to Lisbon"})

    assert "memory_forget" in caplog.text
    assert "mem_1" in caplog.text
    assert "Lisbon" not in caplog.text


def test_memory_operation_previews_content(caplog):
    with caplog.at_level(logging.INFO, logger="semantic_recall"):
        logger.log_memory_operation("store", "mem_2", {"content": "a" * 80})

    assert "a" * 50 + "..." in caplog.text
    assert "a" * 51 not in caplog.text


def test_failed_operations_log_as_warnings(caplog):
    with caplog.at_level(logging.INFO, logger="semantic_recall"):
        logger.log_store_event("user_memories_life_ceo", "delete_where", {"reason": "empty filter"}, status="refused")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert "store.delete_where" in record.getMessage()
