"""
Retention and volume maintenance for memory tables.

Cleanup is opportunistic: it runs after writes (or from the admin script), never on a
timer. Records older than the retention window are removed first, then the oldest
remaining records are evicted until the owner is back under the per-table ceiling.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import StorageUnavailable
from ..util.logging import logger

SECONDS_PER_DAY = 86400


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = None
    errors: List[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.actions_taken is None:
            self.actions_taken = []
        if self.errors is None:
            self.errors = []
        if self.metadata is None:
            self.metadata = {}

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


async def cleanup_memories(store, table: str, owner_id: str, retention_days: int,
                           max_memories: int, now: float = None) -> MaintenanceReport:
    """
    Apply the retention window and the volume ceiling to one owner's rows in one table.

    Args:
        store: ITableStore holding the memories
        table: Physical memory table
        owner_id: Owner whose rows are checked
        retention_days: Rows created more than this many days ago are removed
        max_memories: Rows above this count are evicted oldest-first
        now: Reference time (epoch seconds); defaults to the current time

    Returns:
        MaintenanceReport: expired/evicted counts in metadata, storage errors in errors
    """
    report = MaintenanceReport(
        operation="memory_cleanup",
        started_at=datetime.now(),
        metadata={"table": table, "owner_id": owner_id, "expired": 0, "evicted": 0}
    )
    now = time.time() if now is None else now
    cutoff = now - retention_days * SECONDS_PER_DAY

    try:
        rows = await store.scan(table, {"owner_id": owner_id})

        expired = [r for r in rows if float(r.fields.get("created_at", now)) < cutoff]
        expired_ids = {r.id for r in expired}
        remaining = [r for r in rows if r.id not in expired_ids]

        overflow = max(0, len(remaining) - max_memories)
        remaining.sort(key=lambda r: float(r.fields.get("created_at", now)))
        evicted = remaining[:overflow]

        report.issues_found = len(expired) + len(evicted)

        for record in expired:
            report.metadata["expired"] += await store.delete_where(table, {"id": record.id, "owner_id": owner_id})
        if expired:
            report.actions_taken.append(f"Removed {len(expired)} memories older than {retention_days} days")

        for record in evicted:
            report.metadata["evicted"] += await store.delete_where(table, {"id": record.id, "owner_id": owner_id})
        if evicted:
            report.actions_taken.append(f"Evicted {len(evicted)} oldest memories above the {max_memories} limit")

        report.issues_resolved = report.metadata["expired"] + report.metadata["evicted"]

    except StorageUnavailable as e:
        report.errors.append(str(e))

    report.completed_at = datetime.now()
    logger.log_cleanup(
        owner_id, table,
        report.metadata["expired"], report.metadata["evicted"],
        status="success" if report.succeeded else "failed"
    )
    return report
