"""Purge operation model.

Represents one purge pass over a region with its mode, counts and status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .purge_record import PurgeRecord, PurgeStatus, ResourceKind


class OperationMode(Enum):
    """Operation execution mode."""

    DRY_RUN = "dry-run"
    EXECUTE = "execute"


class OperationStatus(Enum):
    """Operation execution status."""

    PLANNED = "planned"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PurgeOperation:
    """Purge operation entity.

    State transitions:
        dry-run → planned
        execute → completed (all succeeded)
        execute → partial (some failed)
        execute → failed (nothing succeeded)

    Attributes:
        operation_id: Unique identifier for the operation
        region: AWS region purged
        timestamp: When the operation started (UTC)
        mode: dry-run or execute
        status: Final status
        images_total: Images selected for purge
        kept_images: Bucket survivors (informational)
        records: Per-image and per-snapshot records
        name: Name tag or name pattern the purge was scoped to (optional)
        completed_at: When execution completed (optional)
    """

    operation_id: str
    region: str
    timestamp: datetime
    mode: OperationMode
    status: OperationStatus = OperationStatus.PLANNED
    images_total: int = 0
    kept_images: List[str] = field(default_factory=list)
    records: List[PurgeRecord] = field(default_factory=list)
    name: Optional[str] = None
    completed_at: Optional[datetime] = None

    def _count(self, kind: ResourceKind, status: PurgeStatus) -> int:
        return sum(1 for r in self.records if r.kind == kind and r.status == status)

    @property
    def images_deleted(self) -> int:
        return self._count(ResourceKind.IMAGE, PurgeStatus.SUCCEEDED)

    @property
    def snapshots_deleted(self) -> int:
        return self._count(ResourceKind.SNAPSHOT, PurgeStatus.SUCCEEDED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if r.status == PurgeStatus.FAILED)

    @property
    def had_errors(self) -> bool:
        """Aggregate signal: at least one deletion failed."""
        return self.failed_count > 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.timestamp).total_seconds()

    def finalize(self, completed_at: datetime) -> None:
        """Derive the final status from the records."""
        self.completed_at = completed_at
        if self.mode == OperationMode.DRY_RUN:
            self.status = OperationStatus.PLANNED
        elif self.failed_count == 0:
            self.status = OperationStatus.COMPLETED
        elif any(r.status == PurgeStatus.SUCCEEDED for r in self.records):
            self.status = OperationStatus.PARTIAL
        else:
            self.status = OperationStatus.FAILED

    def validate(self) -> bool:
        """Validate operation invariants.

        Raises:
            ValueError: If any validation rule fails
        """
        if self.completed_at and self.completed_at < self.timestamp:
            raise ValueError("Completion time before start time")
        if self.mode == OperationMode.DRY_RUN:
            if self.status != OperationStatus.PLANNED:
                raise ValueError("Dry-run mode must have planned status")
            if any(r.status != PurgeStatus.DRY_RUN for r in self.records):
                raise ValueError("Dry-run records must have dry-run status")
        for record in self.records:
            record.validate()
        return True
